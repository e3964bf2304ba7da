"""Plug-in entry point used by the host scheduler.

The host creates one ``DataSync``, calls ``setup()`` once with any
overrides it holds, then calls ``execute()`` on each scheduled tick with
adapters for the two systems.
"""

from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import LoggingConfig, build_config
from .logger import setup_logging
from .sync.engine import SyncEngine
from .sync.models import RunStatus, SyncReport
from .sync.reporter import format_sync_report

if TYPE_CHECKING:
    from .core.adapters import LocalSystem, RemoteSystem

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


class DataSync:
    """Scheduled bidirectional sync between a local and a remote system.

    Args:
        mode: Logging mode passed to ``setup_logging`` ("service" or "cli").
    """

    def __init__(self, mode: str = "service") -> None:
        self.mode = mode
        self.config: Config | None = None
        self.last_report: SyncReport | None = None
        self._cancel = threading.Event()

    def setup(self, config_overrides: dict[str, Any] | None = None) -> Config:
        """Load configuration and configure logging.

        Sources, highest precedence first: ``config_overrides`` (CLI or
        host-supplied values), environment variables and ``.env``, YAML
        config files, built-in defaults.

        Args:
            config_overrides: Optional dict with local_url, local_username,
                local_password, remote_url, remote_username,
                remote_password and trace.

        Returns:
            The validated runtime ``Config``.

        Raises:
            RuntimeError: If the configuration is missing or invalid.
        """
        overrides = config_overrides or {}
        logging_config = LoggingConfig()
        sources = []
        try:
            # .env first so ${VAR} interpolation in YAML can use its values
            load_dotenv()

            yaml_fallbacks: dict[str, Any] | None = None
            config_files = discover_config_files()
            if config_files:
                unified = build_config(load_hierarchical_config())
                logging_config = unified.logging
                yaml_fallbacks = {
                    "local": unified.local.model_dump(exclude_none=True),
                    "remote": unified.remote.model_dump(exclude_none=True),
                    "sync": unified.sync.model_dump(exclude_unset=True),
                    "logging": unified.logging.model_dump(),
                }
                sources.append(f"config file: {config_files[0]}")

            config = load_config(
                local_url=overrides.get("local_url"),
                local_username=overrides.get("local_username"),
                local_password=overrides.get("local_password"),
                remote_url=overrides.get("remote_url"),
                remote_username=overrides.get("remote_username"),
                remote_password=overrides.get("remote_password"),
                trace=overrides.get("trace", False),
                yaml_fallbacks=yaml_fallbacks,
            )
        except ValueError as e:
            _stderr_print(f"ERROR: Configuration error: {e}")
            raise RuntimeError(
                f"Configuration error: {e}. Ensure BRIDGE_LOCAL_URL and "
                "BRIDGE_REMOTE_URL and their credentials are set."
            ) from e

        setup_logging(
            mode=self.mode,
            trace=config.trace,
            log_file=logging_config.file,
            log_format=logging_config.format,
            level=logging_config.level,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        logger.info("Configuration loaded from: %s", ", ".join(sources))
        logger.info(
            "Local system: %s, remote tracker: %s",
            config.local_url,
            config.remote_url,
        )

        self.config = config
        return config

    def execute(
        self,
        local: LocalSystem,
        remote: RemoteSystem,
        last_sync_at: datetime | None,
        server_now: datetime | None = None,
    ) -> RunStatus:
        """Run one reconciliation pass.

        Args:
            local: Local system adapter.
            remote: Remote tracker adapter.
            last_sync_at: Time of the last successful run (UTC), or None.
            server_now: Current local server time (UTC).

        Returns:
            Overall ``RunStatus`` of the run.

        Raises:
            RuntimeError: If ``setup()`` has not been called.
        """
        if self.config is None:
            raise RuntimeError("DataSync.setup() must be called before execute()")

        self._cancel.clear()
        engine = SyncEngine(
            local, remote, self.config.sync, cancel_event=self._cancel
        )
        status = engine.run(last_sync_at, server_now)
        self.last_report = engine.last_report
        if self.last_report is not None:
            logger.debug("%s", format_sync_report(self.last_report))
        return status

    def cancel(self) -> None:
        """Ask a running ``execute()`` to stop after the current artifact."""
        self._cancel.set()
