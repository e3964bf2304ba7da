"""Unified configuration schema for artifact_bridge.

Defines Pydantic models for the unified config structure with dedicated
sections for the local system, the remote tracker, sync options and
logging.  Includes an adapter function that turns the unified config into
the flat ``Config`` dataclass used at runtime.

Usage:
    from artifact_bridge.config_schema import (
        UnifiedConfig, build_config, to_runtime_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_runtime_config(unified, cli_overrides={"local_url": "https://..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from .sync.translator import SpecialFieldNames

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class LocalSystemConfig(BaseModel):
    """Local (test-management) system connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(
        default=None, description="Local system base URL"
    )
    username: str | None = Field(default=None, description="Login")
    password: str | None = Field(
        default=None, description="Password or API key"
    )
    data_sync_id: int | None = Field(
        default=None,
        ge=1,
        description="Id of this data-sync plug-in in the mapping repository",
    )

    model_config = {"frozen": True}


class RemoteSystemConfig(BaseModel):
    """Remote work-item tracker connection settings."""

    url: str | None = Field(
        default=None, description="Remote tracker collection URL"
    )
    username: str | None = Field(default=None, description="Login")
    password: str | None = Field(default=None, description="Password")
    domain: str | None = Field(
        default=None, description="Windows domain for the login, if any"
    )

    model_config = {"frozen": True}


class SyncOptionsConfig(BaseModel):
    """Options that shape a reconciliation run.

    The five free-form ``custom_*`` strings are:

    - ``custom_01``: remote field that receives the local artifact token
      (e.g. ``IN42``).
    - ``custom_02``: remote field that receives the incident detector.
    - ``custom_03``..``custom_05``: overrides for the remote rank, triage
      and discipline field names.
    """

    only_artifact_kind: Literal["incidents", "tasks", ""] = Field(
        default="",
        description="Limit the run to one artifact kind (empty = both)",
    )
    auto_map_users: bool = Field(
        default=False,
        description="Match users by login instead of the users mapping",
    )
    clock_offset_hours: int = Field(
        default=0,
        ge=-24,
        le=24,
        description="Hours added to remote timestamps to align clocks",
    )
    guard_window_minutes: int = Field(
        default=5,
        ge=0,
        le=120,
        description="Slack applied to remote change times (minutes)",
    )
    task_item_types: list[str] = Field(
        default_factory=lambda: ["Task"],
        description="Remote item types synchronized as local tasks",
    )
    product_name: str = Field(
        default="SpiraTest",
        description="Local product name used in new remote descriptions",
    )
    poll_initial_delay: float = Field(default=1.0, gt=0, le=60)
    poll_max_delay: float = Field(default=8.0, gt=0, le=300)
    poll_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Max seconds to wait for a new iteration to appear",
    )
    custom_01: str | None = None
    custom_02: str | None = None
    custom_03: str | None = None
    custom_04: str | None = None
    custom_05: str | None = None

    model_config = {"frozen": True}

    @property
    def artifact_id_field(self) -> str | None:
        return self.custom_01 or None

    @property
    def detector_field(self) -> str | None:
        return self.custom_02 or None

    @property
    def special_fields(self) -> SpecialFieldNames:
        defaults = SpecialFieldNames()
        return SpecialFieldNames(
            rank=self.custom_03 or defaults.rank,
            triage=self.custom_04 or defaults.triage,
            area=defaults.area,
            discipline=self.custom_05 or defaults.discipline,
        )

    @property
    def sync_incidents(self) -> bool:
        return self.only_artifact_kind in ("", "incidents")

    @property
    def sync_tasks(self) -> bool:
        return self.only_artifact_kind in ("", "tasks")


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
        trace: Verbose per-artifact tracing (maps to DEBUG).
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(default="text")
    trace: bool = Field(default=False, description="Enable trace logging")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    local: LocalSystemConfig = Field(default_factory=LocalSystemConfig)
    remote: RemoteSystemConfig = Field(default_factory=RemoteSystemConfig)
    sync: SyncOptionsConfig = Field(default_factory=SyncOptionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config dataclass
# ---------------------------------------------------------------------------


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass,
    applying CLI overrides on top.

    Precedence: CLI override > unified config value > empty.

    CLI overrides dict keys: local_url, local_username, local_password,
    remote_url, remote_username, remote_password, trace.

    Returns:
        ``Config`` instance (NOT validated; run ``validate_config()``).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        local_url=overrides.get("local_url") or unified.local.url or "",
        local_username=overrides.get("local_username")
        or unified.local.username
        or "",
        local_password=overrides.get("local_password")
        or unified.local.password
        or "",
        remote_url=overrides.get("remote_url") or unified.remote.url or "",
        remote_username=overrides.get("remote_username")
        or unified.remote.username
        or "",
        remote_password=overrides.get("remote_password")
        or unified.remote.password
        or "",
        remote_domain=unified.remote.domain,
        data_sync_id=unified.local.data_sync_id,
        trace=overrides.get("trace", False) or unified.logging.trace,
        sync=unified.sync,
    )
