"""Runtime configuration for a reconciliation run.

Reads connection settings and sync options from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    BRIDGE_LOCAL_URL: Local system URL (required)
    BRIDGE_LOCAL_USERNAME: Local system login (required)
    BRIDGE_LOCAL_PASSWORD: Local system password or API key (required)
    BRIDGE_REMOTE_URL: Remote tracker URL (required)
    BRIDGE_REMOTE_USERNAME: Remote tracker login (required)
    BRIDGE_REMOTE_PASSWORD: Remote tracker password (required)
    BRIDGE_REMOTE_DOMAIN: Windows domain for the remote login (optional)
    BRIDGE_DATA_SYNC_ID: Data-sync plug-in id (optional)
    BRIDGE_ONLY_ARTIFACT_KIND: "incidents", "tasks" or empty (optional)
    BRIDGE_AUTO_MAP_USERS: Match users by login (optional, default: false)
    BRIDGE_CLOCK_OFFSET_HOURS: Remote clock offset in hours (optional, default: 0)
    BRIDGE_TRACE: Verbose trace logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from .config_schema import SyncOptionsConfig

logger = logging.getLogger(__name__)

_ARTIFACT_KINDS = ("incidents", "tasks", "")


@dataclass
class Config:
    local_url: str
    local_username: str
    local_password: str
    remote_url: str
    remote_username: str
    remote_password: str
    remote_domain: str | None = None
    data_sync_id: int | None = None
    trace: bool = False
    sync: SyncOptionsConfig = field(default_factory=SyncOptionsConfig)


def _validate_url(label: str, url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {label} URL '{url}': must start with http:// or https://"
        )
    if not urlparse(url).hostname:
        raise ValueError(
            f"Invalid {label} URL '{url}': URL must include a hostname"
        )
    return url.removesuffix("/")


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate (URLs are normalized in place).

    Raises:
        ValueError: If a URL is malformed or credentials are empty.
    """
    config.local_url = _validate_url("local system", config.local_url)
    config.remote_url = _validate_url("remote tracker", config.remote_url)

    for value, env_var in (
        (config.local_username, "BRIDGE_LOCAL_USERNAME"),
        (config.local_password, "BRIDGE_LOCAL_PASSWORD"),
        (config.remote_username, "BRIDGE_REMOTE_USERNAME"),
        (config.remote_password, "BRIDGE_REMOTE_PASSWORD"),
    ):
        if not value.strip():
            raise ValueError(
                f"Credential cannot be empty. Set {env_var} environment variable."
            )

    if config.sync.poll_max_delay < config.sync.poll_initial_delay:
        raise ValueError(
            "poll_max_delay must not be smaller than poll_initial_delay"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _require(
    label: str, env_var: str, cli_flag: str, *values: str | None
) -> str:
    for value in values:
        if value:
            return value.strip()
    raise ValueError(
        f"{label} not found. Set {env_var} environment variable, "
        f"pass {cli_flag} CLI argument, or add it to config.yml."
    )


def load_config(
    local_url: str | None = None,
    local_username: str | None = None,
    local_password: str | None = None,
    remote_url: str | None = None,
    remote_username: str | None = None,
    remote_password: str | None = None,
    trace: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        local_url: Override local system URL.
        local_username: Override local login.
        local_password: Override local password.
        remote_url: Override remote tracker URL.
        remote_username: Override remote login.
        remote_password: Override remote password.
        trace: Enable trace logging (CLI flag).
        yaml_fallbacks: Dict with ``local``, ``remote`` and ``sync`` sections
            from the YAML config.  Used when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required settings are missing or invalid after
            checking all sources.
    """
    fb = yaml_fallbacks or {}
    fb_local = fb.get("local") or {}
    fb_remote = fb.get("remote") or {}
    fb_sync = dict(fb.get("sync") or {})

    # --- Connection strings: CLI > env > YAML > error ---

    final_local_url = _require(
        "Local system URL",
        "BRIDGE_LOCAL_URL",
        "--local-url",
        local_url,
        os.getenv("BRIDGE_LOCAL_URL"),
        fb_local.get("url"),
    )
    final_local_username = _require(
        "Local system username",
        "BRIDGE_LOCAL_USERNAME",
        "--local-username",
        local_username,
        os.getenv("BRIDGE_LOCAL_USERNAME"),
        fb_local.get("username"),
    )
    final_local_password = _require(
        "Local system password",
        "BRIDGE_LOCAL_PASSWORD",
        "--local-password",
        local_password,
        os.getenv("BRIDGE_LOCAL_PASSWORD"),
        fb_local.get("password"),
    )
    final_remote_url = _require(
        "Remote tracker URL",
        "BRIDGE_REMOTE_URL",
        "--remote-url",
        remote_url,
        os.getenv("BRIDGE_REMOTE_URL"),
        fb_remote.get("url"),
    )
    final_remote_username = _require(
        "Remote tracker username",
        "BRIDGE_REMOTE_USERNAME",
        "--remote-username",
        remote_username,
        os.getenv("BRIDGE_REMOTE_USERNAME"),
        fb_remote.get("username"),
    )
    final_remote_password = _require(
        "Remote tracker password",
        "BRIDGE_REMOTE_PASSWORD",
        "--remote-password",
        remote_password,
        os.getenv("BRIDGE_REMOTE_PASSWORD"),
        fb_remote.get("password"),
    )
    remote_domain = os.getenv("BRIDGE_REMOTE_DOMAIN") or fb_remote.get(
        "domain"
    )

    data_sync_raw = os.getenv("BRIDGE_DATA_SYNC_ID")
    if data_sync_raw is not None:
        try:
            data_sync_id = int(data_sync_raw)
        except ValueError:
            raise ValueError(
                f"Invalid BRIDGE_DATA_SYNC_ID '{data_sync_raw}': must be a number"
            ) from None
    else:
        data_sync_id = fb_local.get("data_sync_id")

    # --- Sync options: env > YAML > default ---

    kind = os.getenv("BRIDGE_ONLY_ARTIFACT_KIND")
    if kind is not None:
        kind = kind.strip().lower()
        if kind not in _ARTIFACT_KINDS:
            raise ValueError(
                f"Invalid BRIDGE_ONLY_ARTIFACT_KIND '{kind}': "
                "must be 'incidents', 'tasks' or empty"
            )
        fb_sync["only_artifact_kind"] = kind

    env_auto_map = _get_bool_env("BRIDGE_AUTO_MAP_USERS")
    if env_auto_map is not None:
        fb_sync["auto_map_users"] = env_auto_map

    offset_raw = os.getenv("BRIDGE_CLOCK_OFFSET_HOURS")
    if offset_raw is not None:
        try:
            offset = int(offset_raw)
        except ValueError:
            raise ValueError(
                f"Invalid BRIDGE_CLOCK_OFFSET_HOURS '{offset_raw}': "
                "must be a whole number between -24 and 24"
            ) from None
        if not (-24 <= offset <= 24):
            raise ValueError(
                f"Invalid BRIDGE_CLOCK_OFFSET_HOURS '{offset_raw}': "
                "must be a whole number between -24 and 24"
            )
        fb_sync["clock_offset_hours"] = offset

    try:
        sync_options = SyncOptionsConfig(**fb_sync)
    except Exception as exc:
        raise ValueError(f"Invalid sync options: {exc}") from exc

    # --- Trace flag: CLI > env > YAML > default ---

    if trace:
        final_trace = True
    else:
        env_trace = _get_bool_env("BRIDGE_TRACE")
        if env_trace is not None:
            final_trace = env_trace
        else:
            final_trace = bool((fb.get("logging") or {}).get("trace", False))

    config = Config(
        local_url=final_local_url,
        local_username=final_local_username,
        local_password=final_local_password,
        remote_url=final_remote_url,
        remote_username=final_remote_username,
        remote_password=final_remote_password,
        remote_domain=remote_domain or None,
        data_sync_id=data_sync_id,
        trace=final_trace,
        sync=sync_options,
    )

    validate_config(config)

    return config
