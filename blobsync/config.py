"""Configuration loading for blobsync.

Settings are layered, lowest priority first: built-in defaults, a JSON
config file, ``BLOBSYNC_*`` environment variables, then explicit overrides
(usually CLI options). The result is a plain :class:`SyncConfig` that is
handed to the engine; nothing is kept in module-level state.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import ConfigError
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RETRY_DELAY,
    DEFAULT_WORKERS,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "blobsync" / "config.json"

# Environment variable -> config field
ENV_VARS = {
    "BLOBSYNC_ACCOUNT_NAME": "account_name",
    "BLOBSYNC_ACCOUNT_KEY": "account_key",
    "BLOBSYNC_SAS_TOKEN": "sas_token",
    "BLOBSYNC_ENDPOINT": "endpoint",
    "BLOBSYNC_CONTAINER": "container",
    "BLOBSYNC_LOCAL_ROOT": "local_root",
    "BLOBSYNC_FOLDER": "folder",
}


@dataclass
class SyncConfig:
    """Settings for one synchronized folder/container pair."""

    container: str = "sync"
    """Name of the remote container (created if absent)"""

    local_root: Optional[Path] = None
    """Base directory; the watch root is ``local_root / folder``"""

    fallback_root: Optional[Path] = None
    """Base directory used when ``local_root`` does not exist"""

    folder: str = ""
    """Folder below the base directory to synchronize"""

    account_name: Optional[str] = None
    """Storage account name"""

    account_key: Optional[str] = None
    """Base64 storage account key (Shared Key authentication)"""

    sas_token: Optional[str] = None
    """Shared access signature used instead of the account key"""

    endpoint: Optional[str] = None
    """Blob service URL override (defaults from the account name)"""

    workers: int = DEFAULT_WORKERS
    """Number of dispatcher worker threads"""

    queue_size: int = DEFAULT_QUEUE_SIZE
    """Maximum queued events per worker"""

    max_retries: int = DEFAULT_MAX_RETRIES
    """Retries per remote call for transient failures (0 disables)"""

    retry_delay: float = DEFAULT_RETRY_DELAY
    """Initial backoff delay in seconds"""

    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    """Upper bound for a single backoff delay in seconds"""

    timeout: float = 30.0
    """HTTP timeout in seconds"""

    grant_access: bool = False
    """Open the watch root to all local users at startup"""

    poll_interval: float = 1.0
    """Seconds between liveness checks of the watch in the main loop"""

    def __post_init__(self) -> None:
        if isinstance(self.local_root, str):
            self.local_root = Path(self.local_root)
        if isinstance(self.fallback_root, str):
            self.fallback_root = Path(self.fallback_root)
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If a setting is out of range
        """
        if not self.container:
            raise ConfigError("Container name must not be empty")
        if self.workers < 1:
            raise ConfigError("workers must be at least 1")
        if self.queue_size < 1:
            raise ConfigError("queue_size must be at least 1")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative")
        if self.retry_delay < 0 or self.max_retry_delay < 0:
            raise ConfigError("Retry delays must not be negative")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")

    @property
    def uses_development_storage(self) -> bool:
        """True when neither a SAS token nor an account name and key are set."""
        return not self.sas_token and not (self.account_name and self.account_key)

    @property
    def watch_root(self) -> Path:
        """Absolute path of the directory to synchronize.

        Uses ``fallback_root`` when ``local_root`` is unset or missing, and
        the current directory when neither is configured.
        """
        base = self.local_root
        if (base is None or not base.is_dir()) and self.fallback_root is not None:
            base = self.fallback_root
        if base is None:
            base = Path.cwd()
        root = base / self.folder if self.folder else base
        return root.absolute()

    def describe(self) -> dict[str, Any]:
        """Return the settings as a dict with secrets masked."""
        data = asdict(self)
        for secret in ("account_key", "sas_token"):
            if data.get(secret):
                data[secret] = "***"
        for key, value in data.items():
            if isinstance(value, Path):
                data[key] = str(value)
        data["watch_root"] = str(self.watch_root)
        data["development_storage"] = self.uses_development_storage
        return data


_INT_FIELDS = ("workers", "queue_size", "max_retries")
_FLOAT_FIELDS = ("retry_delay", "max_retry_delay", "timeout", "poll_interval")
_BOOL_FIELDS = ("grant_access",)


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw file/env value to the type of the named field."""
    try:
        if name in _INT_FIELDS:
            return int(value)
        if name in _FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e
    if name in _BOOL_FIELDS and isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if name in _BOOL_FIELDS:
        return bool(value)
    return value


def load_config_file(path: Path) -> dict[str, Any]:
    """Read settings from a JSON config file.

    Args:
        path: Config file path

    Returns:
        Mapping of field name to value (empty if the file does not exist)

    Raises:
        ConfigError: If the file is not a JSON object or has unknown keys
    """
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(SyncConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")

    return {key: _coerce(key, value) for key, value in data.items()}


def load_config(
    path: Optional[Union[str, Path]] = None, **overrides: Any
) -> SyncConfig:
    """Build the effective configuration.

    Args:
        path: JSON config file (defaults to ~/.config/blobsync/config.json)
        **overrides: Field values that take precedence over everything else;
            None values are ignored

    Returns:
        Validated SyncConfig

    Raises:
        ConfigError: If any layer holds an invalid value
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if path and not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    values: dict[str, Any] = load_config_file(config_path)

    for env_name, field_name in ENV_VARS.items():
        env_value = os.environ.get(env_name)
        if env_value:
            values[field_name] = _coerce(field_name, env_value)

    for key, value in overrides.items():
        if value is None:
            continue
        if key not in {f.name for f in fields(SyncConfig)}:
            raise ConfigError(f"Unknown setting: {key}")
        values[key] = _coerce(key, value)

    try:
        return SyncConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
