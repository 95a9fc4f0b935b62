"""
Agent configuration module.

Manages agent configuration including the coordinator URL, log sink,
workspace location, toolchain settings and artifact storage. Configuration
can be loaded from files or environment variables.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from platformdirs import user_config_dir, user_data_dir


# ============================================================================
# Constants
# ============================================================================

APP_NAME = "macbridge"
APP_AUTHOR = "MacBridge"
CONFIG_FILENAME = "agent-config.yaml"

# Environment variable names
ENV_SERVER_URL = "MACBRIDGE_SERVER_URL"
ENV_LOG_SINK_URL = "MACBRIDGE_LOG_SINK_URL"
ENV_LOG_LEVEL = "MACBRIDGE_LOG_LEVEL"
ENV_WORK_DIR = "MACBRIDGE_WORK_DIR"
ENV_STORAGE_BACKEND = "MACBRIDGE_STORAGE_BACKEND"
ENV_CONFIG_PATH = "MACBRIDGE_CONFIG_PATH"

# Default values
DEFAULT_POLL_INTERVAL = 10  # seconds
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds
DEFAULT_TOOLCHAIN_TIMEOUT = 1800  # seconds
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_DOWNLOAD_ATTEMPTS = 3
DEFAULT_UPLOAD_ATTEMPTS = 3
DEFAULT_DEPENDENCY_ATTEMPTS = 2
DEFAULT_REPORT_ATTEMPTS = 1
DEFAULT_RECONNECT_DELAY = 5.0  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 60.0  # seconds
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_KEYCHAIN_PATH = "~/Library/Keychains/login.keychain-db"
DEFAULT_PROFILES_DIR = "~/Library/MobileDevice/Provisioning Profiles"

STORAGE_BACKENDS = ("local", "s3", "gcs")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# URL validation regex
URL_PATTERN = re.compile(
    r"^https?://"  # http:// or https://
    r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|"  # domain
    r"localhost|"  # localhost
    r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"  # ...or ip
    r"(?::\d+)?"  # optional port
    r"(?:/?|[/?]\S+)$",
    re.IGNORECASE,
)
WS_URL_PATTERN = re.compile(r"^wss?://\S+$", re.IGNORECASE)

# Keys accepted by set_value(), with their types
SETTABLE_KEYS: Dict[str, type] = {
    "server_url": str,
    "log_sink_url": str,
    "log_level": str,
    "work_dir": str,
    "poll_interval_seconds": int,
    "request_timeout_seconds": float,
    "toolchain_timeout_seconds": int,
    "max_redirects": int,
    "download_attempts": int,
    "upload_attempts": int,
    "dependency_attempts": int,
    "report_attempts": int,
    "reconnect_delay_seconds": float,
    "max_reconnect_delay_seconds": float,
    "flutter_path": str,
    "security_path": str,
    "keychain_path": str,
    "provisioning_profiles_dir": str,
    "storage.backend": str,
    "storage.bucket": str,
    "storage.prefix": str,
    "storage.region": str,
    "storage.public_base_url": str,
    "storage.local_dir": str,
}


# ============================================================================
# Exceptions
# ============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    pass


# ============================================================================
# Helper Functions
# ============================================================================


def get_default_config_dir() -> Path:
    """
    Get the default configuration directory for the current platform.

    Returns:
        Path to the platform-appropriate config directory
    """
    return Path(user_config_dir(APP_NAME, APP_AUTHOR))


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return get_default_config_dir() / CONFIG_FILENAME


def get_default_work_dir() -> Path:
    """Get the default root for job workspaces and outputs."""
    return Path(user_data_dir(APP_NAME, APP_AUTHOR))


# ============================================================================
# AgentConfig Class
# ============================================================================


class AgentConfig:
    """
    Agent configuration manager.

    Handles loading, saving, and validating agent configuration.
    Configuration sources (in priority order):
    1. Environment variables
    2. Configuration file
    3. Default values

    Attributes:
        server_url: Coordinator base URL (jobs/next and jobs/result live under it)
        log_sink_url: WebSocket URL of the log collector (empty disables relay)
        work_dir: Root for the jobs/ and outputs/ directories
        poll_interval_seconds: Interval between job polls
        toolchain_timeout_seconds: Wall-clock bound for each toolchain command
        storage: Artifact storage settings (backend, bucket, prefix, ...)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config_dir: Optional[Path] = None,
    ):
        """
        Initialize agent configuration.

        Args:
            config_path: Explicit path to config file (takes precedence)
            config_dir: Directory containing config file
        """
        if config_path:
            self._config_path = Path(config_path)
            self._config_dir = self._config_path.parent
        elif config_dir:
            self._config_dir = Path(config_dir)
            self._config_path = self._config_dir / CONFIG_FILENAME
        else:
            env_path = os.environ.get(ENV_CONFIG_PATH)
            if env_path:
                self._config_path = Path(env_path)
                self._config_dir = self._config_path.parent
            else:
                self._config_dir = get_default_config_dir()
                self._config_path = self._config_dir / CONFIG_FILENAME

        # Initialize with defaults
        self._server_url: str = ""
        self._log_sink_url: str = ""
        self._log_level: str = DEFAULT_LOG_LEVEL
        self._work_dir: str = ""
        self.poll_interval_seconds: int = DEFAULT_POLL_INTERVAL
        self.request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT
        self.toolchain_timeout_seconds: int = DEFAULT_TOOLCHAIN_TIMEOUT
        self.max_redirects: int = DEFAULT_MAX_REDIRECTS
        self.download_attempts: int = DEFAULT_DOWNLOAD_ATTEMPTS
        self.upload_attempts: int = DEFAULT_UPLOAD_ATTEMPTS
        self.dependency_attempts: int = DEFAULT_DEPENDENCY_ATTEMPTS
        self.report_attempts: int = DEFAULT_REPORT_ATTEMPTS
        self.reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY
        self.max_reconnect_delay_seconds: float = DEFAULT_MAX_RECONNECT_DELAY
        self.flutter_path: str = "flutter"
        self.security_path: str = "security"
        self.keychain_path: str = DEFAULT_KEYCHAIN_PATH
        self.provisioning_profiles_dir: str = DEFAULT_PROFILES_DIR
        self._storage: Dict[str, Any] = {"backend": "local"}

        self._load()

    @property
    def config_path(self) -> Path:
        """Get the configuration file path."""
        return self._config_path

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory."""
        return self._config_dir

    # -------------------------------------------------------------------------
    # Environment-overridable Properties
    # -------------------------------------------------------------------------

    @property
    def server_url(self) -> str:
        """Get the coordinator URL."""
        return os.environ.get(ENV_SERVER_URL, self._server_url).rstrip("/")

    @server_url.setter
    def server_url(self, value: str) -> None:
        self._server_url = value

    @property
    def log_sink_url(self) -> str:
        """Get the log collector WebSocket URL."""
        return os.environ.get(ENV_LOG_SINK_URL, self._log_sink_url)

    @log_sink_url.setter
    def log_sink_url(self, value: str) -> None:
        self._log_sink_url = value

    @property
    def log_level(self) -> str:
        """Get the log level."""
        return os.environ.get(ENV_LOG_LEVEL, self._log_level)

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._log_level = value

    @property
    def work_dir(self) -> Path:
        """Get the root directory for job workspaces and outputs."""
        value = os.environ.get(ENV_WORK_DIR, self._work_dir)
        if value:
            return Path(value).expanduser()
        return get_default_work_dir()

    @work_dir.setter
    def work_dir(self, value: str) -> None:
        self._work_dir = str(value)

    @property
    def storage(self) -> Dict[str, Any]:
        """Get the artifact storage settings."""
        storage = dict(self._storage)
        env_backend = os.environ.get(ENV_STORAGE_BACKEND)
        if env_backend:
            storage["backend"] = env_backend
        storage.setdefault("backend", "local")
        if storage["backend"] == "local" and not storage.get("local_dir"):
            storage["local_dir"] = str(self.published_dir)
        return storage

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def jobs_dir(self) -> Path:
        """Temporary per-job workspaces."""
        return self.work_dir / "jobs"

    @property
    def outputs_dir(self) -> Path:
        """Completed build artifacts, one per job."""
        return self.work_dir / "outputs"

    @property
    def published_dir(self) -> Path:
        """Default target of the local storage backend."""
        return self.work_dir / "published"

    @property
    def is_configured(self) -> bool:
        """Check if the agent is configured with a coordinator URL."""
        return bool(self.server_url)

    # -------------------------------------------------------------------------
    # Configuration Management
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        """Load configuration from file."""
        if not self._config_path.exists():
            return

        try:
            with open(self._config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file: {e}")

        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping")

        self._server_url = str(data.get("server_url") or "")
        self._log_sink_url = str(data.get("log_sink_url") or "")
        self._log_level = str(data.get("log_level") or DEFAULT_LOG_LEVEL)
        self._work_dir = str(data.get("work_dir") or "")

        for key, value_type in SETTABLE_KEYS.items():
            if "." in key or key.startswith(("server_url", "log_", "work_dir")):
                continue
            if key in data:
                try:
                    setattr(self, key, value_type(data[key]))
                except (TypeError, ValueError):
                    raise ConfigError(f"Invalid value for {key}: {data[key]!r}")

        storage = data.get("storage", {}) or {}
        if not isinstance(storage, dict):
            raise ConfigError("`storage` must be a mapping")
        self._storage = {"backend": "local", **storage}

    def to_dict(self) -> Dict[str, Any]:
        """Return the persisted configuration values."""
        data: Dict[str, Any] = {
            "server_url": self._server_url,
            "log_sink_url": self._log_sink_url,
            "log_level": self._log_level,
            "work_dir": self._work_dir,
        }
        for key in SETTABLE_KEYS:
            if key in data or "." in key:
                continue
            data[key] = getattr(self, key)
        data["storage"] = dict(self._storage)
        return data

    def save(self) -> None:
        """Save configuration to file."""
        self._config_dir.mkdir(parents=True, exist_ok=True)

        with open(self._config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    def set_value(self, key: str, raw_value: str) -> Any:
        """
        Set a configuration value from its string form.

        Args:
            key: Configuration key (storage settings use "storage.<name>")
            raw_value: Value as typed on the command line

        Returns:
            The converted value

        Raises:
            ConfigError: If the key is unknown or the value cannot be converted
        """
        if key not in SETTABLE_KEYS:
            raise ConfigError(f"Unknown configuration key: {key}")

        try:
            value = SETTABLE_KEYS[key](raw_value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for {key}: {raw_value!r}")

        if key.startswith("storage."):
            self._storage[key.split(".", 1)[1]] = value
        else:
            setattr(self, key, value)
        return value

    def validate(self) -> None:
        """
        Validate the current configuration.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        if self.server_url and not URL_PATTERN.match(self.server_url):
            raise ConfigValidationError(
                f"Invalid server_url format: {self.server_url}"
            )

        if self.log_sink_url and not WS_URL_PATTERN.match(self.log_sink_url):
            raise ConfigValidationError(
                f"log_sink_url must be a ws:// or wss:// URL, got: {self.log_sink_url}"
            )

        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigValidationError(f"Invalid log_level: {self.log_level}")

        if self.poll_interval_seconds <= 0:
            raise ConfigValidationError(
                f"poll_interval_seconds must be positive, got: {self.poll_interval_seconds}"
            )

        if self.toolchain_timeout_seconds <= 0:
            raise ConfigValidationError(
                f"toolchain_timeout_seconds must be positive, got: {self.toolchain_timeout_seconds}"
            )

        if self.max_redirects < 0:
            raise ConfigValidationError(
                f"max_redirects must be non-negative, got: {self.max_redirects}"
            )

        for key in ("download_attempts", "upload_attempts", "dependency_attempts", "report_attempts"):
            if getattr(self, key) < 1:
                raise ConfigValidationError(f"{key} must be at least 1, got: {getattr(self, key)}")

        if self.reconnect_delay_seconds <= 0 or self.max_reconnect_delay_seconds < self.reconnect_delay_seconds:
            raise ConfigValidationError(
                "reconnect_delay_seconds must be positive and not exceed max_reconnect_delay_seconds"
            )

        storage = self.storage
        backend = storage.get("backend")
        if backend not in STORAGE_BACKENDS:
            raise ConfigValidationError(
                f"storage.backend must be one of {', '.join(STORAGE_BACKENDS)}, got: {backend}"
            )
        if backend in ("s3", "gcs") and not storage.get("bucket"):
            raise ConfigValidationError(f"storage.bucket is required for the {backend} backend")
