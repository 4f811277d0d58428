"""Application settings from environment variables.

Centralized environment variable parsing and validation.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Application settings from environment.

    Handles parsing, validation, and defaults for all env vars.
    """

    config_path: str = field(default="config.yaml")

    # Timeouts (seconds)
    connect_timeout: float = field(default=15.0)
    dial_timeout: float = field(default=10.0)
    keepalive_timeout: float = field(default=5.0)
    command_timeout: float = field(default=15.0)
    shutdown_timeout: float = field(default=3.0)

    # Host key verification
    known_hosts: str | None = field(default=None)

    # Logging
    log_level: str = field(default="WARNING")
    log_colors: bool = field(default=True)
    debug_log: str | None = field(default=None)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables.

        Returns:
            Settings instance with values from environment
        """
        return cls(
            config_path=os.getenv("LOGSCOUT_CONFIG", "config.yaml"),
            connect_timeout=cls._get_float("LOGSCOUT_CONNECT_TIMEOUT", 15.0),
            dial_timeout=cls._get_float("LOGSCOUT_DIAL_TIMEOUT", 10.0),
            keepalive_timeout=cls._get_float("LOGSCOUT_KEEPALIVE_TIMEOUT", 5.0),
            command_timeout=cls._get_float("LOGSCOUT_COMMAND_TIMEOUT", 15.0),
            shutdown_timeout=cls._get_float("LOGSCOUT_SHUTDOWN_TIMEOUT", 3.0),
            known_hosts=cls._get_known_hosts(),
            log_level=os.getenv("LOGSCOUT_LOG_LEVEL", "WARNING").upper(),
            log_colors=cls._get_bool("LOGSCOUT_LOG_COLORS", True),
            debug_log=os.getenv("LOGSCOUT_DEBUG_LOG") or None,
        )

    @staticmethod
    def _get_float(key: str, default: float) -> float:
        """Get a positive number of seconds from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        try:
            parsed = float(value)
        except ValueError:
            logger.warning("Invalid number for %s: %s, using default %s", key, value, default)
            return default

        if parsed <= 0:
            logger.warning("%s must be > 0, got %s. Using default: %s", key, parsed, default)
            return default
        return parsed

    @staticmethod
    def _get_bool(key: str, default: bool) -> bool:
        """Get boolean from environment.

        Args:
            key: Environment variable key
            default: Default value if not set

        Returns:
            Boolean value from environment or default
        """
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _get_known_hosts() -> str | None:
        """Path to known_hosts file, or None to disable verification.

        Environment: LOGSCOUT_KNOWN_HOSTS
        Default: ~/.ssh/known_hosts when it exists
        Special value: "none" disables verification

        Returns:
            Path to known_hosts file or None if disabled
        """
        value = os.getenv("LOGSCOUT_KNOWN_HOSTS", "").strip()

        if value.lower() == "none":
            logger.warning(
                "SSH host key verification DISABLED (LOGSCOUT_KNOWN_HOSTS=none)"
            )
            return None

        if value:
            return os.path.expanduser(value)

        default = Path.home() / ".ssh" / "known_hosts"
        if not default.exists():
            logger.warning(
                "~/.ssh/known_hosts not found, host key verification disabled. "
                "Set LOGSCOUT_KNOWN_HOSTS to enable it."
            )
            return None
        return str(default)
