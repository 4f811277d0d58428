"""Application configuration.

Aggregates environment settings with the servers file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from logscout.config.loader import load_servers
from logscout.config.settings import Settings
from logscout.models import Defaults, Target

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Application configuration."""

    settings: Settings = field(default_factory=Settings)
    defaults: Defaults = field(default_factory=Defaults)
    servers: list[Target] = field(default_factory=list)

    @classmethod
    def load(cls, path: Path | str | None = None, settings: Settings | None = None) -> "Config":
        """Load settings from the environment and servers from the YAML file.

        Args:
            path: Servers file, defaults to settings.config_path
            settings: Pre-built settings, defaults to Settings.from_env()

        Raises:
            ConfigError: If the servers file is invalid
        """
        settings = settings or Settings.from_env()
        defaults, servers = load_servers(path or settings.config_path)
        logger.info("Config loaded, %d servers", len(servers))
        return cls(settings=settings, defaults=defaults, servers=servers)

    def get_server(self, name: str) -> Target | None:
        """Find a server by name, case-insensitively."""
        wanted = name.lower()
        for server in self.servers:
            if server.name.lower() == wanted:
                return server
        return None
