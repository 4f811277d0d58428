"""Dependency container for logscout.

The pool and its cached sudo passwords belong to one application
instance; pass the container around instead of reaching for globals.
"""

from dataclasses import dataclass
from pathlib import Path

from logscout.config import Config
from logscout.protocols import Presenter
from logscout.services.coordinator import SessionCoordinator
from logscout.services.dispatch import UpdateDispatcher
from logscout.services.pool import ConnectionPool


@dataclass
class Dependencies:
    """Container for logscout dependencies.

    Example:
        deps = Dependencies.create("servers.yaml")
        conn = await deps.pool.get_client(deps.config.servers[0])
        ...
        await deps.cleanup()
    """

    config: Config
    pool: ConnectionPool

    @classmethod
    def create(cls, config_path: Path | str | None = None) -> "Dependencies":
        """Load configuration and build the pool from it.

        Raises:
            ConfigError: If the servers file is invalid
        """
        return cls.from_config(Config.load(config_path))

    @classmethod
    def from_config(cls, config: Config) -> "Dependencies":
        """Build dependencies around an existing Config."""
        settings = config.settings
        pool = ConnectionPool(
            dial_timeout=settings.dial_timeout,
            keepalive_timeout=settings.keepalive_timeout,
            known_hosts=settings.known_hosts,
        )
        return cls(config=config, pool=pool)

    def coordinator(self, presenter: Presenter) -> SessionCoordinator:
        """Build a coordinator bound to this pool and configuration."""
        settings = self.config.settings
        return SessionCoordinator(
            pool=self.pool,
            presenter=presenter,
            dispatcher=UpdateDispatcher(),
            servers=self.config.servers,
            tail_lines=self.config.defaults.tail_lines,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
            shutdown_timeout=settings.shutdown_timeout,
        )

    async def cleanup(self) -> None:
        """Clean up resources (close all connections)."""
        await self.pool.close_all()
