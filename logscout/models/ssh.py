"""SSH-related data models."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import asyncssh


@dataclass
class PooledConnection:
    """A pooled SSH connection and the agent client it authenticated with."""

    connection: "asyncssh.SSHClientConnection"
    agent: Any = None

    @property
    def is_stale(self) -> bool:
        """Check if connection was closed."""
        return bool(self.connection.is_closed())

    def close(self) -> None:
        """Close the connection and any agent client it authenticated with."""
        self.connection.close()
        if self.agent is not None:
            self.agent.close()
            self.agent = None
