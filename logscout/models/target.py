"""Server (target) configuration models."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AuthConfig:
    """How to authenticate to a server: "key", "agent" or "password"."""

    method: str = "agent"
    key_path: str = ""


@dataclass(frozen=True)
class LogFolder:
    """A directory on a server plus optional filename glob filters."""

    path: str
    name: str = ""
    file_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class Defaults:
    """Values applied to servers that don't set them."""

    ssh_key: str = ""
    ssh_port: int = 22
    tail_lines: int = 100
    poll_interval: float = 5.0


@dataclass(frozen=True)
class Target:
    """A configured remote host identity."""

    name: str
    host: str
    user: str
    port: int = 22
    auth: AuthConfig = field(default_factory=AuthConfig)
    sudo: bool = False
    log_path: str = ""
    file_patterns: tuple[str, ...] = ()
    log_folders: tuple[LogFolder, ...] = ()

    @property
    def key(self) -> str:
        """Pool key identifying this target's connection."""
        return f"{self.user}@{self.host}:{self.port}"

    def effective_folders(self) -> list[LogFolder]:
        """Folders to browse.

        Returns log_folders when set, otherwise a single unnamed folder
        built from the legacy log_path/file_patterns fields.
        """
        if self.log_folders:
            return list(self.log_folders)
        return [LogFolder(path=self.log_path, file_patterns=self.file_patterns)]
