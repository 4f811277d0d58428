"""Data models for logscout."""

from logscout.models.command import CommandOpts
from logscout.models.files import FileEntry
from logscout.models.selection import Selection
from logscout.models.ssh import PooledConnection
from logscout.models.target import AuthConfig, Defaults, LogFolder, Target

__all__ = [
    "AuthConfig",
    "CommandOpts",
    "Defaults",
    "FileEntry",
    "LogFolder",
    "PooledConnection",
    "Selection",
    "Target",
]
