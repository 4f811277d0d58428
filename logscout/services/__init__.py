"""Services for logscout."""

from logscout.services.coordinator import SessionCoordinator
from logscout.services.dispatch import UpdateDispatcher
from logscout.services.errors import (
    AuthConfigError,
    CommandError,
    ConfigError,
    ConnectError,
    LogScoutError,
    SudoAuthError,
    TailEnded,
)
from logscout.services.executors import (
    download_file,
    format_size,
    list_files,
    read_file_content,
    run_command,
    stat_file,
)
from logscout.services.pool import ConnectionPool
from logscout.services.tailer import Tailer, start_tail

__all__ = [
    "AuthConfigError",
    "CommandError",
    "ConfigError",
    "ConnectError",
    "ConnectionPool",
    "LogScoutError",
    "SessionCoordinator",
    "SudoAuthError",
    "TailEnded",
    "Tailer",
    "UpdateDispatcher",
    "download_file",
    "format_size",
    "list_files",
    "read_file_content",
    "run_command",
    "start_tail",
    "stat_file",
]
