"""Protocol interfaces between the core and the presentation layer.

The coordinator drives whatever implements Presenter; the tailer writes
into whatever implements TailSink. Neither cares how things are drawn.

Usage Example:

    from logscout.protocols import Presenter

    class MyPresenter:
        def show_files(self, target, folder, files, show_up_dir):
            ...

    coordinator = SessionCoordinator(pool, MyPresenter())

Every Presenter method is called on the event loop, either directly from
an intent handler or through the UpdateDispatcher. Implementations must
not block.
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from logscout.models import FileEntry, LogFolder, Target


@runtime_checkable
class TailSink(Protocol):
    """Append-only byte destination for streamed file content."""

    def write(self, data: bytes) -> Any:
        """Append data."""
        ...


@runtime_checkable
class SSHConnectionPool(Protocol):
    """Protocol for SSH connection pooling.

    Example implementation:
        class MyPool:
            async def get_client(self, target: Target) -> asyncssh.SSHClientConnection:
                # Reuse a live connection or dial a new one
                return connection
    """

    async def get_client(self, target: Target) -> Any:
        """Get a live connection for target.

        Raises:
            ConnectError: If unable to connect
        """
        ...

    async def close_all(self) -> None:
        """Close all pooled connections."""
        ...

    def set_sudo_password(self, target: Target, password: str) -> None:
        """Cache a sudo password for target."""
        ...

    def get_sudo_password(self, target: Target) -> str:
        """Return the cached sudo password, or empty string."""
        ...

    def clear_sudo_password(self, target: Target) -> None:
        """Forget the cached sudo password."""
        ...


@runtime_checkable
class Presenter(Protocol):
    """What the coordinator needs from the presentation layer."""

    @property
    def sink(self) -> TailSink:
        """Destination for live tail output."""
        ...

    def set_context(self, message: str) -> None:
        """Show a status/context message."""
        ...

    def show_error(self, message: str) -> None:
        """Show an error message without changing focus."""
        ...

    def show_connect_error(self, message: str) -> None:
        """Show a connection/listing failure and return focus to the server list."""
        ...

    def focus_servers(self) -> None:
        """Return focus to the server list."""
        ...

    def clear_files(self) -> None:
        """Clear the file list."""
        ...

    def clear_viewer(self) -> None:
        """Clear the file viewer."""
        ...

    def show_folders(self, target: Target, folders: list[LogFolder]) -> None:
        """Show a multi-folder target's folders for selection."""
        ...

    def show_files(
        self,
        target: Target,
        folder: LogFolder,
        files: list[FileEntry],
        show_up_dir: bool,
    ) -> None:
        """Show a folder listing."""
        ...

    def show_content(self, text: str) -> None:
        """Replace the viewer text with a file's initial content."""
        ...

    def tail_started(self, target: Target, path: str) -> None:
        """A live tail is now streaming into sink."""
        ...

    def tail_stopped(self, target: Target | None) -> None:
        """The live tail was stopped by the user."""
        ...

    def tail_disconnected(self, message: str) -> None:
        """The live tail ended on its own."""
        ...

    def download_complete(self, local_path: str, size: str) -> None:
        """A download finished."""
        ...

    def prompt_sudo_password(
        self,
        server_name: str,
        callback: Callable[[str | None], None],
    ) -> None:
        """Ask for a sudo password; call callback with it, or None if cancelled."""
        ...
