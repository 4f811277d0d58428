"""Line-oriented presenter for the command line.

Streams file content to stdout and status to stderr. It implements the
Presenter protocol so the CLI can drive a SessionCoordinator without a
full-screen interface.
"""

import asyncio
import logging
import sys
from collections.abc import Callable
from typing import BinaryIO

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from logscout.models import FileEntry, LogFolder, Target
from logscout.services.executors import format_size

logger = logging.getLogger(__name__)


def files_table(title: str, files: list[FileEntry]) -> Table:
    """Render a listing as a rich table."""
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for entry in files:
        name = f"{entry.name}/" if entry.is_dir else entry.name
        modified = entry.mod_time.strftime("%Y-%m-%d %H:%M:%S") if entry.mod_time else ""
        table.add_row(name, "-" if entry.is_dir else format_size(entry.size), modified)
    return table


class StreamSink:
    """Writes tail output to a binary stream, flushing every chunk."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def write(self, data: bytes) -> int:
        written = self._stream.write(data)
        self._stream.flush()
        return written


class ConsolePresenter:
    """Presenter printing to a terminal.

    ``finished`` is set when there is nothing more to show: the tail ended,
    a connection failed, or a requested name wasn't found.
    """

    def __init__(
        self,
        console: Console | None = None,
        output: BinaryIO | None = None,
        show_listing: bool = True,
    ) -> None:
        self.console = console or Console(stderr=True)
        self._sink = StreamSink(output or sys.stdout.buffer)
        self.show_listing = show_listing
        self.finished = asyncio.Event()
        self.failed = False
        self._prompt_tasks: set[asyncio.Task[None]] = set()

    @property
    def sink(self) -> StreamSink:
        return self._sink

    def _fail(self) -> None:
        self.failed = True
        self.finished.set()

    def set_context(self, message: str) -> None:
        self.console.print(f"[dim]{escape(message)}[/dim]")

    def show_error(self, message: str) -> None:
        self.console.print(f"[red]{escape(message)}[/red]")
        self._fail()

    def show_connect_error(self, message: str) -> None:
        self.console.print(f"[red]{escape(message)}[/red]")
        self._fail()

    def focus_servers(self) -> None:
        self.finished.set()

    def clear_files(self) -> None:
        pass

    def clear_viewer(self) -> None:
        pass

    def show_folders(self, target: Target, folders: list[LogFolder]) -> None:
        table = Table(title=f"{target.name} folders")
        table.add_column("Name", style="cyan")
        table.add_column("Path")
        table.add_column("Patterns")
        for folder in folders:
            table.add_row(folder.name, folder.path, " ".join(folder.file_patterns))
        self.console.print(table)

    def show_files(
        self,
        target: Target,
        folder: LogFolder,
        files: list[FileEntry],
        show_up_dir: bool,
    ) -> None:
        if self.show_listing:
            self.console.print(files_table(f"{target.name}:{folder.path}", files))

    def show_content(self, text: str) -> None:
        self._sink.write(text.encode("utf-8"))

    def tail_started(self, target: Target, path: str) -> None:
        self.console.print(f"[green]Tailing[/green] {escape(target.name)}:{escape(path)}")

    def tail_stopped(self, target: Target | None) -> None:
        self.finished.set()

    def tail_disconnected(self, message: str) -> None:
        self.console.print(f"[yellow]Disconnected[/yellow]: {escape(message)}")
        self._fail()

    def download_complete(self, local_path: str, size: str) -> None:
        self.console.print(f"[green]Downloaded[/green] {local_path} ({size})")
        self.finished.set()

    def prompt_sudo_password(
        self,
        server_name: str,
        callback: Callable[[str | None], None],
    ) -> None:
        """Ask on the terminal without blocking the event loop."""

        async def ask() -> None:
            try:
                password = await asyncio.to_thread(
                    Prompt.ask,
                    f"Sudo password for {server_name}",
                    password=True,
                    console=self.console,
                )
            except (EOFError, KeyboardInterrupt):
                logger.debug("Sudo prompt for %s aborted", server_name)
                password = None
            callback(password or None)

        task = asyncio.create_task(ask(), name=f"sudo-prompt:{server_name}")
        self._prompt_tasks.add(task)
        task.add_done_callback(self._prompt_tasks.discard)
