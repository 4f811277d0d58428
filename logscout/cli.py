"""Command line interface.

One-shot commands (``servers``, ``ls``, ``stat``, ``download``) talk to the
pool and executors directly. ``tail`` drives a SessionCoordinator through
the console presenter until the stream ends or Ctrl-C.
"""

import asyncio
import logging
import posixpath
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, TypeVar

import asyncssh
import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from logscout import __version__
from logscout.config import Config, Settings
from logscout.dependencies import Dependencies
from logscout.models import CommandOpts, LogFolder, Target
from logscout.services.errors import ConfigError, ConnectError, LogScoutError
from logscout.services.executors import download_file, format_size, list_files, stat_file
from logscout.ui.console import ConsolePresenter, files_table
from logscout.utils.console import configure_logging

logger = logging.getLogger(__name__)

stdout_console = Console()
stderr_console = Console(stderr=True)

T = TypeVar("T")

app = typer.Typer(
    name="logscout",
    add_completion=False,
    help="Browse and tail log files on remote servers over SSH",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@dataclass
class CliState:
    """Options shared by every command."""

    settings: Settings
    config_path: Optional[Path] = None


def _version_callback(value: bool) -> None:
    if value:
        stdout_console.print(f"logscout {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Servers file (default: $LOGSCOUT_CONFIG or config.yaml)",
    ),
    debug: Optional[Path] = typer.Option(
        None,
        "--debug",
        help="Write a DEBUG log to this file",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """
    logscout - browse and tail remote log files

    Servers and their log folders come from a YAML servers file.
    """
    settings = Settings.from_env()
    if debug is not None:
        settings.debug_log = str(debug)
    configure_logging(
        level=settings.log_level,
        use_colors=settings.log_colors,
        debug_log=settings.debug_log,
    )
    ctx.obj = CliState(settings=settings, config_path=config)


def _fail(message: str) -> typer.Exit:
    stderr_console.print(f"[red]Error:[/red] {escape(message)}")
    return typer.Exit(1)


def _load(ctx: typer.Context) -> Dependencies:
    state: CliState = ctx.obj
    try:
        config = Config.load(state.config_path, settings=state.settings)
    except ConfigError as e:
        raise _fail(str(e)) from None
    return Dependencies.from_config(config)


def _server(deps: Dependencies, name: str) -> Target:
    target = deps.config.get_server(name)
    if target is None:
        raise _fail(f"Server {name!r} not found")
    return target


def _folder(target: Target, path: Optional[str]) -> LogFolder:
    folders = target.effective_folders()
    if path is None:
        return folders[0]
    for folder in folders:
        if folder.path == path:
            return folder
    return LogFolder(path=path)


def _ask_sudo(deps: Dependencies, target: Target) -> CommandOpts:
    if not target.sudo:
        return CommandOpts()
    password = Prompt.ask(
        f"Sudo password for {target.name}", password=True, console=stderr_console
    )
    if not password:
        raise _fail("Sudo password cancelled")
    deps.pool.set_sudo_password(target, password)
    return CommandOpts(sudo_password=password)


def _run_remote(
    deps: Dependencies,
    target: Target,
    work: Callable[[asyncssh.SSHClientConnection], Awaitable[T]],
) -> T:
    """Connect to target, run work on the connection, then close the pool."""
    timeout = deps.config.settings.connect_timeout

    async def runner() -> T:
        try:
            try:
                conn = await asyncio.wait_for(deps.pool.get_client(target), timeout)
            except TimeoutError:
                raise ConnectError(target.key, f"timed out after {timeout}s") from None
            return await work(conn)
        finally:
            await deps.cleanup()

    try:
        return asyncio.run(runner())
    except LogScoutError as e:
        raise _fail(str(e)) from None
    except OSError as e:
        raise _fail(str(e)) from None


@app.command("servers")
def servers_command(ctx: typer.Context) -> None:
    """List configured servers."""
    deps = _load(ctx)
    table = Table(title="Servers")
    table.add_column("Name", style="cyan")
    table.add_column("Address")
    table.add_column("Auth")
    table.add_column("Sudo")
    table.add_column("Folders")
    for target in deps.config.servers:
        folders = ", ".join(f.path for f in target.effective_folders())
        table.add_row(
            target.name,
            target.key,
            target.auth.method,
            "yes" if target.sudo else "",
            folders,
        )
    stdout_console.print(table)


@app.command("ls")
def ls_command(
    ctx: typer.Context,
    server: str = typer.Argument(..., help="Server name"),
    folder: Optional[str] = typer.Option(
        None, "--folder", "-f", help="Folder path (default: the server's first folder)"
    ),
) -> None:
    """List the log files in a server folder."""
    deps = _load(ctx)
    target = _server(deps, server)
    log_folder = _folder(target, folder)
    opts = _ask_sudo(deps, target)
    timeout = deps.config.settings.command_timeout

    files = _run_remote(
        deps,
        target,
        lambda conn: list_files(
            conn, log_folder.path, log_folder.file_patterns, opts, timeout=timeout
        ),
    )
    stdout_console.print(files_table(f"{target.name}:{log_folder.path}", files))


@app.command("stat")
def stat_command(
    ctx: typer.Context,
    server: str = typer.Argument(..., help="Server name"),
    path: str = typer.Argument(..., help="Remote file path"),
) -> None:
    """Show size and modification time of a remote file."""
    deps = _load(ctx)
    target = _server(deps, server)
    opts = _ask_sudo(deps, target)
    timeout = deps.config.settings.command_timeout

    entry = _run_remote(
        deps, target, lambda conn: stat_file(conn, path, opts, timeout=timeout)
    )
    modified = entry.mod_time.strftime("%Y-%m-%d %H:%M:%S") if entry.mod_time else "-"
    kind = "directory" if entry.is_dir else "file"
    stdout_console.print(
        f"[cyan]{path}[/cyan]  {kind}  {format_size(entry.size)}  {modified}"
    )


@app.command("download")
def download_command(
    ctx: typer.Context,
    server: str = typer.Argument(..., help="Server name"),
    remote: str = typer.Argument(..., help="Remote file path"),
    dest: Path = typer.Option(Path("."), "--dest", "-d", help="Local directory"),
) -> None:
    """Download a remote file."""
    deps = _load(ctx)
    target = _server(deps, server)
    opts = _ask_sudo(deps, target)
    local_path = dest / posixpath.basename(remote)

    size = _run_remote(
        deps, target, lambda conn: download_file(conn, remote, local_path, opts)
    )
    stdout_console.print(f"[green]Downloaded[/green] {local_path} ({format_size(size)})")


async def _tail(
    deps: Dependencies,
    presenter: ConsolePresenter,
    server: str,
    folder: Optional[str],
    file: str,
) -> bool:
    coordinator = deps.coordinator(presenter)
    pump: asyncio.Task[Any] = asyncio.create_task(
        coordinator.dispatcher.run(), name="dispatcher"
    )
    try:
        if coordinator.auto_select(server, folder, file):
            await presenter.finished.wait()
    finally:
        await coordinator.shutdown()
        await pump
    return not presenter.failed


@app.command("tail")
def tail_command(
    ctx: typer.Context,
    server: str = typer.Argument(..., help="Server name"),
    file: str = typer.Option(..., "--file", help="File name inside the folder"),
    folder: Optional[str] = typer.Option(
        None, "--folder", "-f", help="Folder path on multi-folder servers"
    ),
) -> None:
    """Show the last lines of a file and follow it until Ctrl-C."""
    deps = _load(ctx)
    target = _server(deps, server)
    _ask_sudo(deps, target)
    presenter = ConsolePresenter(console=stderr_console, show_listing=False)

    try:
        ok = asyncio.run(_tail(deps, presenter, target.name, folder, file))
    except KeyboardInterrupt:
        logger.debug("Interrupted, tail shut down")
        return
    if not ok:
        raise typer.Exit(1)


def run() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    run()
