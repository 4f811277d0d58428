"""Session coordinator: ties the user's selection to live remote work.

Holds the current server -> folder -> file selection, the single active
tail and the single in-flight connect attempt. Intent handlers
(``select_server``, ``select_file``, ...) are plain methods called on the
event loop by the presentation layer; they only cancel, never wait, and
push remote work into background tasks.

Background tasks snapshot the selection they were started for. Results are
published through the UpdateDispatcher and re-checked against the current
selection both when submitted and when applied, so work superseded by a
newer selection is dropped silently.

``_lock`` guards _selection, _tailer, _tail_task and _connect_task. It is
held only to read or swap those fields, never across an await.
"""

import asyncio
import logging
import os
import posixpath
import threading
from collections.abc import Callable, Coroutine
from dataclasses import replace
from typing import Any

from logscout.models import CommandOpts, FileEntry, LogFolder, Selection, Target
from logscout.protocols import Presenter, SSHConnectionPool
from logscout.services.dispatch import UpdateDispatcher
from logscout.services.errors import (
    CommandError,
    ConnectError,
    SudoAuthError,
)
from logscout.services.executors import (
    download_file,
    format_size,
    list_files,
    read_file_content,
)
from logscout.services.tailer import Tailer, start_tail

logger = logging.getLogger(__name__)


class _TailForwarder:
    """Sink handed to the tailer: coalesces bytes into one pending update.

    Chunks that arrive while a flush is queued are appended to the same
    buffer, so a fast stream holds at most one slot in the dispatcher.
    Bytes from a tail that is no longer current never reach the viewer,
    and they stay ordered after the initial content.
    """

    def __init__(self, coordinator: "SessionCoordinator", snapshot: Selection) -> None:
        self._coordinator = coordinator
        self._snapshot = snapshot
        self._pending = bytearray()
        self._flush_queued = False

    def write(self, data: bytes) -> int:
        if not self._coordinator._is_current(self._snapshot, file_scoped=True):
            self._pending.clear()
            return 0
        self._pending += data
        if not self._flush_queued:
            self._flush_queued = self._coordinator._publish(
                self._snapshot, self._flush, file_scoped=True
            )
            if not self._flush_queued:
                self._pending.clear()
                return 0
        return len(data)

    def _flush(self) -> None:
        data = bytes(self._pending)
        self._pending.clear()
        self._flush_queued = False
        if data:
            self._coordinator.presenter.sink.write(data)


class SessionCoordinator:
    """Serializes selection changes against connect, list and tail work."""

    def __init__(
        self,
        pool: SSHConnectionPool,
        presenter: Presenter,
        dispatcher: UpdateDispatcher | None = None,
        servers: list[Target] | None = None,
        tail_lines: int = 100,
        connect_timeout: float = 15.0,
        command_timeout: float = 15.0,
        shutdown_timeout: float = 3.0,
    ) -> None:
        self.pool = pool
        self.presenter = presenter
        self.dispatcher = dispatcher or UpdateDispatcher()
        self.servers = list(servers or [])
        self.tail_lines = tail_lines
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.shutdown_timeout = shutdown_timeout

        self._lock = threading.Lock()
        self._selection = Selection()
        self._tailer: Tailer | None = None
        self._tail_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._on_files_loaded: Callable[[list[FileEntry]], None] | None = None
        self._shutting_down = False

    @property
    def selection(self) -> Selection:
        with self._lock:
            return self._selection

    @property
    def tailer(self) -> Tailer | None:
        with self._lock:
            return self._tailer

    @property
    def connecting(self) -> bool:
        with self._lock:
            return self._connect_task is not None and not self._connect_task.done()

    # Intent handlers. Called on the event loop; never block.

    def select_server(self, target: Target) -> None:
        """Switch to a server, dropping any tail and in-flight connect."""
        logger.debug("onServerSelected: %s", target.name)
        with self._lock:
            if self._shutting_down:
                return
            self._stop_tail_locked()
            self._cancel_connect_locked()
            self._selection = self._next_selection(server=target)

        self.presenter.clear_viewer()
        self.presenter.clear_files()

        folders = target.effective_folders()
        if len(folders) > 1:
            logger.debug("%s has %d folders, showing folder list", target.name, len(folders))
            self.presenter.show_folders(target, folders)
            self.presenter.set_context(f"{target.name}: select a folder")
            return

        with self._lock:
            self._selection = replace(self._selection, folder=folders[0])
        self._connect_with_sudo(target)

    def select_folder(self, folder: LogFolder) -> None:
        """Switch folder on the current server and list it."""
        logger.debug("onFolderSelected: %s", folder.path)
        with self._lock:
            server = self._selection.server
            if server is None or self._shutting_down:
                return
            self._stop_tail_locked()
            self._cancel_connect_locked()
            self._selection = self._next_selection(server=server, folder=folder)

        self.presenter.clear_viewer()
        self._connect_with_sudo(server)

    def select_up_dir(self) -> None:
        """Leave the current folder and show the server's folder list again."""
        logger.debug("onUpDir: returning to folder list")
        with self._lock:
            if self._shutting_down:
                return
            server = self._selection.server
            self._stop_tail_locked()
            self._cancel_connect_locked()
            self._selection = self._next_selection(server=server)

        self.presenter.clear_viewer()
        if server is not None:
            self.presenter.show_folders(server, server.effective_folders())
            self.presenter.set_context(f"{server.name}: select a folder")

    def select_file(self, entry: FileEntry) -> None:
        """Show a file's last lines and start tailing it."""
        with self._lock:
            server = self._selection.server
            folder = self._selection.folder
            if server is None or folder is None or self._shutting_down:
                return
            if entry.is_dir:
                logger.debug("onFileSelected: %s is a directory, ignoring", entry.name)
                return
            self._stop_tail_locked()
            self._selection = replace(
                self._selection,
                file=entry,
                file_epoch=self._selection.file_epoch + 1,
            )
            snapshot = self._selection
            full_path = posixpath.join(folder.path, entry.name)
            self._tail_task = self._spawn(
                self._load_and_tail(snapshot, full_path),
                name=f"load-and-tail:{full_path}",
            )

        self.presenter.set_context(f"{server.name} {full_path}")
        self.presenter.clear_viewer()

    def refresh(self) -> None:
        """Re-list the current folder without touching the active tail."""
        with self._lock:
            snapshot = self._selection
            if snapshot.server is None or snapshot.folder is None or self._shutting_down:
                return
            self._spawn(self._load_files(snapshot), name=f"refresh:{snapshot.server.key}")

    def stop_tail(self) -> None:
        """Cancel the active tail. Does not wait for it to wind down."""
        with self._lock:
            server = self._selection.server
            self._stop_tail_locked()
        self.presenter.tail_stopped(server)
        if server is not None:
            self.presenter.set_context(f"Tail stopped: {server.name}")

    def download_current(self, local_dir: str, filename: str | None = None) -> None:
        """Download the selected file into local_dir in the background."""
        with self._lock:
            server = self._selection.server
            folder = self._selection.folder
            entry = self._selection.file
            if server is None or folder is None or entry is None or self._shutting_down:
                return
            remote_path = posixpath.join(folder.path, entry.name)
            local_path = os.path.join(local_dir, filename or entry.name)
            self._spawn(
                self._download(server, remote_path, local_path),
                name=f"download:{remote_path}",
            )

        self.presenter.set_context(f"Downloading {os.path.basename(local_path)}...")

    def auto_select(
        self,
        server_name: str,
        folder_path: str | None = None,
        file_name: str | None = None,
    ) -> bool:
        """Select a server, and optionally a folder and file, by name.

        The file is picked once the folder listing has been published.

        Returns:
            False if the server or folder wasn't found.
        """
        logger.debug(
            "autoStart: server=%r folder=%r file=%r", server_name, folder_path, file_name
        )
        wanted = server_name.lower()
        server = next((s for s in self.servers if s.name.lower() == wanted), None)
        if server is None:
            self.presenter.show_error(f"Server {server_name!r} not found")
            return False

        if file_name:
            self._on_files_loaded = self._file_picker(file_name)

        folders = server.effective_folders()
        if len(folders) > 1 and folder_path:
            self.select_server(server)
            folder = next((f for f in folders if f.path == folder_path), None)
            if folder is None:
                self._on_files_loaded = None
                self.presenter.show_error(
                    f"Folder {folder_path!r} not found on {server.name}"
                )
                return False
            self.select_folder(folder)
        else:
            self.select_server(server)
        return True

    async def shutdown(self) -> None:
        """Cancel everything, wait a bounded time for the tail, close the pool.

        Never hangs: if the tail doesn't finish within shutdown_timeout,
        shutdown continues anyway.
        """
        logger.info("Shutdown: start")
        with self._lock:
            self._shutting_down = True
            self._cancel_connect_locked()
            tailer = self._tailer
            self._tailer = None
            if self._tail_task is not None:
                self._tail_task.cancel()
                self._tail_task = None
            self._on_files_loaded = None

        self.dispatcher.close()

        if tailer is not None:
            tailer.request_stop()
            try:
                await asyncio.wait_for(tailer.wait_stopped(), timeout=self.shutdown_timeout)
                logger.debug("Shutdown: tail finished")
            except TimeoutError:
                logger.warning(
                    "Shutdown: tail of %s did not stop within %ss, continuing",
                    tailer.path,
                    self.shutdown_timeout,
                )

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=self.shutdown_timeout)

        await self.pool.close_all()
        logger.info("Shutdown: done")

    # Guarded-state helpers. Callers hold _lock.

    def _next_selection(
        self, server: Target | None, folder: LogFolder | None = None
    ) -> Selection:
        return Selection(
            server=server,
            folder=folder,
            epoch=self._selection.epoch + 1,
            file_epoch=self._selection.file_epoch + 1,
        )

    def _stop_tail_locked(self) -> None:
        # Cancel only. Waiting here could deadlock the loop that the tail
        # is trying to deliver output to.
        if self._tail_task is not None:
            self._tail_task.cancel()
            self._tail_task = None
        if self._tailer is not None:
            self._tailer.request_stop()
            self._tailer = None
        self._selection = replace(
            self._selection, file_epoch=self._selection.file_epoch + 1
        )

    def _cancel_connect_locked(self) -> None:
        if self._connect_task is not None:
            self._connect_task.cancel()
            self._connect_task = None

    # Publication with stale suppression.

    def _is_current(self, snapshot: Selection, file_scoped: bool) -> bool:
        with self._lock:
            if self._shutting_down:
                return False
            current = self._selection
        if file_scoped:
            return snapshot.same_file(current)
        return snapshot.same_listing(current)

    def _publish(
        self,
        snapshot: Selection,
        fn: Callable[..., Any],
        *args: Any,
        file_scoped: bool = False,
    ) -> bool:
        """Submit fn(*args) if snapshot is still current. Returns False if dropped."""
        if not self._is_current(snapshot, file_scoped):
            logger.debug("Dropping stale result %s", getattr(fn, "__name__", fn))
            return False
        return self.dispatcher.submit(self._apply_if_current, snapshot, file_scoped, fn, args)

    def _apply_if_current(
        self,
        snapshot: Selection,
        file_scoped: bool,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
    ) -> None:
        if not self._is_current(snapshot, file_scoped):
            logger.debug("Dropping stale update %s", getattr(fn, "__name__", fn))
            return
        fn(*args)

    # Background work.

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Task %s failed", task.get_name(), exc_info=exc)

    def _opts(self, target: Target) -> CommandOpts:
        if target.sudo:
            return CommandOpts(sudo_password=self.pool.get_sudo_password(target))
        return CommandOpts()

    def _connect_with_sudo(self, target: Target) -> None:
        """Connect, first asking for a sudo password if one is needed."""
        if target.sudo and not self.pool.get_sudo_password(target):
            snapshot = self.selection
            self.presenter.prompt_sudo_password(
                target.name,
                lambda password: self._on_sudo_password(
                    snapshot, password, lambda: self._start_connection(target)
                ),
            )
            return
        self._start_connection(target)

    def _on_sudo_password(
        self,
        snapshot: Selection,
        password: str | None,
        retry: Callable[[], None],
    ) -> None:
        if not self._is_current(snapshot, file_scoped=False):
            logger.debug("Sudo password for a superseded selection, ignoring")
            return
        if not password:
            self.presenter.set_context("Sudo password cancelled")
            self.presenter.focus_servers()
            return
        self.pool.set_sudo_password(snapshot.server, password)
        retry()

    def _prompt_sudo_retry(self, snapshot: Selection, retry: Callable[[], None]) -> None:
        """Runs on the loop after sudo rejected the cached password."""
        self.presenter.show_error("Sudo authentication failed, try again")
        self.presenter.prompt_sudo_password(
            snapshot.server.name,
            lambda password: self._on_sudo_password(snapshot, password, retry),
        )

    def _start_connection(self, target: Target) -> None:
        with self._lock:
            self._cancel_connect_locked()
            snapshot = self._selection
            if snapshot.folder is None or self._shutting_down:
                return
            self._connect_task = self._spawn(
                self._load_files(snapshot), name=f"connect:{target.key}"
            )
        logger.debug("startConnection: %s", target.key)
        self.presenter.set_context(f"Connecting to {target.name}...")

    async def _load_files(self, snapshot: Selection) -> None:
        target = snapshot.server
        folder = snapshot.folder
        logger.debug("loadFilesForFolder: %s (folder=%s)", target.key, folder.path)
        try:
            try:
                async with asyncio.timeout(self.connect_timeout):
                    conn = await self.pool.get_client(target)
            except TimeoutError:
                raise ConnectError(
                    target.key, f"timed out after {self.connect_timeout}s"
                ) from None
            files = await list_files(
                conn,
                folder.path,
                folder.file_patterns,
                self._opts(target),
                timeout=self.command_timeout,
            )
        except asyncio.CancelledError:
            logger.debug("loadFilesForFolder: %s cancelled", target.key)
            raise
        except ConnectError as e:
            logger.info("loadFilesForFolder: connect failed: %s", e)
            self._publish(
                snapshot, self.presenter.show_connect_error, f"Unable to connect: {e}"
            )
        except SudoAuthError:
            logger.info("loadFilesForFolder: sudo authentication failed for %s", target.key)
            self.pool.clear_sudo_password(target)
            self._publish(
                snapshot,
                self._prompt_sudo_retry,
                snapshot,
                lambda: self._start_connection(target),
            )
        except CommandError as e:
            logger.info("loadFilesForFolder: listing failed: %s", e)
            self._publish(
                snapshot, self.presenter.show_connect_error, f"Unable to list files: {e}"
            )
        else:
            logger.debug("loadFilesForFolder: got %d files", len(files))
            self._publish(snapshot, self._files_loaded, target, folder, files)
        finally:
            with self._lock:
                if self._connect_task is asyncio.current_task():
                    self._connect_task = None

    def _files_loaded(self, target: Target, folder: LogFolder, files: list[FileEntry]) -> None:
        show_up_dir = len(target.effective_folders()) > 1
        self.presenter.show_files(target, folder, files, show_up_dir)
        self.presenter.set_context(f"{target.name}: select a file")
        callback = self._on_files_loaded
        self._on_files_loaded = None
        if callback is not None:
            callback(files)

    def _file_picker(self, file_name: str) -> Callable[[list[FileEntry]], None]:
        wanted = file_name.lower()

        def pick(files: list[FileEntry]) -> None:
            entry = next((f for f in files if f.name.lower() == wanted), None)
            if entry is None:
                logger.debug("onFilesLoaded: file %r not found", file_name)
                self.presenter.show_error(f"File {file_name!r} not found")
                return
            self.select_file(entry)

        return pick

    async def _load_and_tail(self, snapshot: Selection, full_path: str) -> None:
        target = snapshot.server
        opts = self._opts(target)
        try:
            try:
                async with asyncio.timeout(self.connect_timeout):
                    conn = await self.pool.get_client(target)
            except TimeoutError:
                raise ConnectError(
                    target.key, f"timed out after {self.connect_timeout}s"
                ) from None

            content = await read_file_content(
                conn, full_path, self.tail_lines, opts, timeout=self.command_timeout
            )
            if not self._publish(
                snapshot, self.presenter.show_content, content, file_scoped=True
            ):
                return

            try:
                tailer = await start_tail(
                    conn, full_path, _TailForwarder(self, snapshot), 0, opts
                )
            except CommandError as e:
                logger.info("Starting tail of %s failed: %s", full_path, e)
                self._publish(
                    snapshot, self.presenter.show_error, f"tail: {e}", file_scoped=True
                )
                return
        except asyncio.CancelledError:
            logger.debug("loadAndTail: %s cancelled", full_path)
            raise
        except ConnectError as e:
            self._publish(snapshot, self.presenter.show_error, str(e), file_scoped=True)
            return
        except SudoAuthError:
            self.pool.clear_sudo_password(target)
            entry = snapshot.file
            self._publish(
                snapshot,
                self._prompt_sudo_retry,
                snapshot,
                lambda: self.select_file(entry),
                file_scoped=True,
            )
            return
        except CommandError as e:
            self._publish(
                snapshot, self.presenter.show_error, f"read: {e}", file_scoped=True
            )
            return
        finally:
            with self._lock:
                if self._tail_task is asyncio.current_task():
                    self._tail_task = None

        with self._lock:
            stale = self._shutting_down or not snapshot.same_file(self._selection)
            if not stale:
                self._tailer = tailer
        if stale:
            logger.debug("loadAndTail: selection moved on, stopping new tail of %s", full_path)
            tailer.request_stop()
            return

        tailer.set_err_callback(
            lambda err: self._publish(
                snapshot,
                self.presenter.tail_disconnected,
                f"connection lost: {err}",
                file_scoped=True,
            )
        )
        self._publish(
            snapshot, self.presenter.tail_started, target, full_path, file_scoped=True
        )

    async def _download(self, target: Target, remote_path: str, local_path: str) -> None:
        try:
            try:
                async with asyncio.timeout(self.connect_timeout):
                    conn = await self.pool.get_client(target)
            except TimeoutError:
                raise ConnectError(
                    target.key, f"timed out after {self.connect_timeout}s"
                ) from None
            size = await download_file(conn, remote_path, local_path, self._opts(target))
        except asyncio.CancelledError:
            raise
        except SudoAuthError as e:
            self.pool.clear_sudo_password(target)
            self.dispatcher.submit(self.presenter.show_error, f"download: {e}")
        except (ConnectError, CommandError, OSError) as e:
            logger.info("Download of %s failed: %s", remote_path, e)
            self.dispatcher.submit(self.presenter.show_error, f"download: {e}")
        else:
            logger.info("Downloaded %s -> %s (%d bytes)", remote_path, local_path, size)
            self.dispatcher.submit(
                self.presenter.download_complete, local_path, format_size(size)
            )
