"""Live ``tail -f`` streaming of a remote file.

A Tailer owns one background copy task that moves bytes from the remote
process's stdout into a caller-supplied sink until either:

- the caller requests a stop: the remote process gets SIGTERM and the
  channel is closed; nothing is reported, or
- the stream ends on its own: the end is recorded as the terminal error
  (a clean EOF becomes TailEnded) and the error callback runs once.

Stopping comes in two forms. ``request_stop()`` never blocks and is safe
from the presentation loop. ``wait_stopped(timeout)`` / ``stop()`` wait
for the copy task to exit and belong on shutdown paths only.
"""

import asyncio
import logging
import threading
from collections.abc import Callable

import asyncssh

from logscout.models import CommandOpts
from logscout.protocols import TailSink
from logscout.services.errors import CommandError, TailEnded
from logscout.utils.shell import quote_path, sudo_wrap

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 32 * 1024

ErrCallback = Callable[[BaseException], None]


class Tailer:
    """Handle to one running tail stream."""

    def __init__(self, process: "asyncssh.SSHClientProcess", sink: TailSink, path: str) -> None:
        self.path = path
        self._process = process
        self._sink = sink
        self._stop_requested = asyncio.Event()
        self._done = asyncio.Event()
        self._lock = threading.Lock()
        self._err: BaseException | None = None
        self._err_callback: ErrCallback | None = None
        self._task: asyncio.Task[None] | None = None

    def _start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"tail:{self.path}")

    def set_err_callback(self, callback: ErrCallback | None) -> None:
        """Register the callback invoked once when the stream ends by itself.

        If the stream already ended, the callback runs immediately.
        """
        with self._lock:
            self._err_callback = callback
            ended_err = self._err if self._done.is_set() else None
        if callback is not None and ended_err is not None:
            callback(ended_err)

    @property
    def err(self) -> BaseException | None:
        """Terminal error of a stream that ended without being stopped."""
        with self._lock:
            return self._err

    @property
    def done(self) -> bool:
        """Whether the background copy task has exited."""
        return self._done.is_set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def request_stop(self) -> None:
        """Ask the copy task to stop. Never blocks; safe to call repeatedly."""
        if not self._stop_requested.is_set():
            logger.debug("Tail stop requested for %s", self.path)
        self._stop_requested.set()

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait for the copy task to exit.

        Returns:
            True if it exited, False if timeout elapsed first.
        """
        if timeout is None:
            await self._done.wait()
            return True
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        """Request a stop and wait, without a bound, for the copy task to exit."""
        self.request_stop()
        await self.wait_stopped()

    async def _copy(self) -> None:
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            self._sink.write(chunk)

    async def _run(self) -> None:
        copy_task = asyncio.create_task(self._copy())
        stop_task = asyncio.create_task(self._stop_requested.wait())
        try:
            await asyncio.wait({copy_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            if stop_task.done() and not copy_task.done():
                logger.debug("Tail of %s cancelled, signalling remote process", self.path)
                self._terminate()
                copy_task.cancel()
                await asyncio.gather(copy_task, return_exceptions=True)
                return

            stop_task.cancel()
            err = copy_task.exception()
            if err is None:
                err = TailEnded(self.path)
            logger.info("Tail of %s ended: %s", self.path, err)
            self._terminate()
            with self._lock:
                self._err = err
                callback = self._err_callback
            if callback is not None and not self._stop_requested.is_set():
                callback(err)
        finally:
            if not copy_task.done():
                copy_task.cancel()
            if not stop_task.done():
                stop_task.cancel()
            self._done.set()

    def _terminate(self) -> None:
        try:
            self._process.send_signal("TERM")
        except (OSError, asyncssh.Error) as e:
            logger.debug("Sending TERM to tail of %s failed: %s", self.path, e)
        self._process.close()


async def start_tail(
    conn: "asyncssh.SSHClientConnection",
    path: str,
    sink: TailSink,
    lines: int = 0,
    opts: CommandOpts | None = None,
) -> Tailer:
    """Start ``tail -n <lines> -f`` on a remote file and stream it into sink.

    Returns as soon as the remote process is running; the copy happens in
    a background task owned by the returned Tailer.

    Raises:
        CommandError: The channel or process couldn't be started
    """
    opts = opts or CommandOpts()
    command = f"tail -n {int(lines)} -f {quote_path(path)}"
    remote_command = sudo_wrap(command) if opts.privileged else command

    try:
        process = await conn.create_process(remote_command, encoding=None)
    except (OSError, asyncssh.Error) as e:
        raise CommandError(command, None, f"starting tail: {e}") from e

    if opts.privileged:
        process.stdin.write(f"{opts.sudo_password}\n".encode())
        process.stdin.write_eof()

    logger.info("Tailing %s", path)
    tailer = Tailer(process, sink, path)
    tailer._start()
    return tailer
