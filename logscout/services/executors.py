"""SSH command executors for remote file operations.

Every operation runs one shell command on its own channel of a pooled
connection. Connections are borrowed: nothing here closes them.
"""

import asyncio
import fnmatch
import logging
import posixpath
from datetime import datetime
from pathlib import Path

import asyncssh

from logscout.models import CommandOpts, FileEntry
from logscout.services.errors import CommandError, SudoAuthError
from logscout.utils.shell import quote_path, sudo_wrap

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 15.0

SUDO_FAILURE_MARKERS = ("Sorry, try again", "incorrect password")

LS_FIELD_COUNT = 9
LS_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

KB = 1024
MB = KB * 1024
GB = MB * 1024


def _decode(value: str | bytes | None) -> str:
    """Normalize process output to str."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def is_sudo_failure(stderr: str) -> bool:
    """Whether sudo's stderr shows the password was rejected."""
    return any(marker in stderr for marker in SUDO_FAILURE_MARKERS)


async def run_command(
    conn: "asyncssh.SSHClientConnection",
    command: str,
    opts: CommandOpts | None = None,
    timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
) -> str:
    """Run a command and return its output.

    Without a sudo password stdout and stderr are combined. With one, the
    command runs under ``sudo -S``, the password is written to stdin followed
    by a newline, stdin is closed, and stderr is kept separate so a rejected
    password can be told apart from other failures.

    Raises:
        SudoAuthError: sudo rejected the password
        CommandError: Non-zero exit, timeout or channel failure
    """
    opts = opts or CommandOpts()

    try:
        if opts.privileged:
            logger.debug("runCommand (sudo): %s", command)
            result = await asyncio.wait_for(
                conn.run(
                    sudo_wrap(command),
                    input=f"{opts.sudo_password}\n",
                    check=False,
                ),
                timeout=timeout,
            )
        else:
            logger.debug("runCommand: %s", command)
            result = await asyncio.wait_for(
                conn.run(command, stderr=asyncssh.STDOUT, check=False),
                timeout=timeout,
            )
    except TimeoutError as e:
        raise CommandError(command, None, f"timed out after {timeout}s") from e
    except (OSError, asyncssh.Error) as e:
        raise CommandError(command, None, str(e)) from e

    output = _decode(result.stdout)
    if result.returncode == 0:
        return output

    if opts.privileged:
        stderr = _decode(result.stderr)
        if is_sudo_failure(stderr):
            logger.info("sudo authentication failed for %r", command)
            raise SudoAuthError(command, stderr)
        raise CommandError(command, result.returncode, stderr)

    raise CommandError(command, result.returncode, output)


def parse_ls_output(output: str) -> list[FileEntry]:
    """Parse ``ls -la --time-style=full-iso`` output.

    Format: permissions links owner group size date time timezone name.
    The name is the remainder after the first eight fields. Lines with too
    few fields are skipped, as are "." and "..".
    """
    entries = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("total"):
            continue

        fields = line.split(None, LS_FIELD_COUNT - 1)
        if len(fields) < LS_FIELD_COUNT:
            continue

        name = fields[8]
        if name in (".", ".."):
            continue

        try:
            size = int(fields[4])
        except ValueError:
            size = 0

        # fields[6] is "10:30:00.000000000"; drop the fractional seconds
        stamp = f"{fields[5]} {fields[6].split('.', 1)[0]}"
        try:
            mod_time = datetime.strptime(stamp, LS_TIME_FORMAT)
        except ValueError:
            mod_time = None

        entries.append(
            FileEntry(
                name=name,
                size=size,
                mod_time=mod_time,
                is_dir=fields[0].startswith("d"),
            )
        )
    return entries


def filter_by_patterns(entries: list[FileEntry], patterns: list[str] | tuple[str, ...]) -> list[FileEntry]:
    """Keep entries whose name matches at least one glob pattern."""
    return [
        entry
        for entry in entries
        if any(fnmatch.fnmatchcase(entry.name, pattern) for pattern in patterns)
    ]


async def list_files(
    conn: "asyncssh.SSHClientConnection",
    directory: str,
    patterns: list[str] | tuple[str, ...] = (),
    opts: CommandOpts | None = None,
    timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
) -> list[FileEntry]:
    """List a remote directory, optionally filtered by glob patterns.

    Returns:
        Entries sorted by name ascending.

    Raises:
        SudoAuthError: sudo rejected the password
        CommandError: Listing failed
    """
    command = f"ls -la --time-style=full-iso {quote_path(directory)}"
    output = await run_command(conn, command, opts, timeout=timeout)

    entries = parse_ls_output(output)
    if patterns:
        entries = filter_by_patterns(entries, patterns)
    entries.sort(key=lambda entry: entry.name)
    return entries


async def read_file_content(
    conn: "asyncssh.SSHClientConnection",
    path: str,
    lines: int,
    opts: CommandOpts | None = None,
    timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
) -> str:
    """Return the last ``lines`` lines of a remote file."""
    command = f"tail -n {int(lines)} {quote_path(path)}"
    return await run_command(conn, command, opts, timeout=timeout)


async def stat_file(
    conn: "asyncssh.SSHClientConnection",
    path: str,
    opts: CommandOpts | None = None,
    timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
) -> FileEntry:
    """Return metadata for one remote file.

    Raises:
        CommandError: stat failed or printed something unexpected
    """
    command = f"stat --format='%n %s %Y %F' {quote_path(path)}"
    output = await run_command(conn, command, opts, timeout=timeout)

    parts = output.split()
    if len(parts) < 4:
        raise CommandError(command, None, f"unexpected stat output: {output!r}")

    try:
        size = int(parts[1])
    except ValueError:
        size = 0
    try:
        mod_time = datetime.fromtimestamp(int(parts[2]))
    except (ValueError, OverflowError, OSError):
        mod_time = None

    return FileEntry(
        name=posixpath.basename(parts[0]),
        size=size,
        mod_time=mod_time,
        is_dir=parts[3] == "directory",
    )


async def download_file(
    conn: "asyncssh.SSHClientConnection",
    remote_path: str,
    local_path: str | Path,
    opts: CommandOpts | None = None,
) -> int:
    """Stream a remote file into a local file with ``cat``.

    Parent directories of local_path are created. The remote stdout is
    redirected straight into the local file.

    Returns:
        Number of bytes written locally.

    Raises:
        SudoAuthError: sudo rejected the password
        CommandError: The remote command failed
        OSError: The local file couldn't be created
    """
    opts = opts or CommandOpts()
    local_path = Path(local_path)
    local_path.parent.mkdir(parents=True, exist_ok=True)

    command = f"cat {quote_path(remote_path)}"
    if opts.privileged:
        logger.debug("DownloadFile (sudo): %s -> %s", remote_path, local_path)
        remote_command = sudo_wrap(command)
        stdin = f"{opts.sudo_password}\n".encode()
    else:
        logger.debug("DownloadFile: %s -> %s", remote_path, local_path)
        remote_command = command
        stdin = None

    with local_path.open("wb") as local_file:
        try:
            result = await conn.run(
                remote_command,
                input=stdin,
                stdout=local_file,
                encoding=None,
                check=False,
            )
        except (OSError, asyncssh.Error) as e:
            raise CommandError(command, None, f"downloading file: {e}") from e

    if result.returncode != 0:
        stderr = _decode(result.stderr)
        if opts.privileged and is_sudo_failure(stderr):
            raise SudoAuthError(command, stderr)
        raise CommandError(command, result.returncode, stderr)

    return local_path.stat().st_size


def format_size(size: int) -> str:
    """Human-readable size: bytes below 1K, one decimal place above."""
    if size >= GB:
        return f"{size / GB:.1f}G"
    if size >= MB:
        return f"{size / MB:.1f}M"
    if size >= KB:
        return f"{size / KB:.1f}K"
    return f"{size}B"
