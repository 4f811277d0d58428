"""Exception taxonomy for remote operations.

Cancellation is never represented here: superseded or shut-down work raises
``asyncio.CancelledError`` and callers drop it silently.
"""


class LogScoutError(Exception):
    """Base class for logscout failures."""


class ConfigError(LogScoutError):
    """Servers file could not be read or failed validation."""


class ConnectError(LogScoutError):
    """Failed to establish an SSH session to a target."""

    def __init__(self, target_key: str, reason: str | Exception):
        """Initialize connection error.

        Args:
            target_key: Pool key of the target (user@host:port)
            reason: Description or original exception
        """
        self.target_key = target_key
        self.reason = reason
        super().__init__(f"connect {target_key}: {reason}")


class AuthConfigError(ConnectError):
    """Authentication could not be set up (key file, agent, method)."""


class CommandError(LogScoutError):
    """A remote command failed."""

    def __init__(self, command: str, returncode: int | None, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        if returncode is None:
            message = f"running {command!r}: {output}"
        else:
            message = f"running {command!r}: exit status {returncode}: {output}"
        super().__init__(message.rstrip(": \n"))


class SudoAuthError(CommandError):
    """sudo rejected the cached privilege-escalation password."""

    def __init__(self, command: str, output: str = ""):
        super().__init__(command, 1, output)

    def __str__(self) -> str:
        return "sudo authentication failed"


class TailEnded(LogScoutError):
    """A tail stream reached end-of-file; tails are expected to run forever."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"tail of {path} ended")
