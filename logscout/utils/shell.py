"""Shell command safety utilities."""

import shlex

SUDO_PREFIX = "sudo -S"


def quote_path(path: str) -> str:
    """Safely quote a path for shell commands.

    Args:
        path: File system path to quote

    Returns:
        Shell-safe quoted path
    """
    return shlex.quote(path)


def sudo_wrap(command: str) -> str:
    """Prefix a command so sudo reads the password from stdin."""
    return f"{SUDO_PREFIX} {command}"
