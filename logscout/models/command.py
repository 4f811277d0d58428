"""Command execution data models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandOpts:
    """Optional parameters for remote command execution.

    A non-empty sudo_password runs the command through ``sudo -S``.
    """

    sudo_password: str = ""

    @property
    def privileged(self) -> bool:
        return bool(self.sudo_password)
