"""Utilities for logscout."""

from logscout.utils.console import ColorfulFormatter, configure_logging
from logscout.utils.shell import quote_path, sudo_wrap

__all__ = [
    "ColorfulFormatter",
    "configure_logging",
    "quote_path",
    "sudo_wrap",
]
