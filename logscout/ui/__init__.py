"""Presentation adapters for logscout."""

from logscout.ui.console import ConsolePresenter

__all__ = ["ConsolePresenter"]
