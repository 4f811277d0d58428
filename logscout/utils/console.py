"""Colorful console logging formatter and logging setup."""

import logging
import re
import sys
from datetime import datetime

# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "cyan": "\033[36m",
    "white": "\033[37m",
    "bright_black": "\033[90m",
    "bright_red": "\033[91m",
    "bright_green": "\033[92m",
    "bright_yellow": "\033[93m",
    "bright_blue": "\033[94m",
    "bright_magenta": "\033[95m",
    "bright_cyan": "\033[96m",
    "bg_red": "\033[41m",
}

# Log level colors
LEVEL_COLORS = {
    "DEBUG": COLORS["bright_black"],
    "INFO": COLORS["bright_green"],
    "WARNING": COLORS["bright_yellow"],
    "ERROR": COLORS["bright_red"],
    "CRITICAL": COLORS["bg_red"] + COLORS["white"] + COLORS["bold"],
}

# Component colors for logger names
COMPONENT_COLORS = {
    "logscout.services.pool": COLORS["bright_magenta"],
    "logscout.services.tailer": COLORS["bright_blue"],
    "logscout.services.coordinator": COLORS["bright_cyan"],
    "logscout.services": COLORS["cyan"],
    "logscout.config": COLORS["green"],
    "default": COLORS["white"],
}

SSH_TARGET_PATTERN = re.compile(r"(\w[\w.\-]*@[\w.\-]+:\d+)")
DURATION_PATTERN = re.compile(r"(\d+\.?\d*m?s)\b")

NOISY_LOGGERS = ("asyncssh", "asyncio")

PLAIN_FORMAT = "%(asctime)s [%(name)-28s] %(levelname)-7s %(message)s"


class ColorfulFormatter(logging.Formatter):
    """Colorful log formatter with component highlighting."""

    def __init__(self, use_colors: bool = True) -> None:
        """Initialize the formatter.

        Args:
            use_colors: Whether to use ANSI colors.
        """
        super().__init__()
        self.use_colors = use_colors

    def _colorize(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        if not self.use_colors:
            return text
        return f"{color}{text}{COLORS['reset']}"

    def _get_component_color(self, name: str) -> str:
        """Get color for a logger name/component."""
        for prefix, color in COMPONENT_COLORS.items():
            if prefix != "default" and name.startswith(prefix):
                return color
        return COMPONENT_COLORS["default"]

    def _format_timestamp(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        return f"{dt.strftime('%H:%M:%S')}.{int(record.msecs):03d}"

    def _format_level(self, record: logging.LogRecord) -> str:
        """Format log level with color and fixed width."""
        level = record.levelname
        color = LEVEL_COLORS.get(level, COLORS["white"])
        return self._colorize(f"{level:<8}", color)

    def _format_component(self, record: logging.LogRecord) -> str:
        """Format component/logger name with color."""
        name = record.name
        if name.startswith("logscout."):
            name = name[len("logscout."):]
        color = self._get_component_color(record.name)
        return self._colorize(f"{name:<20}", color)

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with colors."""
        timestamp = self._colorize(self._format_timestamp(record), COLORS["dim"])
        level = self._format_level(record)
        component = self._format_component(record)
        sep = self._colorize("|", COLORS["dim"])
        message = self._highlight_message(record.getMessage())

        line = f"{timestamp} {sep} {level} {sep} {component} {sep} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

    def _highlight_message(self, message: str) -> str:
        """Highlight SSH targets and durations in log messages."""
        if not self.use_colors:
            return message

        if "@" in message:
            message = SSH_TARGET_PATTERN.sub(
                f"{COLORS['bright_magenta']}\\1{COLORS['reset']}",
                message,
            )

        if "s" in message:
            message = DURATION_PATTERN.sub(
                f"{COLORS['bright_yellow']}\\1{COLORS['reset']}",
                message,
            )

        return message


def configure_logging(
    level: str = "WARNING",
    use_colors: bool = True,
    debug_log: str | None = None,
) -> None:
    """Configure the logscout logger.

    Console output goes to stderr so it never mixes with streamed file
    content on stdout. When debug_log is set every DEBUG record is also
    written, uncolored, to that file.

    Args:
        level: Console log level name.
        use_colors: Whether to use ANSI colors (off when stderr isn't a TTY).
        debug_log: Optional path of a debug log file (truncated on open).
    """
    if not sys.stderr.isatty():
        use_colors = False

    console_level = getattr(logging, level.upper(), logging.WARNING)

    app_logger = logging.getLogger("logscout")
    app_logger.handlers = []
    app_logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColorfulFormatter(use_colors=use_colors))
    handler.setLevel(console_level)
    app_logger.addHandler(handler)

    if debug_log:
        file_handler = logging.FileHandler(debug_log, mode="w")
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        file_handler.setLevel(logging.DEBUG)
        app_logger.addHandler(file_handler)
        app_logger.setLevel(logging.DEBUG)
    else:
        app_logger.setLevel(console_level)

    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    if debug_log:
        app_logger.debug("Debug logging initialized, writing to %s", debug_log)
