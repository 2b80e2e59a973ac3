"""
Diagnostic sink used by every pipeline component.

Components never print; they emit ``(message, level)`` pairs through a
``LogSink``, which forwards them to the ``invoice_mailer`` logger and to an
optional callback (a log viewer, the CLI, or a test recorder).
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Callable, Optional

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOGGER_NAME = "invoice_mailer"


class LogLevel(enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_STDLIB_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: SUCCESS,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LogSink:
    """
    Forward pipeline diagnostics to stdlib logging and an optional callback.

    Usage:
        sink = LogSink(callback=lambda msg, level: print(level.value, msg))
        sink.warning("No recipient found for invoice INV100")
    """

    def __init__(
        self,
        callback: Optional[Callable[[str, LogLevel], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.callback = callback
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def emit(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        self.logger.log(_STDLIB_LEVELS[level], message)
        if self.callback is not None:
            self.callback(message, level)

    def info(self, message: str) -> None:
        self.emit(message, LogLevel.INFO)

    def success(self, message: str) -> None:
        self.emit(message, LogLevel.SUCCESS)

    def warning(self, message: str) -> None:
        self.emit(message, LogLevel.WARNING)

    def error(self, message: str) -> None:
        self.emit(message, LogLevel.ERROR)


class RecordingSink(LogSink):
    """A sink that keeps every emitted record in memory."""

    def __init__(self) -> None:
        self.records: list[tuple[str, LogLevel]] = []
        super().__init__(callback=lambda msg, level: self.records.append((msg, level)))

    def messages(self, level: Optional[LogLevel] = None) -> list[str]:
        return [m for m, lvl in self.records if level is None or lvl is level]


def configure_logging(verbose: bool = False, log_file: str | Path | None = None) -> None:
    """Configure the ``invoice_mailer`` logger with console and optional file output."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
