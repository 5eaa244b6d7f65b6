"""Logging for stream-render.

The transcript owns the terminal: records written to stderr while a response
is streaming land in the middle of the live view and get pushed into
scrollback with it. Hosts therefore either point the package at a log file or
hand records to their own UI with :func:`redirect_logging`.

Usage:
    from stream_render._logger import get_logger

    logger = get_logger(__name__)
    logger.debug("message")

Environment variables:
    - STREAM_RENDER_LOG_LEVEL: Level of the package logger (default: WARNING)
    - STREAM_RENDER_LOG_FILE: Append records to this file instead of stderr
    - STREAM_RENDER_LOG_LEVEL_<MODULE>: Module-specific override, e.g.
      STREAM_RENDER_LOG_LEVEL_TRANSCRIPT=DEBUG for flush decisions or
      STREAM_RENDER_LOG_LEVEL_STREAMING_ADAPTER=INFO for the adapter alone
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable

from stream_render._config import get_settings

LOGGER_NAME = "stream_render"

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"

# Millisecond timestamps: flush decisions are often a few ms apart.
_PLAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
_DATE_FORMAT = "%H:%M:%S"

LogSink = Callable[[logging.LogRecord, str], None]

# Loggers whose STREAM_RENDER_LOG_LEVEL_<MODULE> override was already looked up
_overrides_checked: set[str] = set()


class ColoredFormatter(logging.Formatter):
    """Terminal formatter: level and message colored by severity, package prefix dropped."""

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno, "")
        stamp = f"{self.formatTime(record, _DATE_FORMAT)}.{int(record.msecs):03d}"
        name = record.name.removeprefix(f"{LOGGER_NAME}.")
        line = f"{stamp} | {color}{record.levelname:<8}{_RESET} | {name}:{record.lineno} - {color}{record.getMessage()}{_RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class SinkHandler(logging.Handler):
    """Hands formatted records to a host callback instead of a stream."""

    def __init__(self, sink: LogSink, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._sink = sink
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._sink(record, self.format(record))
        except Exception:
            self.handleError(record)


def _level_from_name(name: str | None, default: int | None = None) -> int | None:
    level = getattr(logging, name.upper(), None) if name else None
    return level if isinstance(level, int) else default


def _default_handler(log_file: str | None) -> logging.Handler:
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, _DATE_FORMAT))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    if sys.stderr.isatty():
        handler.setFormatter(ColoredFormatter())
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, _DATE_FORMAT))
    return handler


def _install(handler: logging.Handler, level: int) -> logging.Logger:
    root = logging.getLogger(LOGGER_NAME)
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    return root


def configure_logging(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    """Install the default handler on the package logger.

    Args:
        level: Level name; defaults to ``RenderSettings.log_level``.
        log_file: File to append to; defaults to ``RenderSettings.log_file``.
            Without one, records go to stderr.

    Returns:
        The package root logger.
    """
    settings = get_settings()
    resolved = _level_from_name(level or settings.log_level, logging.WARNING)
    return _install(_default_handler(log_file or settings.log_file), resolved)


def redirect_logging(sink: LogSink, level: int | None = None) -> logging.Logger:
    """Send package records to ``sink`` (e.g. a status line) instead of stderr.

    ``sink`` receives the record and its message. Call :func:`configure_logging`
    to restore the default handler.
    """
    root = logging.getLogger(LOGGER_NAME)
    return _install(SinkHandler(sink), root.level if level is None else level)


def _module_override(relative_name: str) -> int | None:
    """Most specific STREAM_RENDER_LOG_LEVEL_<MODULE> override for a dotted name.

    For ``transcript.tracker`` this checks ``..._TRANSCRIPT_TRACKER`` and then
    ``..._TRANSCRIPT``.
    """
    parts = relative_name.upper().replace(".", "_").split("_")
    while parts:
        level = _level_from_name(os.getenv("STREAM_RENDER_LOG_LEVEL_" + "_".join(parts)))
        if level is not None:
            return level
        parts.pop()
    return None


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the logger for a module of this package.

    Args:
        name: ``__name__`` of the caller, or a name relative to the package
            (``"transcript.tracker"``). None returns the package logger.
    """
    if name is None or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)

    full_name = name if name.startswith(f"{LOGGER_NAME}.") else f"{LOGGER_NAME}.{name}"
    module_logger = logging.getLogger(full_name)
    if full_name not in _overrides_checked:
        override = _module_override(full_name[len(LOGGER_NAME) + 1 :])
        if override is not None:
            module_logger.setLevel(override)
        _overrides_checked.add(full_name)
    return module_logger


configure_logging()

logger = get_logger()

__all__ = [
    "LOGGER_NAME",
    "ColoredFormatter",
    "LogSink",
    "SinkHandler",
    "configure_logging",
    "get_logger",
    "logger",
    "redirect_logging",
]
