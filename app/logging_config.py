from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

LOG_LEVEL_ENV = "METALINK_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx and httpcore log every request at INFO
HTTP_CLIENT_LOGGERS = ("httpx", "httpcore")

_ANSI_RESET = "\x1b[0m"
_ANSI_BY_LEVEL = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[1;31m",
}
_LEVELS_BY_NAME = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class LevelColorFormatter(logging.Formatter):
    """Colour the level name on a copy of the record; handlers sharing the record see it unchanged."""

    def __init__(self, *, color: bool) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        code = _ANSI_BY_LEVEL.get(record.levelno) if self.color else None
        if code is None:
            return super().format(record)
        tinted = logging.makeLogRecord(record.__dict__)
        tinted.levelname = f"{code}{record.levelname}{_ANSI_RESET}"
        return super().format(tinted)


def level_from(value: str | int | None) -> int:
    """Map an explicit level or ``METALINK_LOG_LEVEL`` to a logging level, INFO when unknown."""
    if isinstance(value, int):
        return value
    name = (value or os.getenv(LOG_LEVEL_ENV) or "INFO").strip().upper()
    return _LEVELS_BY_NAME.get(name, logging.INFO)


def _wants_color(stream: TextIO) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _build_handler(stream: TextIO, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(LevelColorFormatter(color=_wants_color(stream)))
    return handler


def _quiet_http_clients(level: int) -> None:
    cap = level if level <= logging.DEBUG else logging.WARNING
    for name in HTTP_CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(cap)


def configure_logging(
    *,
    level: str | int | None = None,
    stream: TextIO | None = None,
    force: bool = False,
) -> int:
    """Send application logs to ``stream`` (stderr by default) and return the level in use.

    An existing root configuration is kept and only re-levelled, unless
    ``force`` replaces it.
    """
    resolved = level_from(level)
    root = logging.getLogger()
    root.setLevel(resolved)
    _quiet_http_clients(resolved)

    if force or not root.handlers:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        root.addHandler(_build_handler(stream or sys.stderr, resolved))
    else:
        for handler in root.handlers:
            handler.setLevel(resolved)
    return resolved
