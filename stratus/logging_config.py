from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ANSI_RESET = "\x1b[0m"
_ANSI_BY_LEVEL = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[1;31m",
}

# Floors for chatty loggers; they never log below these levels even when the root is at DEBUG.
_LOGGER_FLOORS = {
    "stratus.proc": logging.INFO,
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


class _LevelColorFormatter(logging.Formatter):
    """Colours the level column only; the record itself is left untouched for other handlers."""

    def __init__(self, *, use_color: bool) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color or record.levelno not in _ANSI_BY_LEVEL:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{_ANSI_BY_LEVEL[record.levelno]}{plain}{_ANSI_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _color_enabled() -> bool:
    mode = os.getenv("STRATUS_LOG_COLOR", "auto").lower()
    if mode == "always":
        return True
    if mode == "never" or os.getenv("NO_COLOR"):
        return False
    return sys.stderr.isatty()


def resolve_level(level: str | int | None = None) -> int:
    """Numeric level from an explicit value, else ``STRATUS_LOG_LEVEL``, else INFO."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv("STRATUS_LOG_LEVEL") or "INFO").strip().upper()
    numeric = logging.getLevelName(name)
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(*, level: str | int | None = None, force: bool = False) -> None:
    """Install the stderr handler on the root logger.

    Safe to call more than once: existing handlers are only re-levelled unless ``force`` is set,
    so the CLI module and an embedding server can both call it.
    """
    root_level = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(root_level)
    for name, floor in _LOGGER_FLOORS.items():
        logging.getLogger(name).setLevel(max(root_level, floor))

    if root.handlers and not force:
        for existing in root.handlers:
            existing.setLevel(root_level)
        return

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(root_level)
    stream_handler.setFormatter(_LevelColorFormatter(use_color=_color_enabled()))
    root.handlers[:] = [stream_handler]
