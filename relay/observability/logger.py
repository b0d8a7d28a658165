"""Structured logging for relay events (subscribe, publish, deliver, close)."""

import logging
import os
import sys

# Attributes every LogRecord carries; anything else came in through extra=.
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    """Formatter that appends fields passed via extra= as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if fields:
            line += " | " + " ".join(f"{k}={v!r}" for k, v in sorted(fields.items()))
        return line


def _level_from_env(default: int) -> int:
    name = (os.environ.get("LOG_LEVEL") or "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Return a configured logger for observability."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            KeyValueFormatter(
                "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
            )
        )
        logger.addHandler(handler)
        logger.setLevel(_level_from_env(level))
    return logger
