"""
agentrelay Logging — readable lines on a terminal, JSON lines everywhere else.

setup_logging() installs one stdout handler on the root logger. Two
formatters are available:

- ColorFormatter: `12:00:01 INFO  agentrelay.session.coordinator  Turn completed`
  with the level tinted when stdout is a TTY (AGENTRELAY_LOG_COLOR overrides)
- StructuredFormatter: one JSON object per record (AGENTRELAY_LOG_FORMAT=json)

Relay-specific context travels as `extra=` fields and is kept by both
formatters:
    logger.info("Turn completed", extra={"session_id": sid, "duration_ms": 812})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Fields callers may attach through `extra=`
CONTEXT_FIELDS = ("session_id", "turn_id", "event_type", "duration_ms", "subscribers")

NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "uvicorn.access")

_LEVEL_TINTS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}
_DIM = "\033[2m"
_RESET = "\033[0m"


def _context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class ColorFormatter(logging.Formatter):
    """Single-line text output, optionally tinted by level."""

    def __init__(self, use_color: bool = False):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<5}"
        name = record.name
        if self.use_color:
            level = f"{_LEVEL_TINTS.get(record.levelno, '')}{level}{_RESET}"
            name = f"{_DIM}{name}{_RESET}"

        line = f"{self.formatTime(record, self.datefmt)} {level} {name}  {record.getMessage()}"

        context = _context(record)
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredFormatter(logging.Formatter):
    """JSON lines for log shippers. Context fields are top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _color_enabled() -> bool:
    setting = os.getenv("AGENTRELAY_LOG_COLOR", "auto").lower()
    if setting in ("true", "false"):
        return setting == "true"
    return sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger from AGENTRELAY_LOG_* env vars. Idempotent."""
    level_name = os.getenv("AGENTRELAY_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    if os.getenv("AGENTRELAY_LOG_FORMAT", "text").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_color_enabled())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(level)

    logging.getLogger("agentrelay").debug("Logging configured (level=%s)", level_name)
