"""Logging setup for tersh: text or JSON lines on stderr."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
import sys

LOGGER_NAME = "tersh"

# Extra attributes the engine attaches via `extra=`
_EXTRA_FIELDS = ("handler", "state", "command", "exit_code", "duration_ms")


class JsonLogFormatter(logging.Formatter):
    """JSON structured log formatter, one object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exc"] = self.formatException(record.exc_info)

        return json.dumps(log_data, separators=(",", ":"), default=str)


def setup_logging(level: str = "warning", fmt: str = "text") -> logging.Logger:
    """Configure the `tersh` logger.

    Args:
        level: Level name ("debug", "info", ...)
        fmt: "text" or "json"

    Returns:
        The configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear existing handlers so repeated calls do not double-log
    logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.WARNING)
    logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    if fmt == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    logger.addHandler(handler)
    return logger
