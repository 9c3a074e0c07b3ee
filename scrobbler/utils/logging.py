"""
Structured JSON logging.
Outputs JSON lines in production, human-readable in development.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import json_log_formatter


class JsonFormatter(json_log_formatter.JSONFormatter):
    """JSON lines with level and logger name next to the message and extra fields."""

    def json_record(self, message: str, extra: dict, record: logging.LogRecord) -> dict:
        extra["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        extra["level"] = record.levelname
        extra["logger"] = record.name
        extra["message"] = message
        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)
        return extra


def setup_logging(level: Optional[str] = None) -> None:
    from scrobbler.config.settings import settings

    level = level or settings.LOG_LEVEL
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)

    if settings.ENV == "production":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Quiet noisy libraries
    for lib in ("aiohttp", "asyncio"):
        logging.getLogger(lib).setLevel(logging.WARNING)
