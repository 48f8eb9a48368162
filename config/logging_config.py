"""
config/logging_config.py
Structured JSON logging, configured once at startup (API and Celery workers).
"""

import json
import logging
import os
from logging import LogRecord

from config.settings import settings


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request_id"] = request_id
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    """Install the JSON handler on the root logger. Safe to call more than once."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root.handlers = [handler]

    # SQL echo is controlled by the engine; keep the noisy loggers at WARNING
    for name in ("sqlalchemy.engine", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)
