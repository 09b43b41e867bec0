"""One-JSON-object-per-line logging for the ledger service.

Modules log to the "splitledger" logger and attach structured fields with
extra={"extra_data": {...}}. Those fields are merged into the line but can
never overwrite the fixed keys below.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

SERVICE_NAME = "splitledger"
RESERVED_KEYS = ("timestamp", "level", "logger", "message", "service", "source", "exception")


class JSONFormatter(logging.Formatter):
    def format(self, record):
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
        }
        for key, value in getattr(record, "extra_data", {}).items():
            if key in RESERVED_KEYS:
                key = f"extra_{key}"
            log_entry[key] = value
        if record.levelno >= logging.WARNING:
            log_entry["source"] = f"{record.module}:{record.funcName}:{record.lineno}"
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def setup_logging(level: str | None = None, stream=None) -> logging.Logger:
    """Configure the splitledger logger; safe to call more than once.

    level defaults to LOG_LEVEL (INFO). LOG_SQL=1 also routes SQLAlchemy's
    statement log through the same JSON handler.
    """
    logger = logging.getLogger(SERVICE_NAME)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    logger.propagate = False

    handler = next((h for h in logger.handlers if getattr(h, "_splitledger", False)), None)
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler._splitledger = True
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    elif stream is not None:
        handler.setStream(stream)

    sql_logger = logging.getLogger("sqlalchemy.engine")
    if _truthy(os.getenv("LOG_SQL")):
        sql_logger.setLevel(logging.INFO)
        if handler not in sql_logger.handlers:
            sql_logger.addHandler(handler)
    else:
        sql_logger.setLevel(logging.WARNING)
        if handler in sql_logger.handlers:
            sql_logger.removeHandler(handler)

    # Access lines duplicate the request log written by the middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logger
