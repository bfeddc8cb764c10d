"""
Orderdesk Core - Structured Logging

JSON lines in production, plain text elsewhere.

JSON record layout:
- ``request``: id and acting user of the HTTP request being served
- ``event``: audit events from ``ingestion.services.events`` (type,
  reference, success, details), lifted out of the record's ``extra``
- ``extra``: any other ``extra=`` fields (pricing_source, total_amount...)

Request context is held in a ContextVar so concurrent requests on the
same event loop never see each other's ids.
"""

from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import json
import logging
import os
import sys
import traceback

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "request_id", "user_id"}

_AUDIT_FIELDS = ("event", "reference", "success", "details", "timestamp")

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")

_request_context: ContextVar[Tuple[Optional[str], Optional[str]]] = ContextVar(
    "request_context", default=(None, None)
)


class JSONFormatter(logging.Formatter):

    def __init__(self, service_name: str = "orderdesk-core"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "source": f"{record.module}:{record.lineno}",
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request"] = {"id": request_id, "user_id": getattr(record, "user_id", None)}

        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}

        if "event" in extra:
            audit = {field: extra.pop(field, None) for field in _AUDIT_FIELDS}
            log_data["event"] = {
                "type": audit["event"],
                "reference": audit["reference"],
                "success": audit["success"],
                "details": audit["details"] or {},
            }

        if extra:
            log_data["extra"] = extra

        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        return json.dumps(log_data, default=str)


class RequestContextFilter(logging.Filter):
    """Stamps request_id/user_id from the current context onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id, record.user_id = _request_context.get()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "orderdesk-core"
) -> logging.Logger:
    """
    Route every logger through one stdout handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines (production) instead of plain text
        service_name: ``service`` field of JSON records
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestContextFilter())
    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
        ))
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None):
    _request_context.set((request_id, user_id))


def clear_request_context():
    _request_context.set((None, None))
