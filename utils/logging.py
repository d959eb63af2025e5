"""
JSON logging for the publishing pipeline.

Every line carries the request id and caller, plus whatever publish context
(post, account, provider) is bound with `bind_context`. Credential fields passed
as structured data are masked before they reach a handler.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
_bound_fields: ContextVar[Dict[str, Any]] = ContextVar('bound_fields', default={})

MASKED_FIELDS = frozenset({
    "access_token",
    "refresh_token",
    "token_secret",
    "client_secret",
    "oauth_verifier",
    "code",
})
MASK = "***"


class JsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        if request_id_var.get():
            entry["request_id"] = request_id_var.get()
        if user_id_var.get():
            entry["user_id"] = user_id_var.get()
        entry.update(_bound_fields.get())
        entry.update(getattr(record, "fields", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def mask_credentials(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: MASK if key in MASKED_FIELDS and value else value for key, value in fields.items()}


class StructuredLogger:
    """Logger taking structured fields as keyword arguments"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields, exc_info=True)

    def _log(self, level: int, message: str, fields: Dict[str, Any], exc_info: bool = False) -> None:
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, message, extra={"fields": mask_credentials(fields)}, exc_info=exc_info)


@contextmanager
def bind_context(**fields: Any) -> Iterator[None]:
    """Attach fields to every line logged inside the block, in this task only"""
    token = _bound_fields.set({**_bound_fields.get(), **mask_credentials(fields)})
    try:
        yield
    finally:
        _bound_fields.reset(token)


def setup_logging(log_level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # httpx logs full URLs, and Graph API URLs carry access tokens
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def set_request_context(request_id: str, user_id: Optional[str] = None) -> None:
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
