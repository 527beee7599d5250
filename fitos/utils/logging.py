"""
Logging Configuration

Structured logging for FitOS.

The HTTP middlewares bind a request context (request id, tenant, user)
with bind_context(); RequestContextFilter copies it onto every record
emitted while the request is handled, so a log line can always be traced
back to the tenant that caused it. Production uses one JSON object per
line, development a plain text line with the context appended.
"""
from contextvars import ContextVar, Token
from datetime import datetime
from typing import Any, Dict
import json
import logging
import sys

CONTEXT_FIELDS = ("request_id", "tenant_id", "user_id")

# Libraries that log every request or query at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")

# Attributes every LogRecord has; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_request_context: ContextVar[Dict[str, Any]] = ContextVar("fitos_request_context", default={})


def bind_context(**fields: Any) -> Token:
    """
    Add fields to the logging context of the current request.

    Returns the token for reset_context(). None values are ignored.
    """
    context = dict(_request_context.get())
    context.update({key: value for key, value in fields.items() if value is not None})
    return _request_context.set(context)


def reset_context(token: Token) -> None:
    _request_context.reset(token)


def current_context() -> Dict[str, Any]:
    return dict(_request_context.get())


class RequestContextFilter(logging.Filter):
    """Copy the bound request context onto records that don't set the field themselves."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _request_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Request context and every `extra=` field (security event details
    included) are written at the top level of the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextFormatter(logging.Formatter):
    """Plain text, with `[request_id=... tenant_id=...]` appended when known."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        tags = [f"{key}={getattr(record, key)}" for key in CONTEXT_FIELDS if getattr(record, key, None)]
        return f"{line} [{' '.join(tags)}]" if tags else line


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: one JSON object per line (production)

    Safe to call again (the CLI does, to honour --log-level); existing
    handlers are replaced.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ContextFormatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_security_event(event_type: str, details: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Log a security-relevant event at WARNING.

    Event types in use: failed_login, account_locked,
    tenant_isolation_violation, rate_limit_exceeded, privilege_escalation,
    invalid_webhook_signature.
    """
    logger.warning(
        f"SECURITY EVENT: {event_type}",
        extra={"security_event": True, "event_type": event_type, **details},
    )
