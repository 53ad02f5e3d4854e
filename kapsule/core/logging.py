"""
One-line JSON logs on stdout.

Handlers log an event name as the message (``stripe.webhook_received``) and
pass structured fields through ``extra``. The current request id is attached
from a context variable set by ``RequestIDMiddleware``. Fields whose name
looks like a credential are replaced with ``[redacted]``, including keys of
nested dicts.
"""
from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

from kapsule.core.settings import get_settings

REDACTED = "[redacted]"

_request_id_var: ContextVar[str | None] = ContextVar("kapsule_request_id", default=None)
_configured = False

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}
_ENVELOPE_FIELDS = frozenset({"component", "request_id"})
_SENSITIVE_KEY_FRAGMENTS = ("secret", "token", "password", "key", "signature", "authorization")
_QUIET_LOGGERS = ("stripe", "httpx", "httpcore", "openai")
_MAX_ERROR_CHARS = 500


def set_request_id(request_id: str | None) -> Token[str | None]:
    return _request_id_var.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id_var.reset(token)


def get_request_id() -> str | None:
    return _request_id_var.get()


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def _loggable(value: Any) -> Any:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, dict):
        return {
            str(key): REDACTED if _is_sensitive_key(str(key)) else _loggable(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple | set | frozenset):
        return [_loggable(item) for item in value]
    return str(value)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "msg": record.getMessage(),
            "component": getattr(record, "component", record.name),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            entry["request_id"] = request_id

        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and key not in _ENVELOPE_FIELDS and not key.startswith("_")
        }
        entry.update(_loggable(fields))

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["error_type"] = type(exc).__name__
            entry["error"] = str(exc)[:_MAX_ERROR_CHARS]

        return json.dumps(entry, separators=(",", ":"), ensure_ascii=True)


def configure_logging() -> None:
    global _configured
    if _configured:
        return

    level_name = get_settings().LOG_LEVEL.strip().upper() or "INFO"
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelNamesMapping().get(level_name, logging.INFO))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
