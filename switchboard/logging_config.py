"""Structured logging for Switchboard.

Every record is one JSON line on stdout. Routing code binds the client
address and conversation id through `conversation_logger`; those keys are
lifted to the top level so log queries can filter on them directly, the
rest of the context stays nested.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

SERVICE_NAME = "switchboard"

# Context keys promoted next to "message" in the JSON line.
_TOP_LEVEL_KEYS = ("address", "conversation_id", "event_id")

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "websockets")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        for key in _TOP_LEVEL_KEYS:
            if key in context:
                entry[key] = context.pop(key)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Merges bound fields with a per-call `context=` dict."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**(self.extra or {}), **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs


def conversation_logger(logger: logging.Logger, address: str, conversation_id: Optional[object] = None) -> LoggerAdapter:
    """Bind client address (and conversation id when known) to every record."""
    bound = {"address": address}
    if conversation_id is not None:
        bound["conversation_id"] = str(conversation_id)
    return LoggerAdapter(logger, bound)
