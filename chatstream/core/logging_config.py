"""Structured logging for stream lifecycle events. Secrets are redacted, long text clipped."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

_SENSITIVE = ("token", "password", "secret", "key", "bearer")
_MAX_FIELD_CHARS = 200

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_current_stream_id: ContextVar[Optional[str]] = ContextVar("chatstream_log_stream_id", default=None)


@contextmanager
def bind_stream(stream_id: str) -> Iterator[None]:
    """Tag every record logged in this context (and tasks it spawns) with stream_id."""
    token = _current_stream_id.set(stream_id)
    try:
        yield
    finally:
        _current_stream_id.reset(token)


class StreamContextFilter(logging.Filter):
    """Adds the bound stream_id to records that did not pass one in `extra`."""

    def filter(self, record: logging.LogRecord) -> bool:
        stream_id = _current_stream_id.get()
        if stream_id is not None and not hasattr(record, "stream_id"):
            record.stream_id = stream_id
        return True


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _redact(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_redact(v) for v in obj]
    if isinstance(obj, str):
        if any(s in obj.lower() for s in _SENSITIVE):
            return "[REDACTED]"
        if len(obj) > _MAX_FIELD_CHARS:
            return obj[:_MAX_FIELD_CHARS] + f"...(+{len(obj) - _MAX_FIELD_CHARS})"
    return obj


class StructuredFormatter(logging.Formatter):
    """JSON or key=value lines; `extra` fields such as stream_id are included."""

    def __init__(self, use_json: bool = True) -> None:
        super().__init__()
        self.use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_dict[key] = _redact(value)
        if self.use_json:
            return json.dumps(log_dict, default=str)
        return " ".join(f"{k}={v!r}" for k, v in log_dict.items())


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter(use_json=use_json))
        handler.addFilter(StreamContextFilter())
        root.addHandler(handler)
