"""JSON log records tagged with the active HTTP trace and trending session."""

from __future__ import annotations

import contextvars
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

_trace_var: contextvars.ContextVar[str] = contextvars.ContextVar("hivemind_trace", default="")
_session_var: contextvars.ContextVar[str] = contextvars.ContextVar("hivemind_session", default="")

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_SCALARS = (str, int, float, bool, type(None))
_SKIP = object()


def set_trace_id(value: str | None = None) -> str:
    """Bind ``value`` (or a fresh uuid4) as the trace id of this context."""

    trace = value or str(uuid.uuid4())
    _trace_var.set(trace)
    return trace


def get_trace_id() -> str:
    return _trace_var.get()


def set_session_id(value: str) -> str:
    """Bind the trending stream session id of this context."""

    _session_var.set(value or "")
    return value


def get_session_id() -> str:
    return _session_var.get()


def _timestamp(record: logging.LogRecord) -> str:
    moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z"


def _extra_value(value: Any) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    return _SKIP


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Scalar ``extra`` values are copied as-is, mappings are flattened to
    string pairs, and anything else is dropped. ``static`` fields (bot, env)
    are stamped on every line.
    """

    def __init__(self, static: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._static = dict(static or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "trace": getattr(record, "trace", "") or get_trace_id(),
            "session": getattr(record, "session", "") or get_session_id(),
            **self._static,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in payload or key in _RECORD_ATTRS or key.startswith("_"):
                continue
            rendered = _extra_value(value)
            if rendered is not _SKIP:
                payload[key] = rendered

        return json.dumps(payload, ensure_ascii=False)
