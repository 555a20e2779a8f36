"""Public logging helpers for the shared runtime package."""

from __future__ import annotations

from shared.logging.config import setup_logging
from shared.logging.structured import (
    JsonFormatter,
    get_session_id,
    get_trace_id,
    set_session_id,
    set_trace_id,
)

__all__ = [
    "JsonFormatter",
    "get_session_id",
    "get_trace_id",
    "set_session_id",
    "set_trace_id",
    "setup_logging",
]
