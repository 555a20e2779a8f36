"""One-call JSON logging setup for the bot process."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from .structured import JsonFormatter

__all__ = ["setup_logging"]

# discord.py logs every gateway heartbeat/resume at INFO
_NOISY_LOGGERS = ("discord.gateway", "discord.client")


def _coerce_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper() or "INFO")
    return resolved if isinstance(resolved, int) else logging.INFO


def _install(logger: logging.Logger, formatter: logging.Formatter) -> None:
    """Point every stream handler of ``logger`` at ``formatter``, adding one if none."""

    streams = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    if not streams:
        streams = [logging.StreamHandler()]
        logger.addHandler(streams[0])
    for handler in streams:
        handler.setFormatter(formatter)


def setup_logging(
    *,
    level: str | int = "INFO",
    static_fields: Mapping[str, str] | None = None,
    access_logger_name: str = "aiohttp.access",
    quiet_loggers: Iterable[str] = _NOISY_LOGGERS,
) -> logging.Logger:
    """Route the root logger through :class:`JsonFormatter`.

    ``static_fields`` are stamped on every line. The HTTP access logger gets
    its own handler and stops propagating, so each request is logged once.
    Calling this again reconfigures in place. Returns the access logger.
    """

    static = dict(static_fields or {})
    root = logging.getLogger()
    root.setLevel(_coerce_level(level))
    _install(root, JsonFormatter(static=static))

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    access = logging.getLogger(access_logger_name)
    access.propagate = False
    access.setLevel(logging.INFO)
    access.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(static={**static, "logger": access_logger_name}))
    access.addHandler(handler)
    return access
