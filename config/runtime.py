"""Process-level settings read straight from the environment.

These are needed before the cached bot config exists (the web server port,
the log level for ``setup_logging``), so they never go through
``shared.config``.
"""

from __future__ import annotations

import logging
import os

__all__ = ["get_bot_name", "get_env_name", "get_log_level", "get_port"]

DEFAULT_PORT = 10000


def get_port(default: int = DEFAULT_PORT) -> int:
    """Port for the aiohttp server; hosts inject ``$PORT``."""

    raw = (os.getenv("PORT") or "").strip()
    if not raw:
        return default
    try:
        port = int(raw)
    except ValueError:
        logging.warning("config: PORT='%s' invalid; using default %s", raw, default)
        return default
    if not 0 <= port <= 65535:
        logging.warning("config: PORT=%s out of range; using default %s", port, default)
        return default
    return port


def get_env_name(default: str = "dev") -> str:
    return (os.getenv("ENV_NAME") or default).strip().lower() or default


def get_bot_name(default: str = "Hivemind") -> str:
    return (os.getenv("BOT_NAME") or default).strip() or default


def get_log_level(default: str = "INFO") -> str:
    return (os.getenv("LOG_LEVEL") or default).strip().upper() or default
