"""Cached bot configuration.

Values are read from the environment once by :func:`reload_config` and served
from memory afterwards. Trending knobs are declared in ``_TRENDING_INTS``;
out-of-range values are clamped with a warning.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from typing import Dict, NamedTuple, Optional

from config import runtime as _runtime

__all__ = [
    "MAX_ENTRIES_CAP",
    "cfg",
    "get_bot_name",
    "get_command_prefix",
    "get_config_snapshot",
    "get_discord_token",
    "get_env_name",
    "get_log_channel_id",
    "get_trending_channel_id",
    "get_trending_grace_window_ms",
    "get_trending_handle_cache_limit",
    "get_trending_identity_cache_limit",
    "get_trending_max_entries",
    "get_trending_panel_channel_id",
    "get_trending_raf_fallback_ms",
    "get_trending_render_throttle_ms",
    "get_trending_resend_debounce_ms",
    "get_trending_show_empty_state",
    "get_trending_spam_threshold",
    "get_trending_trim_interval_ms",
    "get_trending_window_max_age_ms",
    "get_trending_window_max_size",
    "redact_value",
    "reload_config",
]

log = logging.getLogger("hivemind.config")

# A Discord embed holds at most 25 fields.
MAX_ENTRIES_CAP = 25

_DIGITS = re.compile(r"\d+")
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


class _IntSetting(NamedTuple):
    key: str
    default: int
    low: Optional[int] = None
    high: Optional[int] = None


_TRENDING_INTS = (
    _IntSetting("TRENDING_SPAM_THRESHOLD", 4, low=1),
    _IntSetting("TRENDING_MAX_ENTRIES", 4, low=1, high=MAX_ENTRIES_CAP),
    _IntSetting("TRENDING_WINDOW_MAX_AGE_MS", 300_000, low=0),
    _IntSetting("TRENDING_WINDOW_MAX_SIZE", 200, low=0),
    _IntSetting("TRENDING_RENDER_THROTTLE_MS", 50, low=0),
    _IntSetting("TRENDING_RAF_FALLBACK_MS", 200, low=1),
    _IntSetting("TRENDING_TRIM_INTERVAL_MS", 5000, low=100),
    _IntSetting("TRENDING_IDENTITY_CACHE_LIMIT", 2000, low=1),
    _IntSetting("TRENDING_GRACE_WINDOW_MS", 120, low=0),
    _IntSetting("TRENDING_HANDLE_CACHE_LIMIT", 2000, low=1),
    _IntSetting("TRENDING_RESEND_DEBOUNCE_MS", 500, low=0),
)

_CONFIG: Dict[str, object] = {}


def redact_value(key: str, value: object) -> str:
    """Render ``value`` for logs, hashing anything that looks like a secret."""

    if value in (None, "", [], (), {}):
        return "(unset)"
    name = str(key).upper()
    if "TOKEN" in name or name.endswith("_SECRET"):
        digest = hashlib.sha1(str(value).strip().encode("utf-8", "ignore")).hexdigest()
        return "***" + digest[:4]
    return str(value)


def _read_int(setting: _IntSetting) -> int:
    text = (os.getenv(setting.key) or "").strip()
    if not text:
        return setting.default
    try:
        value = int(text)
    except ValueError:
        logging.warning(
            "config: %s='%s' invalid; using default %s", setting.key, text, setting.default
        )
        return setting.default
    if setting.low is not None and value < setting.low:
        logging.warning("config: %s=%s < min %s; clamping", setting.key, value, setting.low)
        return setting.low
    if setting.high is not None and value > setting.high:
        logging.warning("config: %s=%s > max %s; clamping", setting.key, value, setting.high)
        return setting.high
    return value


def _read_bool(key: str, default: bool) -> bool:
    text = (os.getenv(key) or "").strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    return default


def _read_id(key: str) -> Optional[int]:
    """First run of digits in the variable, so ``<#123>`` mentions work too."""

    match = _DIGITS.search(os.getenv(key) or "")
    return int(match.group(0)) if match else None


def _load_config() -> Dict[str, object]:
    values: Dict[str, object] = {
        "PORT": _runtime.get_port(),
        "BOT_NAME": _runtime.get_bot_name(),
        "ENV_NAME": _runtime.get_env_name(),
        "LOG_LEVEL": _runtime.get_log_level(),
        "BOT_VERSION": os.getenv("BOT_VERSION") or "dev",
        "DISCORD_TOKEN": os.getenv("DISCORD_TOKEN", ""),
        "COMMAND_PREFIX": (os.getenv("COMMAND_PREFIX") or "").strip() or "!",
        "LOG_CHANNEL_ID": _read_id("LOG_CHANNEL_ID"),
        "TRENDING_SHOW_EMPTY_STATE": _read_bool("TRENDING_SHOW_EMPTY_STATE", False),
    }
    values.update({setting.key: _read_int(setting) for setting in _TRENDING_INTS})

    watched = _read_id("TRENDING_CHANNEL_ID")
    panel = _read_id("TRENDING_PANEL_CHANNEL_ID")
    values["TRENDING_CHANNEL_ID"] = watched
    values["TRENDING_PANEL_CHANNEL_ID"] = watched if panel is None else panel
    return values


def reload_config() -> Dict[str, object]:
    """Re-read the environment, replace the cache and return a copy of it."""

    global _CONFIG
    _CONFIG = _load_config()
    log.info(
        "config loaded",
        extra={"config": {key: redact_value(key, value) for key, value in _CONFIG.items()}},
    )
    return dict(_CONFIG)


reload_config()


class _ConfigFacade:
    """Case-insensitive read access to the cache: ``cfg.get("bot_version")``."""

    __slots__ = ()

    def get(self, key: object, default: object | None = None) -> object | None:
        name = str(key or "").strip().upper()
        return _CONFIG.get(name, default) if name else default

    def __contains__(self, key: object) -> bool:
        return str(key or "").strip().upper() in _CONFIG


cfg = _ConfigFacade()


def get_config_snapshot() -> Dict[str, object]:
    return dict(_CONFIG)


def _text(key: str, default: str) -> str:
    value = _CONFIG.get(key)
    return value if isinstance(value, str) and value else default


def _int(key: str, default: int) -> int:
    value = _CONFIG.get(key)
    return value if isinstance(value, int) else default


def _channel(key: str) -> Optional[int]:
    value = _CONFIG.get(key)
    return value if isinstance(value, int) and value > 0 else None


def get_env_name(default: str = "dev") -> str:
    return _text("ENV_NAME", default)


def get_bot_name(default: str = "Hivemind") -> str:
    return _text("BOT_NAME", default)


def get_command_prefix(default: str = "!") -> str:
    return _text("COMMAND_PREFIX", default)


def get_discord_token() -> str:
    """Return the bot token; only the entrypoint asks for it."""

    token = _text("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("Missing required environment variable: DISCORD_TOKEN")
    return token


def get_log_channel_id() -> Optional[int]:
    return _channel("LOG_CHANNEL_ID")


def get_trending_channel_id() -> Optional[int]:
    return _channel("TRENDING_CHANNEL_ID")


def get_trending_panel_channel_id() -> Optional[int]:
    """Channel that hosts the panel; the watched channel unless overridden."""

    return _channel("TRENDING_PANEL_CHANNEL_ID")


def get_trending_spam_threshold(default: int = 4) -> int:
    return _int("TRENDING_SPAM_THRESHOLD", default)


def get_trending_max_entries(default: int = 4) -> int:
    return _int("TRENDING_MAX_ENTRIES", default)


def get_trending_window_max_age_ms(default: int = 300_000) -> int:
    return _int("TRENDING_WINDOW_MAX_AGE_MS", default)


def get_trending_window_max_size(default: int = 200) -> int:
    return _int("TRENDING_WINDOW_MAX_SIZE", default)


def get_trending_render_throttle_ms(default: int = 50) -> int:
    return _int("TRENDING_RENDER_THROTTLE_MS", default)


def get_trending_raf_fallback_ms(default: int = 200) -> int:
    return _int("TRENDING_RAF_FALLBACK_MS", default)


def get_trending_trim_interval_ms(default: int = 5000) -> int:
    return _int("TRENDING_TRIM_INTERVAL_MS", default)


def get_trending_identity_cache_limit(default: int = 2000) -> int:
    return _int("TRENDING_IDENTITY_CACHE_LIMIT", default)


def get_trending_grace_window_ms(default: int = 120) -> int:
    return _int("TRENDING_GRACE_WINDOW_MS", default)


def get_trending_handle_cache_limit(default: int = 2000) -> int:
    return _int("TRENDING_HANDLE_CACHE_LIMIT", default)


def get_trending_resend_debounce_ms(default: int = 500) -> int:
    return _int("TRENDING_RESEND_DEBOUNCE_MS", default)


def get_trending_show_empty_state() -> bool:
    return bool(_CONFIG.get("TRENDING_SHOW_EMPTY_STATE", False))
