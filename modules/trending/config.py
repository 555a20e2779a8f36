"""Tunable settings for the trending engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from shared import config as shared_config

__all__ = ["SETTINGS_KEYS", "TrendingConfig"]

log = logging.getLogger("hivemind.trending.config")

# field -> (floor, ceiling); values outside are clamped, never rejected
_BOUNDS: dict[str, tuple[int, Optional[int]]] = {
    "spam_threshold": (1, None),
    "max_entries": (1, shared_config.MAX_ENTRIES_CAP),
    "window_max_age_ms": (0, None),
    "window_max_size": (0, None),
    "render_throttle_ms": (0, None),
    "raf_fallback_ms": (1, None),
    "trim_interval_ms": (100, None),
    "identity_cache_limit": (1, None),
    "grace_window_ms": (0, None),
    "handle_cache_limit": (1, None),
}

# user-facing setting key -> (field, multiplier into engine units)
_SETTINGS_KEYS: dict[str, tuple[str, int]] = {
    "spamThreshold": ("spam_threshold", 1),
    "maxEntries": ("max_entries", 1),
    "windowDuration": ("window_max_age_ms", 60_000),
    "maxMessages": ("window_max_size", 1),
    "updateFrequency": ("render_throttle_ms", 1),
    "trimInterval": ("trim_interval_ms", 1000),
}

# every key a settings mapping may carry
SETTINGS_KEYS = frozenset(_SETTINGS_KEYS) | {"showEmptyState"}

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


@dataclass(frozen=True)
class TrendingConfig:
    spam_threshold: int = 4
    max_entries: int = 4
    window_max_age_ms: int = 300_000
    window_max_size: int = 200
    render_throttle_ms: int = 50
    raf_fallback_ms: int = 200
    trim_interval_ms: int = 5000
    identity_cache_limit: int = 2000
    grace_window_ms: int = 120
    handle_cache_limit: int = 2000
    show_empty_state: bool = False

    def clamped(self) -> "TrendingConfig":
        """Return a copy with every numeric field pulled into its safe range."""

        changes: dict[str, int] = {}
        for name, (floor, ceiling) in _BOUNDS.items():
            raw = getattr(self, name)
            try:
                value = int(raw)
            except (TypeError, ValueError, OverflowError):
                value = getattr(_DEFAULTS, name)
                log.warning("config: %s=%r invalid; using default %s", name, raw, value)
            if value < floor:
                log.warning("config: %s=%s < min %s; clamping", name, value, floor)
                value = floor
            if ceiling is not None and value > ceiling:
                log.warning("config: %s=%s > max %s; clamping", name, value, ceiling)
                value = ceiling
            if value != raw:
                changes[name] = value
        return replace(self, **changes) if changes else self

    @classmethod
    def from_env(cls) -> "TrendingConfig":
        return cls(
            spam_threshold=shared_config.get_trending_spam_threshold(),
            max_entries=shared_config.get_trending_max_entries(),
            window_max_age_ms=shared_config.get_trending_window_max_age_ms(),
            window_max_size=shared_config.get_trending_window_max_size(),
            render_throttle_ms=shared_config.get_trending_render_throttle_ms(),
            raf_fallback_ms=shared_config.get_trending_raf_fallback_ms(),
            trim_interval_ms=shared_config.get_trending_trim_interval_ms(),
            identity_cache_limit=shared_config.get_trending_identity_cache_limit(),
            grace_window_ms=shared_config.get_trending_grace_window_ms(),
            handle_cache_limit=shared_config.get_trending_handle_cache_limit(),
            show_empty_state=shared_config.get_trending_show_empty_state(),
        ).clamped()

    @classmethod
    def from_settings(
        cls, settings: Mapping[str, Any], *, base: "TrendingConfig | None" = None
    ) -> "TrendingConfig":
        """Apply user-facing settings (minutes, seconds, ms) on top of ``base``.

        Unknown keys are ignored and missing keys keep the base value.
        """

        current = base or cls()
        changes: dict[str, Any] = {}
        for key, (name, factor) in _SETTINGS_KEYS.items():
            if key not in settings or settings[key] is None:
                continue
            try:
                changes[name] = int(float(settings[key]) * factor)
            except (TypeError, ValueError, OverflowError):
                log.warning("config: setting %s=%r invalid; ignored", key, settings[key])
        if "showEmptyState" in settings:
            changes["show_empty_state"] = _as_bool(settings["showEmptyState"])
        return replace(current, **changes).clamped()

    def as_dict(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


_DEFAULTS = TrendingConfig()
