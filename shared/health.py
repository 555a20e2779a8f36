"""Process-wide component registry behind ``/health`` and ``/healthz``.

Components report themselves as they come up: the web runtime when the app
is built, ``discord`` on gateway ready/disconnect, and ``trending`` while the
trending cog is loaded.
"""

from __future__ import annotations

import time
from typing import Dict, Mapping

__all__ = [
    "components_snapshot",
    "overall_ready",
    "reset",
    "set_component",
]

REQUIRED_COMPONENTS = frozenset({"runtime", "discord", "trending"})

_components: Dict[str, bool] = {}
_updated_at: Dict[str, float] = {}


def set_component(name: str, ok: bool) -> None:
    """Record whether ``name`` is healthy right now."""

    _components[name] = bool(ok)
    _updated_at[name] = time.time()


def reset() -> None:
    """Forget every reported component."""

    _components.clear()
    _updated_at.clear()


def components_snapshot(include_required: bool = True) -> dict[str, Mapping[str, float | bool]]:
    """Return ``{name: {"ok": bool, "ts": epoch}}`` for every known component.

    Required components that never reported show up as not ok with ``ts`` 0.
    """

    snapshot: dict[str, Mapping[str, float | bool]] = {
        name: {"ok": ok, "ts": _updated_at.get(name, 0.0)} for name, ok in _components.items()
    }
    if include_required:
        for name in REQUIRED_COMPONENTS - snapshot.keys():
            snapshot[name] = {"ok": False, "ts": 0.0}
    return snapshot


def overall_ready() -> bool:
    return all(_components.get(name, False) for name in REQUIRED_COMPONENTS)
