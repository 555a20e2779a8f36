"""Pytest configuration for shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path(source_file: Path) -> None:
    """Add the repository root to ``sys.path`` when running from subpackages."""

    for candidate in [source_file.parent, *source_file.parents]:
        shared_dir = candidate / "shared"
        if shared_dir.is_dir():
            project_root = str(candidate)
            if project_root not in sys.path:
                sys.path.insert(0, project_root)
            break


_ensure_project_root_on_path(Path(__file__).resolve())

from shared.testing.environment import apply_required_test_environment

apply_required_test_environment()

from shared import health as healthmod


class FakeHandle:
    def __init__(self, when_ms: float, callback) -> None:
        self.when_ms = when_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Manual event loop exposing ``time``/``call_soon``/``call_later``.

    The clock is kept in whole milliseconds and only moves through
    :meth:`advance`. Due callbacks run in deadline order, ties in
    scheduling order.
    """

    def __init__(self, start_ms: float = 1_000_000) -> None:
        self.now_ms = float(start_ms)
        self._handles: list[FakeHandle] = []

    def time(self) -> float:
        return self.now_ms / 1000.0

    def call_soon(self, callback) -> FakeHandle:
        return self.call_later(0.0, callback)

    def call_later(self, delay: float, callback) -> FakeHandle:
        when_ms = round(self.now_ms + max(0.0, delay) * 1000.0, 3)
        handle = FakeHandle(when_ms, callback)
        self._handles.append(handle)
        return handle

    @property
    def scheduled(self) -> list[FakeHandle]:
        return [h for h in self._handles if not h.cancelled]

    def _next_due(self, limit_ms: float) -> FakeHandle | None:
        due = [h for h in self._handles if not h.cancelled and h.when_ms <= limit_ms]
        if not due:
            return None
        return min(due, key=lambda h: h.when_ms)

    def run_ready(self) -> int:
        return self.advance(0)

    def advance(self, ms: float) -> int:
        """Move the clock ``ms`` forward, running every timer that comes due."""

        target = self.now_ms + ms
        ran = 0
        while True:
            handle = self._next_due(target)
            if handle is None:
                break
            self._handles.remove(handle)
            self.now_ms = max(self.now_ms, handle.when_ms)
            handle.callback()
            ran += 1
        self.now_ms = target
        return ran


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture(autouse=True)
def _reset_health():
    healthmod.reset()
    yield
    healthmod.reset()


@pytest.fixture(autouse=True)
def _reload_config_after_test():
    """Rebuild the cached config once a test's env overrides are undone."""

    yield
    from shared import config as shared_config

    shared_config.reload_config()
