"""Throttled, coalescing refresh scheduling on the asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

__all__ = ["Idle", "Pending", "UpdateScheduler"]

log = logging.getLogger("hivemind.trending.scheduler")


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Pending:
    scheduled_at: float


_IDLE = Idle()


class UpdateScheduler:
    """Coalesce bursts of ``request_update`` calls into single callback runs.

    A firing happens no sooner than ``render_throttle_ms`` after the start of
    the previous firing. Once the throttle delay has elapsed the callback is
    queued for the next loop iteration; a fallback timer armed at request
    time guarantees it runs within ``raf_fallback_ms`` of the request even if
    the loop is starved. When the throttle delay is longer than the fallback,
    the throttle wins.

    ``loop`` only needs ``time()``, ``call_soon()`` and ``call_later()``; the
    running asyncio loop is used when none is given. Without either, requests
    are dropped and the scheduler stays idle.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        *,
        render_throttle_ms: int = 50,
        raf_fallback_ms: int = 200,
        loop: Any = None,
    ) -> None:
        self._callback = callback
        self._loop = loop
        self.render_throttle_ms = max(0, int(render_throttle_ms))
        self.raf_fallback_ms = max(1, int(raf_fallback_ms))
        self.state: Idle | Pending = _IDLE
        self.fire_count = 0
        self._last_fire_ms: Optional[float] = None
        self._delay_handle: Any = None
        self._yield_handle: Any = None
        self._fallback_handle: Any = None

    def configure(self, *, render_throttle_ms: int, raf_fallback_ms: int) -> None:
        self.render_throttle_ms = max(0, int(render_throttle_ms))
        self.raf_fallback_ms = max(1, int(raf_fallback_ms))

    @property
    def pending(self) -> bool:
        return isinstance(self.state, Pending)

    def _get_loop(self) -> Any:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _now_ms(self, loop: Any) -> float:
        return loop.time() * 1000.0

    def request_update(self) -> bool:
        """Schedule a firing unless one is already pending.

        Returns ``True`` when a new firing was scheduled.
        """

        if self.pending:
            return False
        loop = self._get_loop()
        if loop is None:
            log.debug("no running event loop; refresh not scheduled")
            return False
        now = self._now_ms(loop)
        delay = 0.0
        if self._last_fire_ms is not None:
            delay = max(0.0, self.render_throttle_ms - (now - self._last_fire_ms))
        deadline = max(delay, float(self.raf_fallback_ms))

        self.state = Pending(scheduled_at=now)
        self._fallback_handle = loop.call_later(deadline / 1000.0, self._fire)
        if delay > 0:
            self._delay_handle = loop.call_later(delay / 1000.0, self._yield_to_loop)
        else:
            self._yield_to_loop()
        return True

    def _yield_to_loop(self) -> None:
        self._delay_handle = None
        if not self.pending:
            return
        self._yield_handle = self._get_loop().call_soon(self._fire)

    def _cancel_handles(self) -> None:
        for attr in ("_delay_handle", "_yield_handle", "_fallback_handle"):
            handle = getattr(self, attr)
            if handle is not None:
                handle.cancel()
                setattr(self, attr, None)

    def _fire(self) -> None:
        if not self.pending:
            return
        self._cancel_handles()
        self.state = _IDLE
        self._last_fire_ms = self._now_ms(self._get_loop())
        self.fire_count += 1
        try:
            self._callback()
        except Exception:
            log.exception("scheduled refresh failed")

    def cancel(self) -> None:
        """Drop any pending firing."""

        self._cancel_handles()
        self.state = _IDLE
