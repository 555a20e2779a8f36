"""Sliding-window message counter.

The window is a FIFO of accepted events. Every signature in the window has a
counter (number of window entries carrying it, plus the most recent time it
was seen) and the token rendering from its first occurrence. Trimming pops
the head of the window while it is either too long or too old; a signature
whose counter drops to zero is forgotten entirely.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional, Sequence

from .tokens import Token

__all__ = [
    "AggregatorState",
    "CounterState",
    "SlidingWindowAggregator",
    "WindowEntry",
]

log = logging.getLogger("hivemind.trending.aggregator")


@dataclass(frozen=True)
class WindowEntry:
    signature: str
    observed_at: int


@dataclass
class CounterState:
    count: int = 0
    last_seen_at: int = 0


@dataclass
class AggregatorState:
    """All mutable per-session state, owned by one aggregator."""

    window: Deque[WindowEntry] = field(default_factory=deque)
    counters: Dict[str, CounterState] = field(default_factory=dict)
    tokens: Dict[str, tuple[Token, ...]] = field(default_factory=dict)

    def clear(self) -> None:
        self.window.clear()
        self.counters.clear()
        self.tokens.clear()


class SlidingWindowAggregator:
    def __init__(
        self,
        *,
        window_max_size: int = 200,
        window_max_age_ms: int = 300_000,
        on_change: Optional[Callable[[], None]] = None,
        state: AggregatorState | None = None,
    ) -> None:
        self.state = state if state is not None else AggregatorState()
        self.window_max_size = int(window_max_size)
        self.window_max_age_ms = int(window_max_age_ms)
        self._on_change = on_change

    def configure(self, *, window_max_size: int, window_max_age_ms: int) -> None:
        self.window_max_size = int(window_max_size)
        self.window_max_age_ms = int(window_max_age_ms)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def record(self, signature: str, tokens: Sequence[Token], now: int) -> bool:
        """Count one accepted occurrence of ``signature`` at ``now``."""

        if not signature:
            return False
        state = self.state
        state.window.append(WindowEntry(signature, now))
        counter = state.counters.get(signature)
        if counter is None:
            counter = state.counters[signature] = CounterState()
        counter.count += 1
        counter.last_seen_at = now
        # first rendering wins while the signature is alive
        if tokens and signature not in state.tokens:
            state.tokens[signature] = tuple(tokens)
        self._notify()
        return True

    def _should_evict_head(self, now: int) -> bool:
        window = self.state.window
        if not window:
            return False
        if self.window_max_size > 0 and len(window) > self.window_max_size:
            return True
        return self.window_max_age_ms > 0 and (now - window[0].observed_at) > self.window_max_age_ms

    def trim(self, now: int, *, notify: bool = True) -> int:
        """Evict expired or overflowing window entries; return how many."""

        state = self.state
        evicted = 0
        while self._should_evict_head(now):
            entry = state.window.popleft()
            counter = state.counters.get(entry.signature)
            if counter is None:
                continue
            counter.count -= 1
            if counter.count <= 0:
                del state.counters[entry.signature]
                state.tokens.pop(entry.signature, None)
            evicted += 1
        if evicted:
            log.debug("window trimmed", extra={"evicted": evicted, "window": len(state.window)})
            if notify:
                self._notify()
        return evicted

    def clear(self) -> None:
        self.state.clear()
