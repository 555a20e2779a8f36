"""Top-N selection over live counters."""

from __future__ import annotations

from typing import Mapping, Optional

from .aggregator import CounterState

__all__ = ["TrendingRanker"]


class TrendingRanker:
    """Rank signatures by count, newest occurrence first on ties.

    The most recent ranking is remembered so a 1-based display slot can be
    mapped back to its signature.
    """

    def __init__(self, *, spam_threshold: int = 4, max_entries: int = 4) -> None:
        self.spam_threshold = int(spam_threshold)
        self.max_entries = int(max_entries)
        self._last_ranked: list[str] = []

    def configure(self, *, spam_threshold: int, max_entries: int) -> None:
        self.spam_threshold = int(spam_threshold)
        self.max_entries = int(max_entries)

    def rank(self, counters: Mapping[str, CounterState]) -> list[tuple[str, int]]:
        eligible = [
            (signature, state)
            for signature, state in counters.items()
            if state.count >= self.spam_threshold
        ]
        # signature as the last key keeps equal count/timestamp pairs stable
        eligible.sort(key=lambda item: (-item[1].count, -item[1].last_seen_at, item[0]))
        ranked = [(signature, state.count) for signature, state in eligible[: self.max_entries]]
        self._last_ranked = [signature for signature, _ in ranked]
        return ranked

    @property
    def last_ranked(self) -> tuple[str, ...]:
        return tuple(self._last_ranked)

    def signature_at(self, slot: int) -> Optional[str]:
        if slot < 1 or slot > len(self._last_ranked):
            return None
        return self._last_ranked[slot - 1]

    def clear(self) -> None:
        self._last_ranked = []
