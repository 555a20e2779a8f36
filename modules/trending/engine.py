"""Trending message engine.

``TrendingEngine`` is the single owner of per-session state. Producers call
:meth:`TrendingEngine.ingest` for every message they observe and
:meth:`TrendingEngine.on_session_change` when the watched stream changes.
Rankings are pushed to the render sink through the update scheduler, and
only when the rendered content actually changed.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from modules.common.runtime import monotonic_ms
from shared.logging import set_session_id

from .aggregator import SlidingWindowAggregator
from .config import TrendingConfig
from .dedup import DedupGate, Handle, Identity
from .normalizer import normalize
from .ranker import TrendingRanker
from .scheduler import UpdateScheduler
from .tokens import TextToken, Token, token_to_mapping, tokens_to_text

__all__ = ["RankingSnapshot", "SnapshotEntry", "TrendingEngine", "monotonic_ms"]

log = logging.getLogger("hivemind.trending.engine")

RenderSink = Callable[["RankingSnapshot"], Any]


@dataclass(frozen=True)
class SnapshotEntry:
    slot: int
    signature: str
    tokens: tuple[Token, ...]
    count: int

    @property
    def text(self) -> str:
        return tokens_to_text(self.tokens)


@dataclass(frozen=True)
class RankingSnapshot:
    entries: tuple[SnapshotEntry, ...] = ()
    show_empty_state: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def signatures(self) -> list[str]:
        return [entry.signature for entry in self.entries]

    def serialize(self) -> str:
        """Stable rendering key; counts are left out so only a change in
        membership, order, or tokens triggers a new render."""

        payload = [
            {"signature": entry.signature, "tokens": [token_to_mapping(t) for t in entry.tokens]}
            for entry in self.entries
        ]
        return json.dumps(
            {"entries": payload, "empty": self.show_empty_state},
            ensure_ascii=False,
            sort_keys=True,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "entries": [
                {
                    "slot": entry.slot,
                    "signature": entry.signature,
                    "text": entry.text,
                    "count": entry.count,
                    "tokens": [token_to_mapping(t) for t in entry.tokens],
                }
                for entry in self.entries
            ]
        }


class TrendingEngine:
    def __init__(
        self,
        config: TrendingConfig | None = None,
        *,
        sink: RenderSink | None = None,
        loop: Any = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.config = (config or TrendingConfig()).clamped()
        self._sink = sink
        self._clock = clock or monotonic_ms
        self._last_payload: Optional[str] = None
        cfg = self.config
        self.gate = DedupGate(
            identity_cache_limit=cfg.identity_cache_limit,
            grace_window_ms=cfg.grace_window_ms,
            handle_cache_limit=cfg.handle_cache_limit,
        )
        self.scheduler = UpdateScheduler(
            self.refresh,
            render_throttle_ms=cfg.render_throttle_ms,
            raf_fallback_ms=cfg.raf_fallback_ms,
            loop=loop,
        )
        self.aggregator = SlidingWindowAggregator(
            window_max_size=cfg.window_max_size,
            window_max_age_ms=cfg.window_max_age_ms,
            on_change=self.request_update,
        )
        self.ranker = TrendingRanker(
            spam_threshold=cfg.spam_threshold, max_entries=cfg.max_entries
        )
        self.session_id = self._start_session()

    # === Sink / scheduling ===

    def set_sink(self, sink: RenderSink | None) -> None:
        self._sink = sink
        self._last_payload = None

    def request_update(self) -> None:
        self.scheduler.request_update()

    def _start_session(self) -> str:
        session = uuid.uuid4().hex[:12]
        set_session_id(session)
        return session

    # === Producer surface ===

    def ingest(self, identity: Identity, tokens: Sequence[Token], now: int | None = None) -> bool:
        """Count one observation; return ``True`` when it was accepted."""

        if not tokens:
            return False
        signature = normalize(tokens_to_text(tokens))
        if not signature:
            return False
        ts = self._clock() if now is None else int(now)
        if not self.gate.should_accept(identity, signature, ts):
            log.debug("duplicate observation dropped", extra={"signature": signature})
            return False
        return self.aggregator.record(signature, tokens, ts)

    def forget_handle(self, handle: Handle) -> bool:
        return self.gate.forget_handle(handle)

    def on_session_change(self) -> None:
        """Forget everything about the previous stream."""

        self.aggregator.clear()
        self.gate.clear()
        self.ranker.clear()
        self._last_payload = None
        previous = self.session_id
        self.session_id = self._start_session()
        log.info(
            "trending session reset",
            extra={"previous_session": previous, "session": self.session_id},
        )
        self.request_update()

    def configure(self, config: TrendingConfig) -> None:
        """Swap settings; they apply from the next trim, rank, or dedup check."""

        cfg = config.clamped()
        self.config = cfg
        self.gate.configure(
            identity_cache_limit=cfg.identity_cache_limit,
            grace_window_ms=cfg.grace_window_ms,
            handle_cache_limit=cfg.handle_cache_limit,
        )
        self.aggregator.configure(
            window_max_size=cfg.window_max_size, window_max_age_ms=cfg.window_max_age_ms
        )
        self.ranker.configure(spam_threshold=cfg.spam_threshold, max_entries=cfg.max_entries)
        self.scheduler.configure(
            render_throttle_ms=cfg.render_throttle_ms, raf_fallback_ms=cfg.raf_fallback_ms
        )
        log.info("trending config replaced", extra={"settings": json.dumps(cfg.as_dict())})
        self.request_update()

    # === Queries ===

    def trim(self, now: int | None = None) -> int:
        return self.aggregator.trim(self._clock() if now is None else int(now))

    def rank(self) -> list[tuple[str, int]]:
        return self.ranker.rank(self.aggregator.state.counters)

    def snapshot(self) -> RankingSnapshot:
        state = self.aggregator.state
        entries = tuple(
            SnapshotEntry(
                slot=index,
                signature=signature,
                tokens=state.tokens.get(signature) or (TextToken(signature),),
                count=count,
            )
            for index, (signature, count) in enumerate(self.rank(), start=1)
        )
        return RankingSnapshot(entries=entries, show_empty_state=self.config.show_empty_state)

    def counts(self) -> dict[str, int]:
        return {sig: counter.count for sig, counter in self.aggregator.state.counters.items()}

    def resend_text(self, slot: int) -> Optional[str]:
        """Plain text for 1-based ``slot`` of the last ranking."""

        signature = self.ranker.signature_at(slot)
        if signature is None:
            return None
        tokens = self.aggregator.state.tokens.get(signature)
        if not tokens:
            return signature
        return tokens_to_text(tokens) or signature

    # === Rendering ===

    def refresh(self, now: int | None = None) -> bool:
        """Trim, rank and deliver; return ``True`` when the sink was called."""

        ts = self._clock() if now is None else int(now)
        # the ranking below already reflects the trim
        self.aggregator.trim(ts, notify=False)
        snapshot = self.snapshot()
        payload = snapshot.serialize()
        if payload == self._last_payload:
            return False
        if self._sink is None:
            self._last_payload = payload
            return False
        try:
            result = self._sink(snapshot)
        except Exception:
            log.exception("render sink failed", extra={"entries": len(snapshot)})
            return False
        self._last_payload = payload
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(self._on_render_done)
        return True

    def _on_render_done(self, fut: "asyncio.Future[Any]") -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is None:
            return
        log.error("render sink failed", exc_info=(type(exc), exc, exc.__traceback__))
        # the failed delivery may have been for a newer snapshot than this task's
        self._last_payload = None

    def close(self) -> None:
        self.scheduler.cancel()
