import asyncio
import json
import logging

import pytest

from modules.trending.config import TrendingConfig
from modules.trending.dedup import Handle, StableId
from modules.trending.engine import RankingSnapshot, TrendingEngine
from modules.trending.tokens import EmoteToken, TextToken


def _text(value: str):
    return [TextToken(value)]


class Clock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _make_engine(fake_loop, sink=None, clock=None, **overrides):
    config = TrendingConfig(**overrides)
    return TrendingEngine(config, sink=sink, loop=fake_loop, clock=clock or Clock())


def _assert_invariants(engine: TrendingEngine) -> None:
    state = engine.aggregator.state
    expected: dict[str, int] = {}
    for entry in state.window:
        expected[entry.signature] = expected.get(entry.signature, 0) + 1
    assert engine.counts() == expected
    assert set(state.tokens) == set(state.counters)


def test_example_scenario(fake_loop):
    engine = _make_engine(
        fake_loop, spam_threshold=2, max_entries=2, window_max_size=10, window_max_age_ms=0
    )
    seq = 0
    for text, times in (("gg", 3), ("wp", 2), ("hi", 1)):
        for _ in range(times):
            seq += 1
            assert engine.ingest(StableId(str(seq)), _text(text), now=seq)

    assert engine.rank() == [("gg", 3), ("wp", 2)]
    _assert_invariants(engine)


def test_stable_id_reingest_counts_once(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1)

    assert engine.ingest(StableId("m1"), _text("GG"), now=1)
    assert engine.ingest(StableId("m1"), _text("  gg "), now=2) is False

    assert engine.counts() == {"gg": 1}


def test_handle_reingest_within_double_grace(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1, grace_window_ms=100)
    handle = Handle("el-1")

    assert engine.ingest(handle, _text("gg"), now=0)
    assert engine.ingest(handle, _text("gg"), now=150) is False
    assert engine.ingest(handle, _text("gg"), now=200)

    assert engine.counts() == {"gg": 2}
    assert engine.forget_handle(handle) is True


def test_malformed_input_is_dropped(fake_loop):
    engine = _make_engine(fake_loop)

    assert engine.ingest(StableId("1"), [], now=0) is False
    assert engine.ingest(StableId("2"), _text("   "), now=0) is False
    assert engine.ingest(StableId("3"), _text("\u200b"), now=0) is False
    assert engine.counts() == {}
    assert fake_loop.scheduled == []


def test_size_eviction_forgets_earliest(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1, window_max_size=3, window_max_age_ms=0)
    for idx, text in enumerate(["a", "b", "c", "d"]):
        engine.ingest(StableId(str(idx)), _text(text), now=idx)

    engine.trim(now=10)

    assert engine.counts() == {"b": 1, "c": 1, "d": 1}
    assert "a" not in engine.aggregator.state.tokens
    _assert_invariants(engine)


def test_age_eviction_removes_from_ranking(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1, window_max_age_ms=1000)
    engine.ingest(StableId("1"), _text("gg"), now=0)
    assert engine.rank() == [("gg", 1)]

    assert engine.trim(now=1001) == 1

    assert engine.rank() == []
    assert engine.counts() == {}


def test_threshold(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=4)
    for idx in range(3):
        engine.ingest(StableId(str(idx)), _text("gg"), now=idx)
    assert engine.rank() == []

    engine.ingest(StableId("3"), _text("gg"), now=3)
    assert engine.rank() == [("gg", 4)]


def test_session_change_clears_everything(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1)
    for idx in range(5):
        engine.ingest(StableId(str(idx)), _text("gg"), now=idx)
    engine.ingest(Handle("h"), _text("wp"), now=5)
    engine.rank()
    previous_session = engine.session_id

    engine.on_session_change()

    assert engine.rank() == []
    assert engine.resend_text(1) is None
    assert len(engine.gate.identities) == 0
    assert len(engine.gate.handles) == 0
    assert engine.session_id != previous_session
    # the same id is new again in the fresh session
    assert engine.ingest(StableId("0"), _text("gg"), now=10)
    assert engine.counts() == {"gg": 1}


def test_updates_coalesce_and_skip_unchanged_payload(fake_loop):
    delivered: list[RankingSnapshot] = []
    clock = Clock(0)
    engine = _make_engine(fake_loop, sink=delivered.append, clock=clock, spam_threshold=2)

    for idx in range(10):
        engine.ingest(StableId(str(idx)), _text("gg"), now=idx)
    fake_loop.advance(200)

    assert len(delivered) == 1
    assert delivered[0].signatures == ["gg"]
    assert delivered[0].entries[0].count == 10

    # a higher count alone does not re-render
    engine.ingest(StableId("x"), _text("gg"), now=11)
    fake_loop.advance(200)
    assert len(delivered) == 1

    for idx in range(2):
        engine.ingest(StableId(f"wp{idx}"), _text("wp"), now=12 + idx)
    fake_loop.advance(200)
    assert len(delivered) == 2
    assert delivered[1].signatures == ["gg", "wp"]


def test_refresh_trims_before_ranking(fake_loop):
    delivered: list[RankingSnapshot] = []
    clock = Clock(0)
    engine = _make_engine(
        fake_loop, sink=delivered.append, clock=clock, spam_threshold=1, window_max_age_ms=1000
    )
    engine.ingest(StableId("1"), _text("gg"), now=0)
    fake_loop.advance(200)
    assert delivered[-1].signatures == ["gg"]

    clock.now = 5000
    assert engine.refresh() is True
    assert delivered[-1].signatures == []


def test_resend_text_flattens_first_seen_tokens(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1)
    tokens = [TextToken("nice"), EmoteToken("PogChamp", "https://cdn/p.png"), TextToken("play")]
    engine.ingest(StableId("1"), tokens, now=0)
    engine.ingest(StableId("2"), _text("NICE POGCHAMP PLAY"), now=1)
    engine.rank()

    assert engine.resend_text(1) == "nice PogChamp play"
    assert engine.resend_text(2) is None
    assert engine.resend_text(0) is None


def test_snapshot_shape(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=1, show_empty_state=True)
    assert engine.snapshot().show_empty_state is True
    engine.ingest(StableId("1"), _text("GG"), now=0)

    payload = engine.snapshot().as_dict()

    assert payload["entries"] == [
        {
            "slot": 1,
            "signature": "gg",
            "text": "GG",
            "count": 1,
            "tokens": [{"kind": "text", "content": "GG"}],
        }
    ]
    serialized = json.loads(engine.snapshot().serialize())
    assert "count" not in serialized["entries"][0]


def test_configure_applies_on_next_operation(fake_loop):
    engine = _make_engine(fake_loop, spam_threshold=4, max_entries=4)
    for idx in range(2):
        engine.ingest(StableId(str(idx)), _text("gg"), now=idx)
    assert engine.rank() == []

    engine.configure(TrendingConfig(spam_threshold=2, max_entries=1, window_max_size=1))

    # the window is not reprocessed until the next trim
    assert engine.rank() == [("gg", 2)]
    engine.trim(now=5)
    assert engine.rank() == []
    assert engine.counts() == {"gg": 1}


def test_configure_clamps_unsafe_values(fake_loop):
    engine = _make_engine(fake_loop)

    engine.configure(TrendingConfig(raf_fallback_ms=0, spam_threshold=0, max_entries=500))

    assert engine.config.raf_fallback_ms == 1
    assert engine.config.spam_threshold == 1
    assert engine.config.max_entries == 25
    assert engine.scheduler.raf_fallback_ms == 1


def test_sync_sink_failure_is_retried(fake_loop, caplog):
    attempts = []

    def flaky(snapshot):
        attempts.append(snapshot)
        if len(attempts) == 1:
            raise RuntimeError("panel offline")

    engine = _make_engine(fake_loop, sink=flaky, spam_threshold=1)
    engine.ingest(StableId("1"), _text("gg"), now=0)

    with caplog.at_level(logging.ERROR, logger="hivemind.trending.engine"):
        assert engine.refresh(now=0) is False
    assert any("render sink failed" in r.getMessage() for r in caplog.records)

    assert engine.refresh(now=0) is True
    assert len(attempts) == 2
    assert engine.refresh(now=0) is False


def test_async_sink_failure_is_retried():
    attempts = []

    async def flaky(snapshot):
        attempts.append(snapshot)
        if len(attempts) == 1:
            raise RuntimeError("panel offline")

    async def runner() -> None:
        engine = TrendingEngine(TrendingConfig(spam_threshold=1), sink=flaky)
        engine.ingest(StableId("1"), _text("gg"), now=0)
        engine.scheduler.cancel()

        assert engine.refresh(now=0) is True
        for _ in range(3):
            await asyncio.sleep(0)
        assert engine._last_payload is None

        assert engine.refresh(now=0) is True
        for _ in range(3):
            await asyncio.sleep(0)
        assert engine._last_payload is not None
        engine.close()

    asyncio.run(runner())
    assert len(attempts) == 2


def test_unknown_identity_raises(fake_loop):
    engine = _make_engine(fake_loop)
    with pytest.raises(TypeError):
        engine.ingest(object(), _text("gg"), now=0)  # type: ignore[arg-type]


def test_ingest_without_running_loop_counts_and_stays_idle():
    engine = TrendingEngine(TrendingConfig(spam_threshold=1))

    assert engine.ingest(StableId("1"), _text("gg"), now=0) is True

    assert engine.counts() == {"gg": 1}
    assert engine.scheduler.pending is False
    assert engine.rank() == [("gg", 1)]
