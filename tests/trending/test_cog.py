import asyncio
from types import SimpleNamespace

import discord
import pytest
from discord.ext import commands

from modules.trending import cog as cogmod
from modules.trending.cog import TrendingCog
from modules.trending.config import TrendingConfig
from modules.trending.engine import TrendingEngine
from shared import health as healthmod

WATCHED = 111


class FakeContext:
    def __init__(self, channel_id: int = WATCHED, fail_send: Exception | None = None) -> None:
        self.channel = SimpleNamespace(id=channel_id, mention=f"<#{channel_id}>")
        self.sent: list[str] = []
        self.replies: list[dict] = []
        self._fail_send = fail_send

    async def send(self, content, **kwargs):
        if self._fail_send is not None:
            raise self._fail_send
        self.sent.append(content)

    async def reply(self, content=None, **kwargs):
        self.replies.append({"content": content, **kwargs})


def _message(mid: int, content: str, *, channel_id: int = WATCHED, bot: bool = False, guild=True):
    return SimpleNamespace(
        id=mid,
        content=content,
        author=SimpleNamespace(bot=bot),
        guild=object() if guild else None,
        channel=SimpleNamespace(id=channel_id),
    )


@pytest.fixture
def cog(fake_loop):
    bot = commands.Bot(command_prefix="!", intents=discord.Intents.none())
    engine = TrendingEngine(TrendingConfig(spam_threshold=2), loop=fake_loop)
    instance = TrendingCog(bot, engine=engine, channel_id=WATCHED)
    instance.resend_debounce_ms = 0
    return instance


def test_listener_ingests_watched_channel_only(cog):
    async def runner() -> None:
        await cog.on_message(_message(1, "gg"))
        await cog.on_message(_message(2, "GG "))
        await cog.on_message(_message(3, "gg", channel_id=999))
        await cog.on_message(_message(4, "gg", bot=True))
        await cog.on_message(_message(5, "gg", guild=False))
        await cog.on_message(_message(6, "!trending 1"))

    asyncio.run(runner())

    assert cog.engine.counts() == {"gg": 2}


def test_edit_only_counts_changed_text(cog):
    async def runner() -> None:
        await cog.on_message(_message(1, "gg"))
        await cog.on_message_edit(_message(1, "gg"), _message(1, "gg"))
        await cog.on_message_edit(_message(1, "gg"), _message(1, "gg wp"))

    asyncio.run(runner())

    assert cog.engine.counts() == {"gg": 1, "gg wp": 1}


def test_resend_posts_plain_text_without_mentions(cog):
    cog.ingest_message(_message(1, "hello <:pog:123456789012345678>"))
    cog.ingest_message(_message(2, "HELLO <:pog:123456789012345678>"))
    cog.engine.rank()
    ctx = FakeContext()

    text = asyncio.run(cog.resend_slot(ctx, 1))

    assert text == "hello pog"
    assert ctx.sent == ["hello pog"]


def test_resend_empty_slot_replies(cog):
    ctx = FakeContext()

    assert asyncio.run(cog.resend_slot(ctx, 3)) is None
    assert ctx.sent == []
    assert "slot 3" in ctx.replies[0]["content"]


def test_resend_is_debounced(cog, monkeypatch):
    clock = {"now": 10_000}
    monkeypatch.setattr(cogmod, "monotonic_ms", lambda: clock["now"])
    cog.resend_debounce_ms = 500
    for mid in range(2):
        cog.ingest_message(_message(mid, "gg"))
    cog.engine.rank()
    ctx = FakeContext()

    async def runner() -> None:
        await cog.resend_slot(ctx, 1)
        clock["now"] += 100
        await cog.resend_slot(ctx, 1)
        clock["now"] += 500
        await cog.resend_slot(ctx, 1)

    asyncio.run(runner())

    assert ctx.sent == ["gg", "gg"]


def test_resend_http_error_is_logged_not_raised(cog, caplog):
    for mid in range(2):
        cog.ingest_message(_message(mid, "gg"))
    cog.engine.rank()
    error = discord.HTTPException(SimpleNamespace(status=500, reason="Server Error"), "boom")
    ctx = FakeContext(fail_send=error)

    assert asyncio.run(cog.resend_slot(ctx, 1)) is None
    assert any("failed to resend" in r.getMessage() for r in caplog.records)


def test_switch_channel_starts_new_session(cog):
    for mid in range(3):
        cog.ingest_message(_message(mid, "gg"))
    session = cog.engine.session_id

    assert cog.switch_channel(WATCHED) is False
    assert cog.switch_channel(222) is True

    assert cog.channel_id == 222
    assert cog.panel is not None and cog.panel.channel_id == 222
    assert cog.engine.counts() == {}
    assert cog.engine.session_id != session
    assert cog.ingest_message(_message(10, "gg", channel_id=222)) is True


def test_dedicated_panel_channel_stays_put(fake_loop):
    bot = commands.Bot(command_prefix="!", intents=discord.Intents.none())
    engine = TrendingEngine(TrendingConfig(), loop=fake_loop)
    instance = TrendingCog(bot, engine=engine, channel_id=WATCHED, panel_channel_id=333)

    instance.switch_channel(222)

    assert instance.panel.channel_id == 333


def test_format_counts_lists_busiest_first(cog):
    assert cog.format_counts() == "No messages in the window."
    cog.ingest_message(_message(1, "wp"))
    for mid in range(2, 5):
        cog.ingest_message(_message(mid, "gg"))

    lines = cog.format_counts().splitlines()

    assert lines[1].split() == ["3", "gg"]
    assert lines[2].split() == ["1", "wp"]


def test_apply_settings_reconfigures_engine_in_user_units(cog):
    config = cog.apply_settings(
        ["spamThreshold=3", "windowDuration=2", "trimInterval=1", "showEmptyState=off"]
    )

    assert config == cog.engine.config
    assert cog.engine.config.spam_threshold == 3
    assert cog.engine.config.window_max_age_ms == 120_000
    assert cog.engine.config.trim_interval_ms == 1000
    assert cog.engine.config.show_empty_state is False
    assert "spam_threshold = 3" in cog.format_config()


def test_apply_settings_rejects_malformed_pairs(cog):
    with pytest.raises(commands.BadArgument):
        cog.apply_settings(["spamThreshold"])
    with pytest.raises(commands.BadArgument):
        cog.apply_settings(["bogus=1"])

    assert cog.engine.config.spam_threshold == 2


def test_cog_lifecycle_runs_trim_job(cog):
    async def runner() -> None:
        cog.engine.configure(TrendingConfig(spam_threshold=2, trim_interval_ms=100))
        await cog.cog_load()
        assert healthmod.components_snapshot()["trending"]["ok"] is True
        await asyncio.sleep(0.25)
        await cog.cog_unload()

    asyncio.run(runner())

    assert healthmod.components_snapshot()["trending"]["ok"] is False
    assert cog.engine.scheduler.pending is False


def test_extension_setup_adds_cog(monkeypatch):
    from modules import trending as trending_ext

    added = []

    class FakeBot:
        async def add_cog(self, cog):
            added.append(cog)

    monkeypatch.setattr(trending_ext, "TrendingCog", lambda bot: SimpleNamespace(bot=bot))

    asyncio.run(trending_ext.setup(FakeBot()))

    assert len(added) == 1
