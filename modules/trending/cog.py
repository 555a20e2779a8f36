"""Discord cog feeding channel chat into the trending engine."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import discord
from discord.ext import commands

from modules.common.runtime import Scheduler, monotonic_ms
from shared import config as shared_config
from shared import health as healthmod

from .config import SETTINGS_KEYS, TrendingConfig
from .dedup import StableId
from .engine import TrendingEngine
from .render import TrendingPanel, build_trending_embed
from .tokens import tokenize_content

log = logging.getLogger("hivemind.trending.cog")

_COUNTS_LIMIT = 15


class TrendingCog(commands.Cog):
    def __init__(
        self,
        bot: commands.Bot,
        *,
        engine: TrendingEngine | None = None,
        channel_id: Optional[int] = None,
        panel_channel_id: Optional[int] = None,
    ) -> None:
        self.bot = bot
        self.engine = engine or TrendingEngine(TrendingConfig.from_env())
        self.channel_id = channel_id if channel_id is not None else shared_config.get_trending_channel_id()
        configured_panel = (
            panel_channel_id
            if panel_channel_id is not None
            else shared_config.get_trending_panel_channel_id()
        )
        # a panel that was never configured separately follows the watched channel
        self._panel_follows_watch = configured_panel is None or configured_panel == self.channel_id
        self.panel: Optional[TrendingPanel] = None
        self._attach_panel(configured_panel or self.channel_id)
        self.scheduler = Scheduler()
        self.resend_debounce_ms = shared_config.get_trending_resend_debounce_ms()
        self._last_resend_ms: Optional[int] = None

    def _attach_panel(self, channel_id: Optional[int]) -> None:
        if not channel_id:
            self.panel = None
            self.engine.set_sink(None)
            return
        self.panel = TrendingPanel(self.bot, channel_id)
        self.engine.set_sink(self.panel)

    async def cog_load(self) -> None:
        job = self.scheduler.every(
            interval=lambda: self.engine.config.trim_interval_ms / 1000.0,
            tag="trending",
            name="trending_trim",
        )
        job.do(self.engine.trim)
        healthmod.set_component("trending", True)
        log.info(
            "trending tracker active",
            extra={"channel_id": self.channel_id, "session": self.engine.session_id},
        )

    async def cog_unload(self) -> None:
        self.engine.close()
        await self.scheduler.shutdown()
        healthmod.set_component("trending", False)

    # === Producer ===

    def _is_watched(self, message: discord.Message) -> bool:
        if message.author.bot or message.guild is None:
            return False
        if self.channel_id is None or message.channel.id != self.channel_id:
            return False
        content = (message.content or "").lstrip()
        prefix = shared_config.get_command_prefix()
        return not content.lower().startswith(f"{prefix}trending")

    def ingest_message(self, message: discord.Message) -> bool:
        if not self._is_watched(message):
            return False
        tokens = tokenize_content(message.content)
        return self.engine.ingest(StableId(str(message.id)), tokens)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        self.ingest_message(message)

    @commands.Cog.listener()
    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        # the identity cache drops the edit unless the text actually changed
        self.ingest_message(after)

    # === Commands ===

    @commands.group(name="trending", invoke_without_command=True)
    async def trending(self, ctx: commands.Context, slot: Optional[int] = None) -> None:
        """Show the trending messages, or repeat slot ``n``."""

        if slot is not None:
            await self.resend_slot(ctx, slot)
            return
        await ctx.reply(embed=build_trending_embed(self.engine.snapshot()), mention_author=False)

    @trending.command(name="resend")
    async def trending_resend(self, ctx: commands.Context, slot: int) -> None:
        await self.resend_slot(ctx, slot)

    @trending.command(name="watch")
    @commands.has_permissions(manage_channels=True)
    async def trending_watch(
        self, ctx: commands.Context, channel: Optional[discord.TextChannel] = None
    ) -> None:
        target = channel or ctx.channel
        self.switch_channel(target.id)
        await ctx.reply(f"Now tracking trending messages in {target.mention}.", mention_author=False)

    @trending.command(name="counts")
    async def trending_counts(self, ctx: commands.Context) -> None:
        await ctx.reply(self.format_counts(), mention_author=False)

    @trending.command(name="config")
    @commands.has_permissions(manage_channels=True)
    async def trending_config(self, ctx: commands.Context, *settings: str) -> None:
        """Show the settings, or change them: ``spamThreshold=3 windowDuration=2``."""

        if settings:
            self.apply_settings(settings)
        await ctx.reply(self.format_config(), mention_author=False)

    # === Helpers ===

    def switch_channel(self, channel_id: int) -> bool:
        """Watch ``channel_id``; a different channel starts a new session."""

        if channel_id == self.channel_id:
            return False
        previous = self.channel_id
        self.channel_id = channel_id
        if self._panel_follows_watch:
            self._attach_panel(channel_id)
        self.engine.on_session_change()
        log.info(
            "trending channel switched",
            extra={"previous_channel_id": previous, "channel_id": channel_id},
        )
        return True

    def apply_settings(self, pairs: Sequence[str]) -> TrendingConfig:
        """Apply ``key=value`` pairs in user units (minutes, seconds, ms)."""

        settings: dict[str, str] = {}
        for pair in pairs:
            key, sep, value = pair.partition("=")
            key = key.strip()
            if not sep or not value.strip():
                raise commands.BadArgument(f"Expected key=value, got `{pair}`.")
            if key not in SETTINGS_KEYS:
                known = ", ".join(sorted(SETTINGS_KEYS))
                raise commands.BadArgument(f"Unknown setting `{key}`. Known: {known}.")
            settings[key] = value.strip()
        config = TrendingConfig.from_settings(settings, base=self.engine.config)
        self.engine.configure(config)
        log.info("trending settings changed", extra={"keys": ",".join(sorted(settings))})
        return config

    def format_config(self) -> str:
        lines = [f"{name} = {value}" for name, value in self.engine.config.as_dict().items()]
        return "```\n" + "\n".join(lines) + "\n```"

    def format_counts(self) -> str:
        counts = sorted(self.engine.counts().items(), key=lambda item: (-item[1], item[0]))
        if not counts:
            return "No messages in the window."
        lines = [f"{count:>4}  {signature[:80]}" for signature, count in counts[:_COUNTS_LIMIT]]
        if len(counts) > _COUNTS_LIMIT:
            lines.append(f"… {len(counts) - _COUNTS_LIMIT} more")
        return "```\n" + "\n".join(lines) + "\n```"

    def _debounced(self) -> bool:
        now = monotonic_ms()
        last = self._last_resend_ms
        if last is not None and now - last < self.resend_debounce_ms:
            return True
        self._last_resend_ms = now
        return False

    async def resend_slot(self, ctx: commands.Context, slot: int) -> Optional[str]:
        if self._debounced():
            log.debug("resend debounced", extra={"slot": slot})
            return None
        text = self.engine.resend_text(slot)
        if text is None:
            await ctx.reply(f"Nothing is trending in slot {slot}.", mention_author=False)
            return None
        try:
            await ctx.send(text, allowed_mentions=discord.AllowedMentions.none())
        except discord.HTTPException:
            log.exception("failed to resend trending message", extra={"slot": slot})
            return None
        return text
