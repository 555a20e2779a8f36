"""Discord rendering for trending snapshots."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord
from discord.utils import escape_markdown

from modules.common.embeds import clip_description, get_embed_colour

from .engine import RankingSnapshot, SnapshotEntry
from .tokens import EmoteToken

__all__ = ["TrendingPanel", "build_trending_embed", "render_entry"]

log = logging.getLogger("hivemind.trending.render")

EMPTY_STATE_TEXT = "*Nothing is trending yet.*"


def render_entry(entry: SnapshotEntry) -> str:
    parts = []
    for token in entry.tokens:
        if isinstance(token, EmoteToken):
            alt = escape_markdown(token.alt_text or "emote")
            parts.append(f"[{alt}]({token.image_ref})")
        else:
            parts.append(escape_markdown(token.content))
    return f"`{entry.slot}` {' '.join(parts)}"


def build_trending_embed(snapshot: RankingSnapshot) -> discord.Embed:
    embed = discord.Embed(
        title=f"🔥 Trending · {len(snapshot)}",
        colour=get_embed_colour("trending"),
    )
    if snapshot.entries:
        lines = [render_entry(entry) for entry in snapshot.entries]
        embed.description = clip_description("\n".join(lines))
        embed.set_footer(text="!trending <n> to repeat a message")
    elif snapshot.show_empty_state:
        embed.description = EMPTY_STATE_TEXT
    return embed


class TrendingPanel:
    """Render sink that keeps one panel message up to date in a channel.

    Deliveries run one at a time. A call that waited behind a slower one
    renders the newest snapshot handed in so far, and does nothing if that
    snapshot is already on the panel.
    """

    def __init__(self, bot: discord.Client, channel_id: int) -> None:
        self.bot = bot
        self.channel_id = channel_id
        self.message: Optional[discord.Message] = None
        self._lock = asyncio.Lock()
        self._latest: Optional[RankingSnapshot] = None
        self._shown: Optional[RankingSnapshot] = None

    async def _resolve_channel(self) -> discord.abc.Messageable:
        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(self.channel_id)
        return channel  # type: ignore[return-value]

    async def __call__(self, snapshot: RankingSnapshot) -> None:
        self._latest = snapshot
        async with self._lock:
            latest = self._latest
            if latest is None or latest is self._shown:
                return
            await self._deliver(latest)
            self._shown = latest

    async def _deliver(self, snapshot: RankingSnapshot) -> None:
        embed = build_trending_embed(snapshot)
        if self.message is not None:
            try:
                await self.message.edit(embed=embed)
                return
            except discord.NotFound:
                log.info("trending panel message vanished; reposting", extra={"channel_id": self.channel_id})
                self.message = None
        channel = await self._resolve_channel()
        self.message = await channel.send(embed=embed)
