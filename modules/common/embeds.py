from __future__ import annotations

"""Shared helpers for Discord embeds."""

from typing import Literal

import discord


EmbedCategory = Literal["admin", "trending"]

_COLOURS: dict[EmbedCategory, discord.Colour] = {
    "admin": discord.Colour(0xF200E5),
    "trending": discord.Colour(0xF5E427),
}

# Discord rejects descriptions longer than this.
DESCRIPTION_LIMIT = 4096


def get_embed_colour(category: EmbedCategory) -> discord.Colour:
    """Return the embed colour for the given category."""

    return _COLOURS.get(category, discord.Colour.default())


def clip_description(text: str, *, limit: int = DESCRIPTION_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return f"{text[: limit - 1]}…"


__all__ = ["DESCRIPTION_LIMIT", "EmbedCategory", "clip_description", "get_embed_colour"]
