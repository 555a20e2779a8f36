"""Trending chat message tracker extension."""

import logging

from discord.ext import commands

from .cog import TrendingCog

__all__ = ["TrendingCog", "setup"]


async def setup(bot: commands.Bot) -> None:
    """Load the TrendingCog."""

    await bot.add_cog(TrendingCog(bot))
    logging.getLogger("hivemind.trending.cog").info("Trending cog loaded")
