"""Bot entrypoint: wires Discord, the trending extension and the web runtime."""

from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from shared import health as healthmod
from shared.config import (
    get_command_prefix,
    get_discord_token,
    get_env_name,
    get_trending_channel_id,
)
from config.runtime import get_log_level
from shared.logging import setup_logging
from modules.common.runtime import Runtime

setup_logging(level=get_log_level())
log = logging.getLogger("hivemind.app")

INTENTS = discord.Intents.default()
INTENTS.message_content = True

bot = commands.Bot(
    command_prefix=commands.when_mentioned_or(get_command_prefix()),
    intents=INTENTS,
)

runtime = Runtime(bot)


@bot.event
async def on_ready():
    healthmod.set_component("discord", True)
    log.info(
        "Bot ready",
        extra={
            "user": str(bot.user),
            "env": get_env_name(),
            "prefix": get_command_prefix(),
            "trending_channel_id": get_trending_channel_id(),
        },
    )


@bot.event
async def on_resumed():
    healthmod.set_component("discord", True)


@bot.event
async def on_disconnect():
    healthmod.set_component("discord", False)


@bot.event
async def on_command_error(ctx: commands.Context, error: Exception):
    if isinstance(error, commands.CommandNotFound):
        return
    log.warning(
        "command error",
        extra={
            "command": getattr(ctx.command, "qualified_name", None),
            "user_id": getattr(ctx.author, "id", None),
            "error": repr(error),
        },
    )
    if isinstance(error, (commands.MissingPermissions, commands.BadArgument, commands.UserInputError)):
        try:
            await ctx.reply(str(error), mention_author=False)
        except discord.HTTPException:
            log.exception("failed to report command error")
        return
    await runtime.send_log_message(
        f"⚠️ `{getattr(ctx.command, 'qualified_name', '-')}` failed: {error!r}"
    )


async def main() -> None:
    token = get_discord_token()
    try:
        await runtime.start(token)
    finally:
        await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
