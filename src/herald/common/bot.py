import os
from typing import Optional

from aiogram import Bot

_bot: Optional[Bot] = None


def get_bot() -> Bot:
    """Get or create the process-wide Telegram bot"""
    global _bot
    if _bot is None:
        _bot = Bot(token=os.getenv("BOT_TOKEN", ""))
    return _bot


def bot_configured() -> bool:
    return bool(os.getenv("BOT_TOKEN"))


async def close_bot():
    """Close the bot HTTP session"""
    global _bot
    if _bot:
        await _bot.session.close()
        _bot = None
