import asyncio
import os
import random
import re
from dataclasses import dataclass
from typing import Optional

from aiogram import Bot

from .utils import remove_lines_to_fit_len, retry_on_network_error, split_csv

MAX_TELEGRAM_LENGTH = 4096

_BLANK_RUNS = re.compile(r"\n{3,}")

DEFAULT_EMOJI_SET = ("🚀", "🔥", "⚡", "🧠", "📈", "✨")


@dataclass(slots=True)
class HumanizerConfig:
    min_delay: float = 1.5
    max_delay: float = 5.0
    emoji_chance: float = 0.4
    emoji_set: tuple[str, ...] = DEFAULT_EMOJI_SET

    @classmethod
    def from_env(cls) -> "HumanizerConfig":
        emoji_set = tuple(split_csv(os.getenv("HUMANIZER_EMOJI_SET"))) or DEFAULT_EMOJI_SET
        return cls(
            min_delay=float(os.getenv("HUMANIZER_MIN_DELAY_MS", "1500")) / 1000,
            max_delay=float(os.getenv("HUMANIZER_MAX_DELAY_MS", "5000")) / 1000,
            emoji_chance=float(os.getenv("HUMANIZER_EMOJI_CHANCE", "0.4")),
            emoji_set=emoji_set,
        )


def human_delay(config: HumanizerConfig, rng: random.Random) -> float:
    low, high = sorted((config.min_delay, config.max_delay))
    return low + rng.random() * (high - low)


def humanize_text(text: str, config: HumanizerConfig, rng: random.Random) -> str:
    """Collapse runs of blank lines and sometimes append an emoji."""
    if not isinstance(text, str):
        return ""
    result = _BLANK_RUNS.sub("\n\n", text).strip()
    if config.emoji_set and rng.random() < config.emoji_chance:
        result += " " + rng.choice(config.emoji_set)
    return result


class TelegramGateway:
    """Posts into Telegram chats the way a person would: typing, pause, send."""

    def __init__(
        self,
        bot: Bot,
        config: Optional[HumanizerConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bot = bot
        self.config = config or HumanizerConfig.from_env()
        self._rng = rng or random.Random()

    async def send(self, destination: int | str, text: str) -> int:
        await self.bot.send_chat_action(destination, "typing")
        await asyncio.sleep(human_delay(self.config, self._rng))
        content = remove_lines_to_fit_len(
            humanize_text(text, self.config, self._rng), MAX_TELEGRAM_LENGTH
        )

        @retry_on_network_error
        async def send_announcement():
            return await self.bot.send_message(destination, content)

        message = await send_announcement()
        return message.message_id

    async def delete(self, destination: int | str, message_id: int) -> None:
        @retry_on_network_error
        async def delete_announcement():
            return await self.bot.delete_message(destination, message_id)

        await delete_announcement()
