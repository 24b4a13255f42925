import logging
from datetime import datetime, timezone

from aiogram import Bot
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from ..announce.types import Origin, PendingApproval
from .utils import remove_lines_to_fit_len, retry_on_network_error, sanitize_html

logger = logging.getLogger(__name__)

APPROVAL_CALLBACK_PREFIX = "approval"

ORIGIN_TITLES = {
    Origin.WEBHOOK: "Inbound post for review",
    Origin.SCHEDULER: "Autonomous post for review",
    Origin.OPERATOR: "Draft for review",
}


def build_review_keyboard(approval_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text="✅ Publish",
                    callback_data=f"{APPROVAL_CALLBACK_PREFIX}:publish:{approval_id}",
                ),
                InlineKeyboardButton(
                    text="🗑 Discard",
                    callback_data=f"{APPROVAL_CALLBACK_PREFIX}:discard:{approval_id}",
                ),
            ]
        ]
    )


def build_review_message(entry: PendingApproval) -> str:
    created = datetime.fromtimestamp(entry.created_at, tz=timezone.utc)
    text = (
        f"<b>{ORIGIN_TITLES[entry.origin]}</b> <code>{sanitize_html(entry.id)}</code>\n"
        f"<i>{created:%Y-%m-%d %H:%M} UTC</i>\n\n"
        f"{sanitize_html(entry.generated_text)}"
    )
    if entry.source_url:
        text += f"\n\nSource: {sanitize_html(entry.source_url)}"
    return remove_lines_to_fit_len(text, 4096)


class TelegramReviewNotifier:
    """Sends each new pending review to the operator chat with Publish/Discard buttons."""

    def __init__(self, bot: Bot, chat_id: int | str) -> None:
        self.bot = bot
        self.chat_id = chat_id

    async def __call__(self, entry: PendingApproval) -> None:
        @retry_on_network_error
        async def send_review():
            return await self.bot.send_message(
                self.chat_id,
                build_review_message(entry),
                parse_mode="HTML",
                reply_markup=build_review_keyboard(entry.id),
                disable_web_page_preview=True,
            )

        await send_review()
        logger.info(f"Review {entry.id} sent to chat {self.chat_id}")
