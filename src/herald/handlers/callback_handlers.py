import logging

from aiogram import F
from aiogram.types import CallbackQuery, Message

from ..announce import (
    NotFound,
    PipelineCoordinator,
    ResolveAction,
    Unauthorized,
)
from ..common.mp import mp
from ..common.notifications import APPROVAL_CALLBACK_PREFIX
from ..common.utils import sanitize_html
from .dp import dp

logger = logging.getLogger(__name__)


async def _answer(callback: CallbackQuery, text: str, show_alert: bool = False) -> None:
    # Slow publishes can outlive the callback query
    try:
        await callback.answer(text, show_alert=show_alert)
    except Exception as e:
        logger.warning(f"Failed to answer callback: {e}")


async def _finish_review(callback: CallbackQuery, status: str) -> None:
    """Replace the buttons of the review message with its final status."""
    message = callback.message
    if not isinstance(message, Message):
        return
    body = message.html_text if message.text else ""
    try:
        await message.edit_text(
            f"{body}\n\n{status}" if body else status,
            parse_mode="HTML",
            reply_markup=None,
            disable_web_page_preview=True,
        )
    except Exception as e:
        logger.warning(f"Failed to update review message: {e}")


@dp.callback_query(F.data.startswith(f"{APPROVAL_CALLBACK_PREFIX}:"))
async def handle_approval_callback(
    callback: CallbackQuery, coordinator: PipelineCoordinator
) -> str:
    """
    Handles the Publish / Discard buttons of a review message.

    Expected callback data: approval:{publish|discard}:{approval_id}
    """
    if not callback.data:
        return "callback_invalid_data"

    actor_id = callback.from_user.id
    try:
        _, action_name, approval_id = callback.data.split(":", 2)
        action = ResolveAction(action_name)
    except ValueError:
        return "callback_invalid_data_format"

    try:
        resolution = await coordinator.resolve(approval_id, action, actor_id)
    except Unauthorized:
        await _answer(callback, "Unauthorized.", show_alert=True)
        return "callback_unauthorized"
    except NotFound:
        await _answer(callback, "Already handled.")
        await _finish_review(callback, "<i>This review has expired or was already handled.</i>")
        return "callback_review_not_found"
    except Exception as e:
        mp.track(
            actor_id,
            "error_callback_approval",
            {
                "error_type": type(e).__name__,
                "error_message": str(e),
                "callback_data": callback.data,
            },
        )
        logger.error(f"Error in approval callback: {e}", exc_info=True)
        await _answer(callback, "❌ Something went wrong", show_alert=True)
        return "callback_error_resolving"

    mp.track(
        actor_id,
        f"approval_{action.value}",
        {
            "approval_id": approval_id,
            "origin": resolution.approval.origin.value,
            "channels_posted": resolution.channels_posted,
        },
    )

    if action is ResolveAction.DISCARD:
        await _answer(callback, "Discarded")
        await _finish_review(callback, "🗑 <b>Rejected and discarded.</b>")
        return "callback_review_discarded"

    if not resolution.ok:
        await _answer(callback, "Failed to post", show_alert=True)
        await _finish_review(
            callback, f"❌ <b>Failed to post:</b> {sanitize_html(resolution.error)}"
        )
        return "callback_review_publish_failed"

    await _answer(callback, f"Posted to {resolution.channels_posted} channel(s)")
    await _finish_review(
        callback, f"✅ <b>Posted to {resolution.channels_posted} channel(s).</b>"
    )
    return "callback_review_published"
