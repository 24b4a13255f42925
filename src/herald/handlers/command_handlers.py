import logging
import time
from typing import Optional

from aiogram import types
from aiogram.filters import Command, CommandObject

from ..announce import (
    AnnounceError,
    PipelineCoordinator,
    ResolveAction,
    StatusSnapshot,
)
from ..common.mp import mp
from ..common.utils import format_duration, load_config, sanitize_html
from .dp import dp

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

MAX_TOPIC_LENGTH = 1500
MAX_DELETE_COUNT = 10

DEFAULT_HELP_TEXT = """<b>Bot Commands Guide</b>

<b>Announcements</b>
/announce &lt;topic&gt; - Draft an announcement for review
/draft - Re-draft the last inbound post
/pending - List drafts waiting for review
/resolve &lt;id&gt; publish|discard - Resolve a draft by id
/delete &lt;n&gt; - Delete the last n announcements in every channel

<b>Modes</b>
/approve on|off - Inbound posts require review / auto-publish
/auto on|off - Autonomous posting from the topic rotation
/kill on|off - Emergency stop for autonomous posting
/style [text] - Show or set the writing style

<b>Info</b>
/status - Show bot status
/ping - Check if the bot is alive
/help - This message"""

ON_OFF = {"on": True, "off": False}


def _in_command_chat(message: types.Message, coordinator: PipelineCoordinator) -> bool:
    command_chat = coordinator.settings.command_chat_id
    if command_chat is None:
        return True
    if isinstance(command_chat, str) and message.chat.username:
        return command_chat.lstrip("@").lower() == message.chat.username.lower()
    return message.chat.id == command_chat


async def _guard(
    message: types.Message, coordinator: PipelineCoordinator
) -> Optional[str]:
    """Returns a result tag when the command must not run."""
    if not message.from_user:
        return "command_no_user_info"
    if not _in_command_chat(message, coordinator):
        await message.reply("Use commands in the operator chat only.")
        return "command_wrong_chat"
    if not coordinator.is_operator(message.from_user.id):
        await message.reply("Unauthorized.")
        return "command_unauthorized"
    return None


async def _report_error(message: types.Message, name: str, e: Exception) -> str:
    if isinstance(e, AnnounceError):
        await message.reply(sanitize_html(str(e)), parse_mode="HTML")
        return f"command_{name}_{e.kind}"

    mp.track(
        message.from_user.id if message.from_user else 0,
        f"error_{name}",
        {"error_type": type(e).__name__, "error_message": str(e)},
    )
    logger.error(f"Error handling /{name} command: {e}", exc_info=True)
    await message.reply("Something went wrong.")
    return f"command_{name}_error"


def format_status(snapshot: StatusSnapshot, coordinator: PipelineCoordinator) -> str:
    def ago(ts: Optional[float]) -> str:
        if ts is None:
            return "never"
        return f"{format_duration(time.time() - ts)} ago"

    review_chat = coordinator.settings.review_chat_id
    lines = [
        f"<b>Approval gate:</b> {'ON (review before publish)' if snapshot.review_required else 'OFF (auto-publish)'}",
        f"<b>Autonomous mode:</b> {'ON' if snapshot.autonomous_mode else 'OFF'}",
        f"<b>Kill switch:</b> {'ENGAGED' if snapshot.kill_switch else 'clear'}",
        f"<b>Pending reviews:</b> {snapshot.pending_count}",
        f"<b>Style:</b> {sanitize_html(snapshot.style)}",
        f"<b>Review chat:</b> {review_chat if review_chat is not None else 'not configured'}",
        f"<b>Announce channels:</b> {snapshot.destinations or 'none configured'}",
        f"<b>Topics in rotation:</b> {snapshot.topics}",
        f"<b>Last inbound post:</b> {ago(snapshot.last_inbound_at)}",
        f"<b>Last admission:</b> {ago(snapshot.last_accepted_at)}",
        f"<b>Last autonomous post:</b> {ago(snapshot.last_auto_publish_at)}",
    ]
    if snapshot.shadow_mode:
        lines.insert(0, "<b>Shadow mode:</b> inbound posts are stored, not generated")
    return "\n".join(lines)


@dp.message(Command("start", "help"))
async def handle_help_command(message: types.Message) -> str:
    """Shows the command guide; available to everyone."""
    help_text = load_config().get("help_text") or DEFAULT_HELP_TEXT
    await message.reply(help_text, parse_mode="HTML", disable_web_page_preview=True)
    return "command_help_sent"


@dp.message(Command("ping"))
async def handle_ping_command(message: types.Message) -> str:
    uptime = format_duration(time.monotonic() - STARTED_AT)
    await message.reply(f"Pong. Uptime: {uptime}.")
    return "command_ping_sent"


@dp.message(Command("status"))
async def handle_status_command(
    message: types.Message, coordinator: PipelineCoordinator
) -> str:
    if rejected := await _guard(message, coordinator):
        return rejected

    await message.reply(format_status(coordinator.status(), coordinator), parse_mode="HTML")
    return "command_status_sent"


@dp.message(Command("approve"))
async def handle_approve_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/approve on|off - toggles review of inbound posts"""
    if rejected := await _guard(message, coordinator):
        return rejected

    state = ON_OFF.get((command.args or "").strip().lower())
    if state is None:
        await message.reply("Usage: /approve on|off")
        return "command_approve_usage"

    coordinator.set_review_required(state, message.from_user.id)
    mp.track(message.from_user.id, "command_approve", {"review_required": state})
    await message.reply(
        "Approval gate <b>ON</b>. Inbound posts will be sent for review before publishing."
        if state
        else "Approval gate <b>OFF</b>. Inbound posts will auto-publish to announce channels.",
        parse_mode="HTML",
    )
    return f"command_approve_{'on' if state else 'off'}"


@dp.message(Command("auto"))
async def handle_auto_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/auto on|off - toggles autonomous posting"""
    if rejected := await _guard(message, coordinator):
        return rejected

    state = ON_OFF.get((command.args or "").strip().lower())
    if state is None:
        await message.reply("Usage: /auto on|off")
        return "command_auto_usage"

    try:
        coordinator.set_autonomous(state, message.from_user.id)
    except Exception as e:
        return await _report_error(message, "auto", e)

    mp.track(message.from_user.id, "command_auto", {"autonomous_mode": state})
    if state:
        cooldown = format_duration(coordinator.scheduler.publish_cooldown)
        text = f"Autonomous mode <b>ON</b>. At most one post every {cooldown}."
    else:
        text = "Autonomous mode <b>OFF</b>."
    await message.reply(text, parse_mode="HTML")
    return f"command_auto_{'on' if state else 'off'}"


@dp.message(Command("kill"))
async def handle_kill_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/kill on|off - emergency stop; clearing it does not re-enable autonomous mode"""
    if rejected := await _guard(message, coordinator):
        return rejected

    state = ON_OFF.get((command.args or "on").strip().lower())
    if state is None:
        await message.reply("Usage: /kill on|off")
        return "command_kill_usage"

    coordinator.set_kill_switch(state, message.from_user.id)
    mp.track(message.from_user.id, "command_kill", {"engaged": state})
    await message.reply(
        "🛑 Kill switch <b>ENGAGED</b>. Autonomous posting is off."
        if state
        else "Kill switch cleared. Use /auto on to resume autonomous posting.",
        parse_mode="HTML",
    )
    return f"command_kill_{'on' if state else 'off'}"


@dp.message(Command("announce"))
async def handle_announce_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/announce <topic> - drafts an announcement into the review queue"""
    if rejected := await _guard(message, coordinator):
        return rejected

    topic = (command.args or "").strip()
    if not topic or len(topic) > MAX_TOPIC_LENGTH:
        await message.reply(f"Topic must be 1-{MAX_TOPIC_LENGTH} characters.")
        return "command_announce_usage"

    try:
        entry = await coordinator.draft(topic, message.from_user.id)
    except Exception as e:
        return await _report_error(message, "announce", e)

    mp.track(message.from_user.id, "command_announce", {"approval_id": entry.id})
    await message.reply(
        f"Draft <code>{entry.id}</code> sent for review.", parse_mode="HTML"
    )
    return "command_announce_drafted"


@dp.message(Command("draft"))
async def handle_draft_command(
    message: types.Message, coordinator: PipelineCoordinator
) -> str:
    """/draft - re-drafts the most recent inbound post"""
    if rejected := await _guard(message, coordinator):
        return rejected

    try:
        entry = await coordinator.redraft_last(message.from_user.id)
    except Exception as e:
        return await _report_error(message, "draft", e)

    if entry is None:
        await message.reply(
            "No inbound posts received yet. Wait for the next webhook delivery, then try again."
        )
        return "command_draft_nothing"

    mp.track(message.from_user.id, "command_draft", {"approval_id": entry.id})
    await message.reply(
        f"Draft <code>{entry.id}</code> from the last inbound post sent for review.",
        parse_mode="HTML",
    )
    return "command_draft_drafted"


@dp.message(Command("pending"))
async def handle_pending_command(
    message: types.Message, coordinator: PipelineCoordinator
) -> str:
    if rejected := await _guard(message, coordinator):
        return rejected

    entries = coordinator.ledger.pending()
    if not entries:
        await message.reply("No drafts waiting for review.")
        return "command_pending_empty"

    lines = [f"<b>Pending reviews ({len(entries)}):</b>"]
    for entry in entries[:20]:
        preview = sanitize_html(entry.generated_text.splitlines()[0][:80])
        lines.append(f"<code>{entry.id}</code> ({entry.origin.value}): {preview}")
    await message.reply("\n".join(lines), parse_mode="HTML")
    return "command_pending_sent"


@dp.message(Command("resolve"))
async def handle_resolve_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/resolve <id> publish|discard"""
    if rejected := await _guard(message, coordinator):
        return rejected

    parts = (command.args or "").split()
    try:
        approval_id, action = parts[0], ResolveAction(parts[1].lower())
    except (IndexError, ValueError):
        await message.reply("Usage: /resolve <id> publish|discard")
        return "command_resolve_usage"

    try:
        resolution = await coordinator.resolve(approval_id, action, message.from_user.id)
    except Exception as e:
        return await _report_error(message, "resolve", e)

    mp.track(
        message.from_user.id,
        f"approval_{action.value}",
        {"approval_id": approval_id, "channels_posted": resolution.channels_posted},
    )
    if action is ResolveAction.DISCARD:
        await message.reply("Discarded.")
    elif resolution.ok:
        await message.reply(f"Posted to {resolution.channels_posted} channel(s).")
    else:
        await message.reply(f"Failed to post: {resolution.error}")
    return f"command_resolve_{action.value}"


@dp.message(Command("style"))
async def handle_style_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/style [text] - shows or replaces the style directive"""
    if rejected := await _guard(message, coordinator):
        return rejected

    style = (command.args or "").strip()
    if not style:
        await message.reply(
            f"<b>Style:</b> {sanitize_html(coordinator.style.value)}", parse_mode="HTML"
        )
        return "command_style_shown"

    saved = await coordinator.set_style(style, message.from_user.id)
    mp.track(message.from_user.id, "command_style", {"persisted": saved})
    await message.reply(
        "Style updated." if saved else "Style updated (not persisted, Redis unavailable)."
    )
    return "command_style_updated"


@dp.message(Command("delete"))
async def handle_delete_command(
    message: types.Message, command: CommandObject, coordinator: PipelineCoordinator
) -> str:
    """/delete <n> - removes the last n announcements from every channel"""
    if rejected := await _guard(message, coordinator):
        return rejected

    try:
        count = int((command.args or "").strip())
    except ValueError:
        count = 0
    if not 1 <= count <= MAX_DELETE_COUNT:
        await message.reply(f"Usage: /delete <1-{MAX_DELETE_COUNT}>")
        return "command_delete_usage"

    if not coordinator.fanout.destinations:
        await message.reply("No announce channels configured.")
        return "command_delete_no_channels"

    try:
        deleted = await coordinator.retract(count, message.from_user.id)
    except Exception as e:
        return await _report_error(message, "delete", e)

    mp.track(message.from_user.id, "command_delete", {"count": count, "deleted": deleted})
    await message.reply(
        f"Deleted {deleted} bot message(s) across "
        f"{len(coordinator.fanout.destinations)} channel(s)."
    )
    return "command_delete_done"
