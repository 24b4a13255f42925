import asyncio
import html
import logging
import sys
import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Deque, Optional

from aiogram import Bot


class TelegramLogHandler(logging.Handler):
    """
    Logging handler that forwards warnings and errors to the operator chat.

    Records emitted before the event loop is known are buffered and flushed by
    `set_event_loop`. Identical consecutive messages inside `dedupe_window`
    are dropped, and at most `throttling_capacity` messages are sent per
    `throttling_window` seconds so an error storm cannot flood the chat.
    """

    MAX_MESSAGE_BODY = 3600
    MAX_TELEGRAM_LENGTH = 4096

    def __init__(
        self,
        bot: Bot,
        chat_id: int | str,
        *,
        throttling_window: float = 60.0,
        throttling_capacity: int = 10,
        dedupe_window: float = 15.0,
    ) -> None:
        super().__init__(level=logging.WARNING)
        self._bot = bot
        self._chat_id = chat_id
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()
        self._buffer: Deque[str] = deque(maxlen=50)
        self._sent_at: Deque[float] = deque(maxlen=throttling_capacity)
        self._throttling_window = throttling_window
        self._dedupe_window = dedupe_window
        self._last_text: Optional[str] = None
        self._last_sent_at = 0.0

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop
            buffered = list(self._buffer)
            self._buffer.clear()
        for text in buffered:
            self._deliver(text)

    def emit(self, record: logging.LogRecord) -> None:
        # Failures while sending are logged by aiogram/aiohttp; don't loop on them
        if record.name.startswith(("aiogram", "aiohttp", __name__)):
            return
        try:
            text = self.render(record)
        except Exception:
            self.handleError(record)
            return
        self._deliver(text)

    def render(self, record: logging.LogRecord) -> str:
        body = html.escape(self.format(record))
        if len(body) > self.MAX_MESSAGE_BODY:
            body = body[: self.MAX_MESSAGE_BODY - 1] + "…"
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.created))
        text = (
            f"<b>{html.escape(record.levelname)}</b> · <code>{html.escape(record.name)}</code>\n"
            f"<code>{stamp}</code>\n\n<pre>{body}</pre>"
        )
        return text[: self.MAX_TELEGRAM_LENGTH]

    def _deliver(self, text: str) -> None:
        with self._lock:
            loop = self._loop
            if loop is None:
                self._buffer.append(text)
                return
            now = time.monotonic()
            if text == self._last_text and now - self._last_sent_at < self._dedupe_window:
                return
            while self._sent_at and now - self._sent_at[0] > self._throttling_window:
                self._sent_at.popleft()
            if self._sent_at.maxlen and len(self._sent_at) >= self._sent_at.maxlen:
                return
            self._last_text = text
            self._last_sent_at = now
            self._sent_at.append(now)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            loop.create_task(self._send(text)).add_done_callback(self._report_failure)
        else:
            future: Future = asyncio.run_coroutine_threadsafe(self._send(text), loop)
            future.add_done_callback(self._report_failure)

    async def _send(self, text: str) -> None:
        await self._bot.send_message(
            self._chat_id,
            text,
            parse_mode="HTML",
            disable_web_page_preview=True,
        )

    def _report_failure(self, done: "asyncio.Future | Future") -> None:
        if done.cancelled() or done.exception() is None:
            return
        # Can't log through ourselves; stderr is the last resort
        print(f"TelegramLogHandler delivery failed: {done.exception()!r}", file=sys.stderr)
