import asyncio
import logging
from collections import deque
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

Destination = int | str


class ChannelGateway(Protocol):
    async def send(self, destination: Destination, text: str) -> Optional[int]: ...

    async def delete(self, destination: Destination, message_id: int) -> None: ...


class FanOut:
    """
    Best-effort delivery of one text to every configured destination.

    A failing destination is logged and skipped. ``publish`` returns how many
    destinations accepted the message; 0 means nothing was published. Once
    started, delivery runs to the last destination even if the caller is
    cancelled.
    """

    def __init__(
        self,
        destinations: Sequence[Destination],
        gateway: Optional[ChannelGateway],
        history_size: int = 50,
    ) -> None:
        self.destinations = tuple(destinations)
        self.gateway = gateway
        self._sent: dict[Destination, deque[int]] = {
            destination: deque(maxlen=history_size) for destination in self.destinations
        }
        self._in_flight: set[asyncio.Task] = set()

    @staticmethod
    def compose(text: str, source_url: Optional[str] = None) -> str:
        if source_url and source_url not in text:
            return f"{text}\n\n{source_url}"
        return text

    async def publish(self, text: str, source_url: Optional[str] = None) -> int:
        dispatch = asyncio.ensure_future(self._deliver(text, source_url))
        self._in_flight.add(dispatch)
        dispatch.add_done_callback(self._in_flight.discard)
        try:
            return await asyncio.shield(dispatch)
        except asyncio.CancelledError:
            logger.warning("Caller cancelled during dispatch, delivery continues")
            raise

    async def drain(self) -> None:
        """Wait for deliveries whose callers were cancelled."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _deliver(self, text: str, source_url: Optional[str]) -> int:
        if self.gateway is None:
            logger.warning("Chat gateway not ready; cannot post")
            return 0
        if not self.destinations:
            logger.warning("No announce channels configured; skipping post")
            return 0

        final_text = self.compose(text, source_url)
        posted = 0
        failed: list[Destination] = []
        for destination in self.destinations:
            try:
                message_id = await self.gateway.send(destination, final_text)
            except Exception as e:
                logger.error(f"Post to channel {destination} failed: {e}", exc_info=True)
                failed.append(destination)
                continue
            if message_id is not None:
                self._sent[destination].append(message_id)
            posted += 1

        if failed and posted:
            logger.warning(
                f"Partial dispatch: {posted}/{len(self.destinations)} channels",
                extra={"failed": failed},
            )
        return posted

    async def retract(self, count: int) -> int:
        """Delete up to ``count`` most recent announcements in every destination."""
        if self.gateway is None:
            return 0
        deleted = 0
        for destination in self.destinations:
            sent = self._sent[destination]
            for _ in range(min(count, len(sent))):
                message_id = sent.pop()
                try:
                    await self.gateway.delete(destination, message_id)
                    deleted += 1
                except Exception as e:
                    logger.error(
                        f"Delete of message {message_id} in {destination} failed: {e}",
                        exc_info=True,
                    )
        return deleted
