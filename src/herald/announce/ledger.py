import asyncio
import itertools
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional

from .errors import NotFound, Unauthorized
from .fanout import FanOut
from .types import Origin, PendingApproval, Resolution, ResolveAction

logger = logging.getLogger(__name__)

ReviewNotifier = Callable[[PendingApproval], Awaitable[None]]


class ApprovalLedger:
    """
    Pending reviews keyed by id: ``Pending -> Published | Discarded``.

    Entries are deleted on resolution, not archived, so an id that was
    already handled and one that never existed both raise ``NotFound``.
    ``ttl`` of 0 keeps entries until an operator acts on them.
    """

    def __init__(
        self,
        operator_ids: Iterable[int],
        fanout: FanOut,
        notifier: Optional[ReviewNotifier] = None,
        ttl: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.operator_ids = frozenset(operator_ids)
        self.fanout = fanout
        self.notifier = notifier
        self.ttl = ttl
        self._clock = clock
        self._pending: dict[str, PendingApproval] = {}
        self._seq = itertools.count(1)

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._pending)

    def __contains__(self, approval_id: str) -> bool:
        self.purge_expired()
        return approval_id in self._pending

    def pending(self) -> list[PendingApproval]:
        self.purge_expired()
        return sorted(self._pending.values(), key=lambda entry: entry.created_at)

    def purge_expired(self) -> list[PendingApproval]:
        if self.ttl <= 0:
            return []
        now = self._clock()
        expired = [
            entry for entry in self._pending.values() if now - entry.created_at >= self.ttl
        ]
        for entry in expired:
            del self._pending[entry.id]
            logger.info(f"Review {entry.id} expired unresolved and was discarded")
        return expired

    def _next_id(self, origin: Origin, now: float) -> str:
        return f"{origin.prefix}-{int(now * 1000)}-{next(self._seq)}"

    async def create(
        self,
        source_text: str,
        generated_text: str,
        source_url: Optional[str] = None,
        origin: Origin = Origin.WEBHOOK,
    ) -> PendingApproval:
        self.purge_expired()
        now = self._clock()
        entry = PendingApproval(
            id=self._next_id(origin, now),
            source_text=source_text,
            generated_text=generated_text,
            source_url=source_url,
            created_at=now,
            origin=origin,
        )
        # Stored before the first await so the entry exists while notifying
        self._pending[entry.id] = entry
        logger.info(f"Queued {origin.value} draft {entry.id} for review")

        if self.notifier is None:
            logger.warning(f"No review surface configured for {entry.id}")
            return entry
        try:
            await self.notifier(entry)
        except Exception as e:
            logger.error(f"Failed to send review {entry.id}: {e}", exc_info=True)
        return entry

    def claim(self, approval_id: str, actor_id: int | None) -> PendingApproval:
        """Take an entry out of the ledger; only one caller can ever get it."""
        if actor_id is None or actor_id not in self.operator_ids:
            raise Unauthorized(f"User {actor_id} is not an operator")
        self.purge_expired()
        entry = self._pending.pop(approval_id, None)
        if entry is None:
            raise NotFound(approval_id)
        return entry

    async def resolve(
        self, approval_id: str, action: ResolveAction, actor_id: int | None
    ) -> Resolution:
        entry = self.claim(approval_id, actor_id)

        if action is ResolveAction.DISCARD:
            logger.info(f"Review {approval_id} discarded by {actor_id}")
            return Resolution(approval=entry, action=action)

        try:
            posted = await self.fanout.publish(entry.generated_text, entry.source_url)
        except asyncio.CancelledError:
            logger.warning(
                f"Approved post {approval_id} is still being delivered after its caller gave up"
            )
            raise
        except Exception as e:
            # Not re-queued: the operator decides whether to draft again
            logger.error(f"Approved post {approval_id} failed: {e}", exc_info=True)
            return Resolution(approval=entry, action=action, error=str(e))

        logger.info(f"Review {approval_id} published by {actor_id} to {posted} channel(s)")
        return Resolution(approval=entry, action=action, channels_posted=posted)
