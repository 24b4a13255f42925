import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Optional

import logfire

from ..common.settings import Settings
from ..common.style_store import StyleStore
from .admission import AdmissionGate, AdmissionThrottle, DuplicateWindow
from .content_gate import extract_candidate
from .errors import AnnounceError, GenerationFailed, GenerationTimedOut, Unauthorized
from .fanout import ChannelGateway, FanOut
from .ledger import ApprovalLedger, ReviewNotifier
from .safety import ensure_not_meta_response
from .scheduler import AutonomousScheduler
from .types import (
    InboundCandidate,
    Origin,
    Outcome,
    PendingApproval,
    Resolution,
    ResolveAction,
    StatusSnapshot,
)

logger = logging.getLogger(__name__)

Generator = Callable[[str, str], Awaitable[str]]


class PipelineCoordinator:
    """
    Owns the admission, review and dispatch state of the process.

    Built once at startup and shared by the HTTP handlers, the Telegram
    handlers and the autonomous scheduler.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        generator: Generator,
        fanout: FanOut,
        style: StyleStore,
        notifier: Optional[ReviewNotifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.style = style
        self.fanout = fanout
        self._generator = generator
        self._clock = clock

        self.review_required = settings.review_required
        self.shadow_mode = settings.shadow_mode
        self.link_pattern = (
            re.compile(settings.required_link_pattern, re.IGNORECASE)
            if settings.required_link_pattern
            else None
        )
        self.last_inbound: Optional[InboundCandidate] = None

        self.admission = AdmissionGate(
            AdmissionThrottle(settings.admission_cooldown, clock=clock),
            DuplicateWindow(settings.dedup_window, clock=clock),
        )
        self.ledger = ApprovalLedger(
            settings.admin_ids,
            fanout,
            notifier=notifier,
            ttl=settings.approval_ttl,
            clock=clock,
        )
        self.scheduler = AutonomousScheduler(
            self.originate_scheduled,
            settings.autopost_topics,
            tick_interval=settings.autopost_tick,
            publish_cooldown=settings.autopost_cooldown,
            enabled=settings.autopost_enabled,
            clock=clock,
        )

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        gateway: Optional[ChannelGateway],
        generator: Generator,
        notifier: Optional[ReviewNotifier] = None,
    ) -> "PipelineCoordinator":
        return cls(
            settings,
            generator=generator,
            fanout=FanOut(settings.announce_chat_ids, gateway),
            style=StyleStore.from_url(settings.default_style, settings.redis_url),
            notifier=notifier,
        )

    # --- Operators ---

    def is_operator(self, actor_id: int | None) -> bool:
        return self.settings.is_operator(actor_id)

    def require_operator(self, actor_id: int | None) -> None:
        if not self.is_operator(actor_id):
            raise Unauthorized(f"User {actor_id} is not an operator")

    # --- Generation ---

    async def _generate(self, prompt: str) -> str:
        timeout = self.settings.generation_timeout
        try:
            generated = await asyncio.wait_for(
                self._generator(prompt, self.style.value), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise GenerationTimedOut(timeout) from None
        except AnnounceError:
            raise
        except Exception as e:
            raise GenerationFailed(f"Announcement generation failed: {e}") from e

        if not isinstance(generated, str) or not generated.strip():
            raise GenerationFailed("Announcement generation returned no text")
        return generated.strip()

    async def _generate_admitted(self, source_text: str, prompt: str) -> str:
        try:
            return await self._generate(prompt)
        except GenerationFailed:
            # Failed attempts must not block a retry of the same content
            self.admission.release(source_text)
            raise

    async def _route(
        self,
        source_text: str,
        source_url: Optional[str],
        generated: str,
        origin: Origin,
    ) -> Outcome:
        ensure_not_meta_response(generated)

        if self.review_required:
            entry = await self.ledger.create(source_text, generated, source_url, origin)
            return Outcome("pending_review", rewritten=generated, approval_id=entry.id)

        posted = await self.fanout.publish(generated, source_url)
        logger.info(f"Announcement from {origin.value} posted to {posted} channel(s)")
        return Outcome("posted", rewritten=generated, channels_posted=posted)

    # --- Entry points ---

    async def submit_inbound(self, payload: Any) -> Outcome:
        candidate = extract_candidate(
            payload,
            min_length=self.settings.min_text_length,
            link_pattern=self.link_pattern,
            now=self._clock(),
        )
        # Kept even when admission rejects it, so /draft sees the newest post
        self.last_inbound = candidate
        self.admission.admit(candidate.source_text)

        if self.shadow_mode:
            logger.info("Shadow mode: inbound post stored without generation")
            return Outcome("stored")

        with logfire.span("Inbound candidate", url=candidate.source_url):
            generated = await self._generate_admitted(
                candidate.source_text,
                f"Rewrite this for the announcement channel:\n\n{candidate.to_prompt()}",
            )
            return await self._route(
                candidate.source_text, candidate.source_url, generated, Origin.WEBHOOK
            )

    async def originate_scheduled(self, topic: str) -> Optional[Outcome]:
        self.admission.admit(topic)
        generated = await self._generate_admitted(
            topic, f"Write an announcement about:\n\n{topic}"
        )
        if not self.scheduler.active:
            logger.warning("Autonomous mode was switched off during generation, dropping draft")
            return None
        return await self._route(topic, None, generated, Origin.SCHEDULER)

    async def draft(
        self,
        topic: str,
        actor_id: int | None,
        source_url: Optional[str] = None,
    ) -> PendingApproval:
        """Operator-requested draft; always goes to review, bypasses admission."""
        self.require_operator(actor_id)
        prompt = f"{topic}\n\nOriginal post URL: {source_url}" if source_url else topic
        generated = ensure_not_meta_response(await self._generate(prompt))
        return await self.ledger.create(topic, generated, source_url, Origin.OPERATOR)

    async def redraft_last(self, actor_id: int | None) -> Optional[PendingApproval]:
        self.require_operator(actor_id)
        last = self.last_inbound
        if last is None:
            return None
        return await self.draft(last.source_text, actor_id, source_url=last.source_url)

    async def resolve(
        self, approval_id: str, action: ResolveAction, actor_id: int | None
    ) -> Resolution:
        return await self.ledger.resolve(approval_id, action, actor_id)

    # --- Operator controls ---

    def set_review_required(self, enabled: bool, actor_id: int | None) -> None:
        self.require_operator(actor_id)
        self.review_required = enabled
        logger.info(f"Review mode set to {enabled} by {actor_id}")

    def set_autonomous(self, enabled: bool, actor_id: int | None) -> None:
        self.require_operator(actor_id)
        if enabled:
            self.scheduler.enable()
        else:
            self.scheduler.disable()

    def set_kill_switch(self, engaged: bool, actor_id: int | None) -> None:
        self.require_operator(actor_id)
        if engaged:
            self.scheduler.engage_kill_switch()
        else:
            self.scheduler.disengage_kill_switch()

    async def set_style(self, style: str, actor_id: int | None) -> bool:
        self.require_operator(actor_id)
        return await self.style.set(style)

    async def retract(self, count: int, actor_id: int | None) -> int:
        self.require_operator(actor_id)
        return await self.fanout.retract(count)

    def status(self) -> StatusSnapshot:
        state = self.scheduler.state
        return StatusSnapshot(
            review_required=self.review_required,
            autonomous_mode=state.auto_mode_enabled,
            kill_switch=state.kill_switch_engaged,
            shadow_mode=self.shadow_mode,
            pending_count=len(self.ledger),
            destinations=len(self.fanout.destinations),
            style=self.style.value,
            last_inbound_at=self.last_inbound.received_at if self.last_inbound else None,
            last_accepted_at=self.admission.throttle.last_accepted_at,
            last_auto_publish_at=state.last_auto_publish_at,
            topics=len(self.scheduler.topics),
        )
