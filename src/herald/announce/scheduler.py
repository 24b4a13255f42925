import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from .errors import AnnounceError, Duplicate, KillSwitchEngaged, Throttled

logger = logging.getLogger(__name__)

Originate = Callable[[str], Awaitable[Any]]


@dataclass(slots=True)
class SchedulerState:
    auto_mode_enabled: bool = False
    kill_switch_engaged: bool = False
    last_auto_publish_at: Optional[float] = None
    topic_cursor: int = 0


class AutonomousScheduler:
    """
    Periodic originator of announcements from a fixed topic rotation.

    The loop runs one tick, then sleeps ``tick_interval``; a tick never
    starts while the previous one is still awaiting generation or dispatch.
    ``publish_cooldown`` is the minimum gap between two autonomous posts.
    """

    def __init__(
        self,
        originate: Originate,
        topics: Sequence[str],
        *,
        tick_interval: float = 30.0,
        publish_cooldown: float = 3600.0,
        enabled: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._originate = originate
        self.topics = tuple(topics)
        self.tick_interval = tick_interval
        self.publish_cooldown = publish_cooldown
        self._clock = clock
        self.state = SchedulerState(auto_mode_enabled=enabled)
        self._ticking = False
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self.state.auto_mode_enabled and not self.state.kill_switch_engaged

    def enable(self) -> None:
        if self.state.kill_switch_engaged:
            raise KillSwitchEngaged()
        self.state.auto_mode_enabled = True
        logger.info("Autonomous mode enabled")

    def disable(self) -> None:
        self.state.auto_mode_enabled = False
        logger.info("Autonomous mode disabled")

    def engage_kill_switch(self) -> None:
        # Both flags in one step; turning posting back on takes two commands
        self.state.kill_switch_engaged = True
        self.state.auto_mode_enabled = False
        logger.warning("Kill switch engaged, autonomous mode disabled")

    def disengage_kill_switch(self) -> None:
        self.state.kill_switch_engaged = False
        logger.info("Kill switch cleared, autonomous mode stays off until enabled")

    def cooldown_remaining(self) -> float:
        last = self.state.last_auto_publish_at
        if last is None:
            return 0.0
        return max(0.0, self.publish_cooldown - (self._clock() - last))

    def current_topic(self) -> str:
        return self.topics[self.state.topic_cursor % len(self.topics)]

    def advance_topic(self) -> None:
        self.state.topic_cursor = (self.state.topic_cursor + 1) % len(self.topics)

    async def tick(self) -> str:
        if self._ticking:
            return "tick_in_progress"
        if self.state.kill_switch_engaged:
            return "kill_switch_engaged"
        if not self.state.auto_mode_enabled:
            return "auto_disabled"
        if self.cooldown_remaining() > 0:
            return "cooldown"
        if not self.topics:
            logger.warning("Autonomous mode is on but no topics are configured")
            return "no_topics"

        self._ticking = True
        try:
            topic = self.current_topic()
            try:
                outcome = await self._originate(topic)
            except (Throttled, Duplicate) as e:
                # Not admitted: the same topic gets the next turn
                logger.info(f"Autonomous post for topic {topic!r} deferred: {e}")
                return f"rejected_{e.kind}"
            except AnnounceError as e:
                logger.warning(f"Autonomous post for topic {topic!r} rejected: {e}")
                self.advance_topic()
                return f"rejected_{e.kind}"
            if outcome is None:
                return "aborted"
            self.advance_topic()
            self.state.last_auto_publish_at = self._clock()
            return "originated"
        finally:
            self._ticking = False

    async def run(self) -> None:
        logger.info(
            f"Autonomous scheduler started (tick {self.tick_interval:g}s, "
            f"cooldown {self.publish_cooldown:g}s, {len(self.topics)} topics)"
        )
        while True:
            try:
                result = await self.tick()
                if result not in ("auto_disabled", "kill_switch_engaged", "cooldown"):
                    logger.info(f"Scheduler tick: {result}")
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.tick_interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="autonomous-scheduler")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
