import hashlib
import logging
import time
from typing import Callable, Optional

from .errors import Duplicate, Throttled

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def fingerprint(text: str) -> str:
    """Digest of the trimmed, case-folded text."""
    normalized = text.strip().casefold()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class AdmissionThrottle:
    """Single shared cooldown: no second item within ``cooldown`` seconds."""

    def __init__(self, cooldown: float = 30.0, clock: Clock = time.time) -> None:
        self.cooldown = cooldown
        self._clock = clock
        self.last_accepted_at: Optional[float] = None

    def remaining(self) -> float:
        if self.last_accepted_at is None:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self.last_accepted_at))

    def check(self) -> None:
        remaining = self.remaining()
        if remaining > 0:
            raise Throttled(remaining)

    def stamp(self) -> None:
        self.last_accepted_at = self._clock()


class DuplicateWindow:
    """Fingerprint table with lazy expiry, purged before every lookup."""

    def __init__(self, window: float = 180.0, clock: Clock = time.time) -> None:
        self.window = window
        self._clock = clock
        self._entries: dict[str, float] = {}

    def __len__(self) -> int:
        self.purge()
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        self.purge()
        return fingerprint(text) in self._entries

    def purge(self) -> int:
        now = self._clock()
        expired = [fp for fp, at in self._entries.items() if now - at >= self.window]
        for fp in expired:
            del self._entries[fp]
        return len(expired)

    def check(self, text: str) -> str:
        self.purge()
        fp = fingerprint(text)
        if fp in self._entries:
            raise Duplicate(fp)
        return fp

    def register(self, fp: str) -> None:
        self._entries[fp] = self._clock()

    def release(self, text: str) -> bool:
        return self._entries.pop(fingerprint(text), None) is not None


class AdmissionGate:
    """
    Throttle and duplicate window combined into one synchronous admission step.

    Nothing in ``admit`` awaits, so two requests arriving together on the
    event loop are totally ordered: the first registers both the timestamp
    and the fingerprint before the second one is looked at. A repeat of the
    same text is reported as ``Duplicate`` even while the cooldown is also
    running. A rejected attempt registers nothing.
    """

    def __init__(self, throttle: AdmissionThrottle, window: DuplicateWindow) -> None:
        self.throttle = throttle
        self.window = window

    def admit(self, text: str) -> str:
        fp = self.window.check(text)
        self.throttle.check()
        self.throttle.stamp()
        self.window.register(fp)
        logger.debug(f"Admitted candidate {fp[:12]}")
        return fp

    def release(self, text: str) -> None:
        """Forget a fingerprint after a failed generation so the item can be retried."""
        if self.window.release(text):
            logger.info("Released fingerprint after failed generation")
