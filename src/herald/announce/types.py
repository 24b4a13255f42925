from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Origin(Enum):
    WEBHOOK = "webhook"
    SCHEDULER = "scheduler"
    OPERATOR = "operator"

    @property
    def prefix(self) -> str:
        return {"webhook": "w", "scheduler": "s", "operator": "a"}[self.value]


class ResolveAction(Enum):
    PUBLISH = "publish"
    DISCARD = "discard"


@dataclass(frozen=True, slots=True)
class InboundCandidate:
    source_text: str
    source_url: Optional[str]
    received_at: float
    origin: Origin = Origin.WEBHOOK

    def to_prompt(self) -> str:
        if self.source_url:
            return f"{self.source_text}\n\nOriginal post URL: {self.source_url}"
        return self.source_text


@dataclass(frozen=True, slots=True)
class PendingApproval:
    id: str
    source_text: str
    generated_text: str
    source_url: Optional[str]
    created_at: float
    origin: Origin = Origin.WEBHOOK


@dataclass(slots=True)
class Resolution:
    approval: PendingApproval
    action: ResolveAction
    channels_posted: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class Outcome:
    """What happened to an admitted candidate."""

    status: str  # "stored" | "pending_review" | "posted"
    rewritten: Optional[str] = None
    approval_id: Optional[str] = None
    channels_posted: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status}
        if self.status == "pending_review":
            body["approval_id"] = self.approval_id
            body["preview"] = (self.rewritten or "")[:200]
        elif self.status == "posted":
            body["rewritten"] = self.rewritten
            body["channels_posted"] = self.channels_posted
        return body


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(slots=True)
class StatusSnapshot:
    review_required: bool
    autonomous_mode: bool
    kill_switch: bool
    shadow_mode: bool
    pending_count: int
    destinations: int
    style: str
    last_inbound_at: Optional[float] = None
    last_accepted_at: Optional[float] = None
    last_auto_publish_at: Optional[float] = None
    topics: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("last_inbound_at", "last_accepted_at", "last_auto_publish_at"):
            data[key] = _iso(data[key])
        return data
