"""
Admission, approval and dispatch pipeline.

This package holds the announcement core split into:
- content_gate: Inbound payload validation
- admission: Global throttle and duplicate suppression window
- safety: Post-generation guard against meta responses
- ledger: Pending reviews and their resolution
- fanout: Delivery to destination channels
- scheduler: Autonomous origination loop and kill switch
- coordinator: The single owner of all of the above
"""

from .admission import AdmissionGate, AdmissionThrottle, DuplicateWindow, fingerprint
from .content_gate import extract_candidate
from .coordinator import PipelineCoordinator
from .errors import (
    AnnounceError,
    Duplicate,
    GenerationFailed,
    GenerationTimedOut,
    InvalidPayload,
    KillSwitchEngaged,
    MetaResponseDetected,
    MissingQualifyingLink,
    NotFound,
    Throttled,
    Unauthorized,
)
from .fanout import ChannelGateway, FanOut
from .ledger import ApprovalLedger
from .safety import ensure_not_meta_response, find_meta_phrase
from .scheduler import AutonomousScheduler, SchedulerState
from .types import (
    InboundCandidate,
    Origin,
    Outcome,
    PendingApproval,
    Resolution,
    ResolveAction,
    StatusSnapshot,
)

__all__ = [
    # Gates
    "AdmissionGate",
    "AdmissionThrottle",
    "DuplicateWindow",
    "extract_candidate",
    "fingerprint",
    "ensure_not_meta_response",
    "find_meta_phrase",
    # State owners
    "ApprovalLedger",
    "AutonomousScheduler",
    "ChannelGateway",
    "FanOut",
    "PipelineCoordinator",
    "SchedulerState",
    # Errors
    "AnnounceError",
    "Duplicate",
    "GenerationFailed",
    "GenerationTimedOut",
    "InvalidPayload",
    "KillSwitchEngaged",
    "MetaResponseDetected",
    "MissingQualifyingLink",
    "NotFound",
    "Throttled",
    "Unauthorized",
    # Types
    "InboundCandidate",
    "Origin",
    "Outcome",
    "PendingApproval",
    "Resolution",
    "ResolveAction",
    "StatusSnapshot",
]
