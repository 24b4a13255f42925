class AnnounceError(Exception):
    """Base class for failures scoped to a single candidate or operator action"""

    kind = "error"
    http_status = 400

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": str(self)}


class InvalidPayload(AnnounceError):
    """Raised when the inbound payload carries no usable post text"""

    kind = "invalid_payload"
    http_status = 400


class MissingQualifyingLink(AnnounceError):
    """Raised when a required source link is absent or does not match the pattern"""

    kind = "missing_qualifying_link"
    http_status = 400


class Unauthorized(AnnounceError):
    """Raised for a bad shared secret or an actor outside the operator allow-list"""

    kind = "unauthorized"
    http_status = 401


class Throttled(AnnounceError):
    """Raised when another item was admitted less than a cooldown ago"""

    kind = "throttled"
    http_status = 429

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Another item is being processed, retry in {retry_after:.1f}s")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "retry_after": round(self.retry_after, 1)}


class Duplicate(AnnounceError):
    """Raised when the same source text was admitted inside the suppression window"""

    kind = "duplicate"
    http_status = 429

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__("Identical post text was received recently")


class GenerationFailed(AnnounceError):
    """Raised when the text-generation collaborator fails"""

    kind = "generation_failed"
    http_status = 500


class GenerationTimedOut(GenerationFailed):
    """Raised when generation exceeds its timeout"""

    kind = "generation_timed_out"
    http_status = 504

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Announcement generation timed out after {timeout:g}s")


class MetaResponseDetected(AnnounceError):
    """Raised when generated text asks for input instead of being an announcement"""

    kind = "meta_response_detected"
    http_status = 422

    def __init__(self, phrase: str):
        self.phrase = phrase
        super().__init__("AI did not produce a valid announcement from the input")


class NotFound(AnnounceError):
    """Raised for an approval id that was already resolved, expired or never existed"""

    kind = "not_found"
    http_status = 404

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Review {approval_id} has expired or was already handled")


class KillSwitchEngaged(AnnounceError):
    """Raised when autonomous mode is enabled while the kill switch is on"""

    kind = "kill_switch_engaged"
    http_status = 409

    def __init__(self):
        super().__init__("Kill switch is engaged, clear it before enabling autonomous mode")
