import re
import time
from typing import Any, Optional

from ..common.utils import get_dotted_path
from .errors import InvalidPayload, MissingQualifyingLink
from .types import InboundCandidate, Origin

DEFAULT_MIN_LENGTH = 20

# Accepted payload shapes, first hit wins
TEXT_PATHS = ("text", "post.text", "message")
URL_PATHS = ("url", "post.url", "link")

_URL_IN_TEXT = re.compile(r"https?://\S+")


def _first_string(payload: dict, paths: tuple[str, ...]) -> Optional[str]:
    for path in paths:
        value = get_dotted_path(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_candidate(
    payload: Any,
    *,
    min_length: int = DEFAULT_MIN_LENGTH,
    link_pattern: Optional[re.Pattern] = None,
    now: Optional[float] = None,
) -> InboundCandidate:
    """
    Validate an inbound payload and turn it into a candidate.

    Text comes from ``text``, ``post.text`` or ``message``; the link from
    ``url``, ``post.url`` or ``link``. When ``link_pattern`` is set the link
    must match it; a matching URL inside the text is accepted when the
    payload carries no separate link field.
    """
    if not isinstance(payload, dict):
        raise InvalidPayload("Payload must be a JSON object")

    text = _first_string(payload, TEXT_PATHS)
    if not text or len(text) < min_length:
        raise InvalidPayload(
            f'No post text found or too short (min {min_length} chars, send {{"text": "..."}})'
        )

    url = _first_string(payload, URL_PATHS)

    if link_pattern is not None:
        if url is None:
            url = next(
                (
                    match.group(0)
                    for match in _URL_IN_TEXT.finditer(text)
                    if link_pattern.search(match.group(0))
                ),
                None,
            )
        if url is None or not link_pattern.search(url):
            raise MissingQualifyingLink(
                f"Post must link to a source matching {link_pattern.pattern}"
            )

    return InboundCandidate(
        source_text=text,
        source_url=url,
        received_at=time.time() if now is None else now,
        origin=Origin.WEBHOOK,
    )
