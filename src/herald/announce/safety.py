from typing import Optional

from .errors import MetaResponseDetected

# Phrases the model produces when it asks for input instead of writing
META_RESPONSE_PHRASES = (
    "i don't see any",
    "could you provide",
    "i'm ready to help",
    "please provide",
    "drop the content",
    "share the post",
    "once you share",
)


def find_meta_phrase(text: str) -> Optional[str]:
    lowered = text.casefold().replace("’", "'").replace("‘", "'")
    for phrase in META_RESPONSE_PHRASES:
        if phrase in lowered:
            return phrase
    return None


def ensure_not_meta_response(text: str) -> str:
    phrase = find_meta_phrase(text)
    if phrase is not None:
        raise MetaResponseDetected(phrase)
    return text
