import logging
import os
import re
from dataclasses import dataclass

import aiohttp
import logfire

from .utils import load_config

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-haiku-4-5-20251001"

DEFAULT_SYSTEM_PROMPT = """You are a sharp community manager running an announcement channel. Tone: {style}

Rewrite social-media posts into SHORT, punchy chat announcements. Every word earns its place.

FORMAT (6-10 lines max):
1. HOOK: One bold line. Emoji optional.
2. FACTS: 2-3 short lines with the key info. Fragments, arrows, numbers. No fluff.
3. LINK: "Thread:" + URL if provided. Skip if none.
4. CLOSE: One short call to action.

RULES:
- Aim for under 150 words.
- No em dashes or en dashes. Use hyphens, commas, colons.
- Include real facts and numbers from the source.
- NEVER ask for more info. NEVER say "I'm ready to help" or "Could you provide".
- Output must ALWAYS be a finished announcement, never a question."""

_DASHES = re.compile("[—–]")


class LLMException(Exception):
    """Raised when the generation API fails"""


class GenerationError(LLMException):
    """Raised when the API answers with an error status or an unusable body"""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


@dataclass(slots=True)
class AIConfig:
    url: str
    key: str
    model: str
    max_tokens: int
    timeout: float


def get_ai_config() -> AIConfig:
    return AIConfig(
        url=os.getenv("AI_API_URL", DEFAULT_API_URL),
        key=os.getenv("AI_API_KEY") or os.getenv("OPENAI_API_KEY") or "",
        model=os.getenv("AI_MODEL", DEFAULT_MODEL),
        max_tokens=int(os.getenv("AI_ANNOUNCE_MAX_TOKENS", "200")),
        timeout=float(os.getenv("AI_REQUEST_TIMEOUT_MS", "10000")) / 1000,
    )


def build_system_prompt(style: str) -> str:
    template = load_config().get("announce_system_prompt") or DEFAULT_SYSTEM_PROMPT
    return template.replace("{style}", style)


@logfire.instrument()
async def generate_announcement(prompt: str, style: str) -> str:
    """
    Turn source text into announcement prose. One request, no retries.

    Without an API key the call degrades to a marker text so the rest of the
    pipeline can be exercised end to end.
    """
    cfg = get_ai_config()
    if not cfg.key:
        return f"[AI disabled] Announcement about: {prompt}"

    headers = {
        "Content-Type": "application/json",
        "x-api-key": cfg.key,
        "anthropic-version": "2023-06-01",
    }
    data = {
        "model": cfg.model,
        "max_tokens": cfg.max_tokens,
        "temperature": 0.7,
        "system": build_system_prompt(style),
        "messages": [{"role": "user", "content": prompt}],
    }

    with logfire.span("Announcement request/response", model=cfg.model) as span:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                cfg.url,
                headers=headers,
                json=data,
                timeout=aiohttp.ClientTimeout(total=cfg.timeout),
            ) as response:
                span.set_attribute("status", response.status)
                if response.status >= 400:
                    raise GenerationError(
                        f"AI API error: {response.status}", status=response.status
                    )
                result = await response.json()

    reply = _extract_content(result)
    if not reply:
        logger.warning(f"AI returned empty content for model {cfg.model}: {result}")
        return f"[AI returned empty] Topic: {prompt}"
    # Models ignore the dash rule often enough to enforce it here
    return _DASHES.sub("-", reply).strip()


def _extract_content(result: dict) -> str | None:
    """Accepts both Anthropic (``content``) and OpenAI (``choices``) bodies."""
    if not isinstance(result, dict):
        return None

    content = result.get("content")
    if isinstance(content, list) and content:
        first = content[0]
        if isinstance(first, dict) and isinstance(first.get("text"), str):
            return first["text"]

    try:
        reply = result["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None

    if isinstance(reply, list):
        reply = "\n".join(
            part if isinstance(part, str) else str(part.get("text", ""))
            for part in reply
        )
    return reply if isinstance(reply, str) else None
