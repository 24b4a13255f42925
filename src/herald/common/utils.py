import logging
import os
from typing import Any, Dict

import yaml
from aiogram.exceptions import TelegramBadRequest
from aiohttp import ClientError, ClientOSError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# Network errors that should be retried
RETRYABLE_ERRORS = (
    ClientOSError,  # Connection reset by peer, etc.
    ClientError,  # Other aiohttp client errors
    OSError,  # Low-level OS errors
    ConnectionError,  # Generic connection errors
    TimeoutError,  # Timeout errors
)

# Permanent errors that should not be retried
PERMANENT_ERRORS = (TelegramBadRequest,)  # Chat not found, bot not in channel, etc.

# Tenacity retry decorator for network operations
retry_on_network_error = retry(
    stop=stop_after_attempt(4),  # 4 attempts total (1 initial + 3 retries)
    wait=wait_exponential(multiplier=0.5, min=0.5, max=10),  # 0.5s to 10s backoff
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    reraise=True,  # Re-raise the last exception if all retries fail
    before_sleep=lambda retry_state: (
        logger.info(
            f"Retryable error on attempt {retry_state.attempt_number}/4: "
            f"{retry_state.outcome.exception() if retry_state.outcome else 'Unknown error'}. Retrying..."
        )
        if retry_state.attempt_number <= 3
        else logger.warning(
            f"All retries failed with error: {retry_state.outcome.exception() if retry_state.outcome else 'Unknown error'}",
            exc_info=True,
        )
    ),
)


def get_config_path() -> str:
    return os.getenv("HERALD_CONFIG", "config.yaml")


def load_config() -> Dict[str, Any]:
    """
    Load long-form texts (system prompt, help text, topic rotation) from config.yaml.

    A missing file is not fatal: every consumer has a built-in default.
    """
    path = get_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Config file {path} not found, using built-in defaults")
        return {}
    logger.debug("Configuration loaded successfully")
    return config


def split_csv(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def parse_chat_id(value: str) -> int | str:
    """Numeric chat ids become ints, ``@channel`` usernames stay strings."""
    try:
        return int(value)
    except ValueError:
        return value


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def remove_lines_to_fit_len(text: str, max_len: int) -> str:
    """
    Removes lines from the middle of the text until it fits into max_len

    Args:
        text (str): Input text
        max_len (int): Maximum text length

    Returns:
        str: Processed text
    """
    splitted = text.split("\n")

    while len(text) > max_len - len("...\n") and len(splitted) > 2:
        half = len(splitted) // 2
        text = "\n".join(splitted[:half] + ["..."] + splitted[half + 1 :])
        splitted = splitted[:half] + splitted[half + 1 :]

    if len(text) > max_len:
        text = text[: max_len - len("...")] + "..."

    return text


def sanitize_html(text: str | None) -> str:
    """
    Escapes special characters for Telegram HTML format.
    See: https://core.telegram.org/bots/api#html-style
    """
    if text is None:
        return ""

    # HTML entities that need to be escaped
    html_entities = {
        "&": "&amp;",  # Must be first
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
    }
    for char, entity in html_entities.items():
        text = text.replace(char, entity)
    return text


def format_duration(seconds: float) -> str:
    """Render an elapsed/remaining interval as ``1h 2m 3s``."""
    seconds = max(0, int(round(seconds)))
    h, rest = divmod(seconds, 3600)
    m, s = divmod(rest, 60)
    if h:
        return f"{h}h {m}m {s}s"
    if m:
        return f"{m}m {s}s"
    return f"{s}s"


def get_dotted_path(json: dict, path: str, raise_on_missing: bool = False):
    """
    Gets a value from JSON by a dotted path.

    ``*`` can be used to search through all values of a dict.

    For example, for json = {"post": {"text": "hello", "url": "u"}}
    get_dotted_path(json, "post.text") returns "hello"
    get_dotted_path(json, "*.url") returns "u"
    get_dotted_path(json, "non-existent.path") returns None
    """
    current_path = path
    current_json = json
    while True:
        if not isinstance(current_json, dict):
            if raise_on_missing:
                raise KeyError(f"Key {path} not found in {json}")
            return None
        if "." not in current_path:
            if current_path in current_json:
                return current_json[current_path]
            elif raise_on_missing:
                raise KeyError(f"Key {path} not found in {json}")
            else:
                return None
        next_step, rest = current_path.split(".", 1)
        if next_step == "*":
            for value in current_json.values():
                if isinstance(value, dict):
                    result = get_dotted_path(value, rest, False)
                    if result is not None:
                        return result
            if raise_on_missing:
                raise KeyError(f"Key {path} not found in {json}")
            else:
                return None
        if next_step in current_json:
            current_json = current_json[next_step]
            current_path = rest
        elif raise_on_missing:
            raise KeyError(f"Key {next_step} not found in {json}")
        else:
            return None
