import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .utils import load_config, parse_bool, parse_chat_id, split_csv

logger = logging.getLogger(__name__)

FALLBACK_STYLE = "Professional, confident, concise crypto-native tone."


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using {default}")
        return default


def _generation_timeout(env: Mapping[str, str]) -> float:
    if env.get("GENERATION_TIMEOUT_SECONDS", "").strip():
        return _float(env, "GENERATION_TIMEOUT_SECONDS", 10.0)
    return _float(env, "AI_REQUEST_TIMEOUT_MS", 10_000.0) / 1000


@dataclass(slots=True)
class Settings:
    """Deployment knobs read once at startup."""

    webhook_auth_token: str = ""
    admin_ids: frozenset[int] = frozenset()
    announce_chat_ids: tuple[int | str, ...] = ()
    review_chat_id: Optional[int | str] = None
    command_chat_id: Optional[int | str] = None
    telegram_webhook_url: str = ""

    min_text_length: int = 20
    required_link_pattern: Optional[str] = None
    admission_cooldown: float = 30.0
    dedup_window: float = 180.0
    generation_timeout: float = 10.0

    review_required: bool = True
    approval_ttl: float = 0.0
    shadow_mode: bool = False

    autopost_enabled: bool = False
    autopost_tick: float = 30.0
    autopost_cooldown: float = 3600.0
    autopost_topics: tuple[str, ...] = ()

    default_style: str = FALLBACK_STYLE
    redis_url: str = ""
    port: int = 8080
    texts: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        config: dict[str, Any] | None = None,
    ) -> "Settings":
        env = os.environ if env is None else env
        config = load_config() if config is None else config
        autopost = config.get("autopost", {}) or {}

        admin_ids = frozenset(
            int(value)
            for value in split_csv(env.get("ADMIN_USER_IDS") or env.get("ADMIN_USER_ID"))
            if value.lstrip("-").isdigit()
        )
        announce_chat_ids = tuple(
            parse_chat_id(value)
            for value in split_csv(
                env.get("ANNOUNCE_CHAT_IDS") or env.get("ANNOUNCE_CHAT_ID")
            )
        )

        review_chat_raw = env.get("REVIEW_CHAT_ID", "").strip()
        if review_chat_raw:
            review_chat_id = parse_chat_id(review_chat_raw)
        elif admin_ids:
            # Private chat with the first operator
            review_chat_id = sorted(admin_ids)[0]
        else:
            review_chat_id = None

        command_chat_raw = env.get("COMMAND_CHAT_ID", "").strip()

        return cls(
            webhook_auth_token=env.get("WEBHOOK_AUTH_TOKEN", ""),
            admin_ids=admin_ids,
            announce_chat_ids=announce_chat_ids,
            review_chat_id=review_chat_id,
            command_chat_id=parse_chat_id(command_chat_raw) if command_chat_raw else None,
            telegram_webhook_url=env.get("TELEGRAM_WEBHOOK_URL", ""),
            min_text_length=int(_float(env, "MIN_POST_LENGTH", 20)),
            required_link_pattern=env.get("REQUIRED_LINK_PATTERN", "").strip() or None,
            admission_cooldown=_float(env, "ADMISSION_COOLDOWN_SECONDS", 30.0),
            dedup_window=_float(env, "DEDUP_WINDOW_SECONDS", 180.0),
            generation_timeout=_generation_timeout(env),
            review_required=parse_bool(env.get("APPROVAL_MODE"), default=True),
            approval_ttl=_float(env, "APPROVAL_TTL_SECONDS", 0.0),
            shadow_mode=parse_bool(env.get("SHADOW_MODE")),
            autopost_enabled=parse_bool(
                env.get("AUTOPOST_ENABLED"), default=bool(autopost.get("enabled"))
            ),
            autopost_tick=_float(env, "AUTOPOST_TICK_SECONDS", 30.0),
            autopost_cooldown=_float(
                env,
                "AUTOPOST_COOLDOWN_SECONDS",
                float(autopost.get("cooldown_seconds") or 3600),
            ),
            autopost_topics=tuple(
                str(topic).strip()
                for topic in autopost.get("topics") or []
                if str(topic).strip()
            ),
            default_style=env.get("DEFAULT_STYLE")
            or config.get("default_style")
            or FALLBACK_STYLE,
            redis_url=env.get("REDIS_URL", ""),
            port=int(_float(env, "PORT", 8080)),
            texts=config,
        )

    def is_operator(self, user_id: int | None) -> bool:
        return user_id is not None and user_id in self.admin_ids
