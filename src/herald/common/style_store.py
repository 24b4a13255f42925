import logging
from typing import Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

STYLE_KEY = "style:memory"


class StyleStore:
    """
    Operator-tunable style directive, cached in memory and mirrored to Redis.

    Redis is optional: without ``REDIS_URL`` (or when it is unreachable) the
    value only lives for the lifetime of the process.
    """

    def __init__(self, default: str, redis: Optional[Redis] = None) -> None:
        self.default = default
        self.value = default
        self._redis = redis

    @classmethod
    def from_url(cls, default: str, url: str) -> "StyleStore":
        redis = Redis.from_url(url, decode_responses=True) if url else None
        return cls(default, redis)

    @property
    def persistent(self) -> bool:
        return self._redis is not None

    async def load(self) -> str:
        if self._redis is not None:
            try:
                saved = await self._redis.get(STYLE_KEY)
            except Exception as e:
                logger.warning(f"Style memory redis load failed: {e}")
            else:
                if saved:
                    self.value = saved
                    logger.info("Style memory restored from redis")
                    return self.value
        self.value = self.default
        return self.value

    async def set(self, style: str) -> bool:
        """Returns False when the value could only be kept in memory."""
        self.value = style
        if self._redis is None:
            return False
        try:
            await self._redis.set(STYLE_KEY, style)
        except Exception as e:
            logger.warning(f"Style memory redis save failed: {e}")
            return False
        return True

    async def health(self) -> str:
        if self._redis is None:
            return "disabled"
        try:
            await self._redis.ping()
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return "degraded"
        return "ok"

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
