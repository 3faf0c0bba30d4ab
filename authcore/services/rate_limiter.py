"""Redis-backed fixed-window rate limiting for the credential endpoints."""

from __future__ import annotations

import logging

from redis import Redis
from redis.exceptions import RedisError

from authcore.config import Settings

logger = logging.getLogger(__name__)


class RedisRateLimiter:
    """Fixed-window counter: INCR the window key and start its expiry on the first hit."""

    KEY_PREFIX = "rate_limit:"

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisRateLimiter":
        client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
        return cls(client)

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        redis_key = f"{self.KEY_PREFIX}{key}"
        try:
            count = self.client.incr(redis_key)
            if count == 1:
                self.client.expire(redis_key, window_seconds)
        except RedisError as exc:
            # fail open; account lockout still applies
            logger.error("Rate limiter unavailable, allowing request: %s", exc)
            return True
        return count <= limit

    def remaining(self, key: str, limit: int) -> int:
        try:
            value = self.client.get(f"{self.KEY_PREFIX}{key}")
        except RedisError:
            return limit
        return max(0, limit - int(value or 0))

    def reset(self, key: str) -> None:
        self.client.delete(f"{self.KEY_PREFIX}{key}")
