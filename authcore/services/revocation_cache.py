"""Revoked access token cache backed by Redis key expiry."""

from __future__ import annotations

import logging
import math

from redis import Redis
from redis.exceptions import RedisError

from authcore.config import Settings
from authcore.core.exceptions import StoreUnavailableError
from authcore.core.security import token_fingerprint

logger = logging.getLogger(__name__)


class RevocationCache:
    """
    Blacklist of bearer tokens that must be rejected before they expire.

    Keys are token fingerprints, each living exactly as long as the token it
    blocks. Any Redis failure surfaces as StoreUnavailableError so callers
    fail closed.
    """

    KEY_PREFIX = "blacklist:token:"

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RevocationCache":
        client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
        return cls(client)

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token_fingerprint(token)}"

    def add(self, token: str, ttl_seconds: float) -> bool:
        """
        Blacklist a token for its remaining lifetime.

        Re-adding an existing token refreshes its TTL. A non-positive TTL means
        the token is already dead and nothing is written.

        Returns:
            True if an entry was written
        """
        # rounded down so the entry never outlives the token
        ttl_ms = math.floor(ttl_seconds * 1000)
        if ttl_ms <= 0:
            return False
        try:
            self.client.set(self._key(token), "revoked", px=ttl_ms)
        except RedisError as exc:
            logger.error("Revocation cache write failed: %s", exc)
            raise StoreUnavailableError("Revocation cache unavailable")
        return True

    def contains(self, token: str) -> bool:
        try:
            return bool(self.client.exists(self._key(token)))
        except RedisError as exc:
            logger.error("Revocation cache read failed: %s", exc)
            raise StoreUnavailableError("Revocation cache unavailable")

    def remove(self, token: str) -> None:
        try:
            self.client.delete(self._key(token))
        except RedisError as exc:
            logger.error("Revocation cache delete failed: %s", exc)
            raise StoreUnavailableError("Revocation cache unavailable")

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False
