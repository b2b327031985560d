"""
Redis L1 cache for escalation responses.

Entries are keyed by email content hash and model tier. When Redis is
unreachable the cache degrades to "always miss" and every request goes to
the model.
"""
import json
import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class EscalationCache:
    def __init__(self, redis_url: str, ttl_hours: int = 24 * 7, prefix: str = "esc", client=None):
        self.redis_url = redis_url
        self.ttl_hours = ttl_hours
        self.prefix = prefix
        self._client = client
        self._unavailable = False

    @classmethod
    def from_settings(cls, settings) -> Optional["EscalationCache"]:
        if not settings.redis_url:
            return None
        return cls(settings.redis_url, ttl_hours=settings.escalation_cache_ttl_hours)

    def _get_client(self):
        """Connected client, or None once a connection attempt has failed."""
        if self._unavailable:
            return None
        if self._client is not None:
            return self._client
        try:
            client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            client.ping()
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Redis unavailable: {e}. Escalation responses will not be cached.")
            self._unavailable = True
            return None
        logger.debug("Redis escalation cache connected")
        self._client = client
        return client

    def _key(self, content_hash: str, tier: str) -> str:
        return f"{self.prefix}:{tier}:{content_hash}"

    def get(self, content_hash: str, tier: str) -> Optional[dict]:
        client = self._get_client()
        if client is None:
            return None
        try:
            data = client.get(self._key(content_hash, tier))
            if data:
                return json.loads(data)
        except (redis.RedisError, ValueError) as e:
            logger.debug(f"Redis get error: {e}")
        return None

    def set(self, content_hash: str, tier: str, data: dict) -> bool:
        client = self._get_client()
        if client is None:
            return False
        try:
            client.setex(self._key(content_hash, tier), self.ttl_hours * 3600, json.dumps(data))
            return True
        except (redis.RedisError, TypeError) as e:
            logger.debug(f"Redis set error: {e}")
            return False

    def invalidate(self, content_hash: str, tier: str) -> bool:
        client = self._get_client()
        if client is None:
            return True
        try:
            client.delete(self._key(content_hash, tier))
            return True
        except redis.RedisError as e:
            logger.debug(f"Redis delete error: {e}")
            return False

    def stats(self) -> dict:
        client = self._get_client()
        if client is None:
            return {"status": "unavailable"}
        try:
            info = client.info("memory")
            return {
                "status": "connected",
                "keys": client.dbsize(),
                "used_memory_human": info.get("used_memory_human", "unknown"),
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}
