"""
Menu cache: in-memory with TTL, backed by Redis when REDIS_URL is set.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

logger = logging.getLogger(__name__)


class SimpleCache:
    """In-memory cache with TTL support and size limit."""

    MAX_ENTRIES = 1000

    def __init__(self):
        self._cache: dict = {}
        self._expiry: dict = {}

    def _evict_expired(self):
        now = datetime.now()
        expired = [k for k, exp in self._expiry.items() if exp <= now]
        for k in expired:
            self._cache.pop(k, None)
            self._expiry.pop(k, None)

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        if key in self._cache:
            if datetime.now() < self._expiry.get(key, datetime.min):
                return self._cache[key]
            del self._cache[key]
            del self._expiry[key]
        return None

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        if len(self._cache) >= self.MAX_ENTRIES:
            self._evict_expired()
        if len(self._cache) >= self.MAX_ENTRIES:
            oldest_keys = sorted(self._expiry, key=self._expiry.get)[:100]
            for k in oldest_keys:
                self._cache.pop(k, None)
                self._expiry.pop(k, None)
        self._cache[key] = value
        self._expiry[key] = datetime.now() + timedelta(seconds=ttl_seconds)

    def delete(self, key: str):
        self._cache.pop(key, None)
        self._expiry.pop(key, None)

    def clear(self):
        self._cache.clear()
        self._expiry.clear()


class MenuCache:
    """Per-restaurant menu cache.

    Redis is used when configured and reachable; any Redis error falls
    back to the in-process cache for that call.
    """

    PREFIX = "menu"

    def __init__(self):
        self._redis = None
        self._fallback = SimpleCache()

    def initialize(self, redis_url: str | None = None):
        if not redis_url:
            return
        try:
            import redis
            self._redis = redis.from_url(
                redis_url, socket_connect_timeout=2, decode_responses=True,
            )
            self._redis.ping()
            logger.info("Redis menu cache connected")
        except Exception as e:
            logger.warning(f"Redis unavailable, using memory cache: {e}")
            self._redis = None

    def key(self, restaurant_id: int) -> str:
        return f"{self.PREFIX}:{restaurant_id}"

    def get(self, restaurant_id: int) -> Any | None:
        key = self.key(restaurant_id)
        if self._redis:
            try:
                val = self._redis.get(key)
                return json.loads(val) if val else None
            except Exception as e:
                logger.warning(f"Redis get failed for {key}: {e}")
        return self._fallback.get(key)

    def set(self, restaurant_id: int, value: Any, ttl_seconds: int = 300):
        key = self.key(restaurant_id)
        if self._redis:
            try:
                self._redis.setex(key, ttl_seconds, json.dumps(value, default=str))
                return
            except Exception as e:
                logger.warning(f"Redis set failed for {key}: {e}")
        self._fallback.set(key, value, ttl_seconds)

    def invalidate(self, restaurant_id: int):
        key = self.key(restaurant_id)
        if self._redis:
            try:
                self._redis.delete(key)
            except Exception as e:
                logger.warning(f"Redis delete failed for {key}: {e}")
        # Local copy may hold a value written while Redis was down
        self._fallback.delete(key)
        logger.debug(f"Menu cache invalidated for restaurant {restaurant_id}")

    def clear(self):
        self._fallback.clear()


menu_cache = MenuCache()
