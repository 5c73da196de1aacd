"""
Redis caching layer for Users Service.
"""

import asyncio
import json
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import AccessLayerException, TransientBackendError
from ..models import User

BACKEND = "redis"


class RedisUserCache:
    """Redis caching layer for user records."""

    KEY_PREFIX = "user:"

    def __init__(
        self,
        redis_url: str,
        password: Optional[str] = None,
        db: Optional[int] = None,
        default_ttl: int = 300,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.password = password
        self.db = db
        self.default_ttl = default_ttl
        self.logger = get_logger("users.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache."""
        if self.redis is None:
            options = {
                "encoding": "utf-8",
                "decode_responses": True,
                "socket_connect_timeout": 5,
                "socket_timeout": 5,
                "health_check_interval": 30,
            }
            # Explicit settings win over whatever the URL carries
            if self.password is not None:
                options["password"] = self.password
            if self.db is not None:
                options["db"] = self.db
            self.redis = redis.from_url(self.redis_url, **options)

        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise AccessLayerException("REDIS_START_FAILED", str(e))

        self.logger.info("Redis cache started", db=self.db)

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    async def get_user(self, user_id: str) -> Optional[User]:
        """Get a cached user; ``None`` on a miss."""
        cache_key = self._get_user_key(user_id)
        client = self._client()

        try:
            cached_data = await client.get(cache_key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise TransientBackendError(BACKEND, "lookup failed", {"key": cache_key, "error": str(e)}) from e

        if cached_data is None:
            self.logger.debug("Cache miss for user", cache_key=cache_key)
            return None

        try:
            user = User.from_dict(json.loads(cached_data))
        except (ValueError, KeyError, TypeError) as e:
            raise TransientBackendError(BACKEND, "undecodable cache entry", {"key": cache_key, "error": str(e)}) from e

        self.logger.debug("Cache hit for user", cache_key=cache_key)
        return user

    async def set_user(self, user: User, ttl_seconds: Optional[int] = None) -> None:
        """Cache a user record."""
        cache_key = self._get_user_key(user.user_id)
        client = self._client()

        if ttl_seconds is None:
            ttl_seconds = self.default_ttl

        payload = json.dumps(user.to_dict())

        try:
            if ttl_seconds > 0:
                await client.set(cache_key, payload, ex=ttl_seconds)
            else:
                await client.set(cache_key, payload)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise TransientBackendError(BACKEND, "write failed", {"key": cache_key, "error": str(e)}) from e

        self.logger.debug("Cached user", cache_key=cache_key, ttl=ttl_seconds)

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except (RedisError, OSError, asyncio.TimeoutError):
            return False

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise TransientBackendError(BACKEND, "cache not started")
        return self.redis

    def _get_user_key(self, user_id: str) -> str:
        """Generate cache key for a user record."""
        return f"{self.KEY_PREFIX}{user_id}"
