"""
Cache package for Users Service.

Provides a Redis-backed cache of user records. Entries expire through
Redis TTLs; the service never invalidates them explicitly.
"""

from .redis_cache import RedisUserCache

__all__ = ["RedisUserCache"]
