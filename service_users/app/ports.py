"""
Collaborator protocols consumed by the user access coordinator.

Any object with matching coroutine methods satisfies these; the Redis and
PostgreSQL adapters are the production implementations and tests use
in-memory fakes.
"""

from typing import Optional, Protocol, runtime_checkable

from .models import User


@runtime_checkable
class UserCache(Protocol):
    """Volatile, lossy lookaside store keyed by user ID."""

    async def get_user(self, user_id: str) -> Optional[User]:
        """Return the cached user, ``None`` on a miss.

        Raises ``TransientBackendError`` when the cache cannot answer.
        """
        ...

    async def set_user(self, user: User, ttl_seconds: Optional[int] = None) -> None:
        """Store ``user``; raises ``TransientBackendError`` on failure."""
        ...


@runtime_checkable
class UserStore(Protocol):
    """Authoritative user storage."""

    async def get_user(self, user_id: str) -> User:
        """Return the stored user.

        Raises ``NotFoundError`` when no row matches and ``StoreError`` on
        any other failure.
        """
        ...

    async def create_user(self, name: str, email: str) -> User:
        """Insert a user and return it with its store-assigned ID."""
        ...
