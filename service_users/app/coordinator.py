"""
User access coordinator: read-through / write-through rules between the
Redis cache and the PostgreSQL store.

Reads treat the cache as advisory. Any cache failure on ``fetch`` (miss,
timeout, connection error, bad payload) falls back to the store, and a
failed cache population after a store read is logged, never surfaced.

Writes go to the store first and are then mirrored into the cache. With
``strict_cache_writes`` (the default) a failed mirror fails the whole
``create`` even though the row is already committed; callers may see an
error for a user that exists. Set it to ``False`` to treat that failure the
way ``fetch`` does.

Every backend call is bounded by ``call_timeout`` and by the caller's
``timeout`` for the whole operation, whichever is tighter. Once the
operation deadline has passed no further backend call is started.
"""

import asyncio
from contextlib import ExitStack
from typing import Optional

from shared.errors import InternalError, NotFoundError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import add_span_event, trace_operation
from .models import User
from .ports import UserCache, UserStore

DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"


class UserAccessCoordinator:
    """Orchestrates the cache and the durable store for user reads and writes."""

    def __init__(
        self,
        cache: UserCache,
        store: UserStore,
        metrics: Optional[MetricsCollector] = None,
        strict_cache_writes: bool = True,
        call_timeout: Optional[float] = None,
    ):
        self.cache = cache
        self.store = store
        self.metrics = metrics
        self.strict_cache_writes = strict_cache_writes
        self.call_timeout = call_timeout
        self.logger = get_logger("users.coordinator")

    async def fetch(self, user_id: str, timeout: Optional[float] = None) -> User:
        """Return the user, from the cache when possible.

        Raises ``NotFoundError`` when the store has no such user and
        ``InternalError`` when the store cannot answer.
        """
        if not user_id:
            raise ValidationError("user ID is required", {"field": "id"})

        deadline = self._deadline(timeout)

        with ExitStack() as stack:
            stack.enter_context(trace_operation("users.fetch", user_id=user_id))
            if self.metrics:
                stack.enter_context(self.metrics.time_operation("user_operation_duration_seconds", operation="fetch"))

            user = await self._lookup_cache(user_id, deadline)
            if user is not None:
                return user

            user = await self._load_from_store(user_id, deadline)
            await self._write_cache(user, deadline, operation="fetch", fatal=False)
            return user

    async def create(self, name: str, email: str, timeout: Optional[float] = None) -> User:
        """Insert a user in the store, then mirror it into the cache.

        Not idempotent: every call creates a new user ID.
        """
        missing = [field for field, value in (("name", name), ("email", email)) if not value or not value.strip()]
        if missing:
            raise ValidationError("name and email are required", {"fields": missing})

        deadline = self._deadline(timeout)

        with ExitStack() as stack:
            stack.enter_context(trace_operation("users.create"))
            if self.metrics:
                stack.enter_context(self.metrics.time_operation("user_operation_duration_seconds", operation="create"))

            user = await self._insert_into_store(name, email, deadline)
            await self._write_cache(user, deadline, operation="create", fatal=self.strict_cache_writes)
            return user

    async def _lookup_cache(self, user_id: str, deadline: Optional[float]) -> Optional[User]:
        timeout = self._call_budget(deadline, "cache lookup")
        try:
            user = await asyncio.wait_for(self.cache.get_user(user_id), timeout)
        except Exception as e:
            # Any cache failure degrades to a miss
            self.logger.warning("Cache lookup failed, falling back to store", user_id=user_id, error=repr(e))
            self._count("cache_lookups_total", result="error")
            add_span_event("cache_fallback", user_id=user_id, error=repr(e))
            return None

        if user is None:
            self.logger.debug("Cache miss", user_id=user_id)
            self._count("cache_lookups_total", result="miss")
            return None

        self.logger.debug("Cache hit", user_id=user_id)
        self._count("cache_lookups_total", result="hit")
        return user

    async def _load_from_store(self, user_id: str, deadline: Optional[float]) -> User:
        timeout = self._call_budget(deadline, "store lookup")
        try:
            user = await asyncio.wait_for(self.store.get_user(user_id), timeout)
        except NotFoundError:
            self._count("store_operations_total", operation="get", status="not_found")
            raise
        except Exception as e:
            self._count("store_operations_total", operation="get", status="error")
            self.logger.error("Store lookup failed", user_id=user_id, error=repr(e))
            internal = self._as_internal(e, "error retrieving user", user_id=user_id)
            if internal is e:
                raise
            raise internal from e

        self._count("store_operations_total", operation="get", status="ok")
        return user

    async def _insert_into_store(self, name: str, email: str, deadline: Optional[float]) -> User:
        timeout = self._call_budget(deadline, "store insert")
        try:
            user = await asyncio.wait_for(self.store.create_user(name, email), timeout)
        except Exception as e:
            self._count("store_operations_total", operation="create", status="error")
            self.logger.error("Store insert failed", error=repr(e))
            internal = self._as_internal(e, "error creating user")
            if internal is e:
                raise
            raise internal from e

        self._count("store_operations_total", operation="create", status="ok")
        self.logger.info("User created", user_id=user.user_id)
        return user

    async def _write_cache(self, user: User, deadline: Optional[float], operation: str, fatal: bool) -> None:
        try:
            timeout = self._call_budget(deadline, "cache write")
            await asyncio.wait_for(self.cache.set_user(user), timeout)
        except Exception as e:
            self._count("cache_writes_total", operation=operation, status="error")
            if fatal:
                self.logger.error("Cache write failed", user_id=user.user_id, operation=operation, error=repr(e))
                raise InternalError(
                    "error caching user",
                    {"user_id": user.user_id, "persisted": True, "error": repr(e)}
                ) from e
            self.logger.warning("Cache write failed, continuing", user_id=user.user_id, operation=operation,
                                error=repr(e))
            return

        self._count("cache_writes_total", operation=operation, status="ok")

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        if timeout is None:
            return None
        return asyncio.get_running_loop().time() + timeout

    def _call_budget(self, deadline: Optional[float], step: str) -> Optional[float]:
        """Time allowed for the next backend call; raises once the deadline has passed."""
        if deadline is None:
            return self.call_timeout

        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise InternalError(f"deadline exceeded before {step}", {"step": step}, code=DEADLINE_EXCEEDED)
        if self.call_timeout is not None:
            return min(remaining, self.call_timeout)
        return remaining

    def _as_internal(self, error: Exception, message: str, **details) -> InternalError:
        if isinstance(error, InternalError):
            return error
        if isinstance(error, asyncio.TimeoutError):
            return InternalError(f"{message}: backend timed out", details, code=DEADLINE_EXCEEDED)
        return InternalError(message, {**details, "error": repr(error)})

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
