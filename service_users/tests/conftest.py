"""
Shared fixtures for Users service tests.
"""

import asyncio
import uuid
from typing import Dict, List, Optional, Tuple

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import NotFoundError, StoreError, TransientBackendError
from service_users.app.models import User


class FakeUserCache:
    """In-memory stand-in for the Redis cache that records every call."""

    def __init__(self):
        self.entries: Dict[str, User] = {}
        self.get_calls: List[str] = []
        self.set_calls: List[Tuple[User, Optional[int]]] = []
        self.unreachable = False
        self.fail_writes = False
        self.get_delay = 0.0
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def get_user(self, user_id: str) -> Optional[User]:
        self.get_calls.append(user_id)
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        if self.unreachable:
            raise TransientBackendError("redis", "connection refused")
        return self.entries.get(user_id)

    async def set_user(self, user: User, ttl_seconds: Optional[int] = None) -> None:
        self.set_calls.append((user, ttl_seconds))
        if self.unreachable or self.fail_writes:
            raise TransientBackendError("redis", "connection refused")
        self.entries[user.user_id] = user

    async def health_check(self) -> bool:
        return not self.unreachable


class FakeUserStore:
    """In-memory stand-in for PostgreSQL that records every call."""

    def __init__(self):
        self.rows: Dict[str, User] = {}
        self.get_calls: List[str] = []
        self.create_calls: List[Tuple[str, str]] = []
        self.unavailable = False
        self.get_delay = 0.0
        self.cancelled = False
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def get_user(self, user_id: str) -> User:
        self.get_calls.append(user_id)
        if self.get_delay:
            try:
                await asyncio.sleep(self.get_delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.unavailable:
            raise StoreError("error retrieving user", {"user_id": user_id})
        if user_id not in self.rows:
            raise NotFoundError("user", user_id)
        return self.rows[user_id]

    async def create_user(self, name: str, email: str) -> User:
        self.create_calls.append((name, email))
        if self.unavailable:
            raise StoreError("error creating user")
        user = User(user_id=str(uuid.uuid4()), name=name, email=email)
        self.rows[user.user_id] = user
        return user

    async def health_check(self) -> bool:
        return not self.unavailable


@pytest.fixture
def cache():
    """Empty fake cache."""
    return FakeUserCache()


@pytest.fixture
def store():
    """Empty fake store."""
    return FakeUserStore()


@pytest.fixture
def alice():
    """A stored user record."""
    return User(user_id="user-123", name="Alice", email="alice@example.com")
