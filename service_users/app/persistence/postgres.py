"""
PostgreSQL persistence layer for Users Service.
"""

import asyncio
from typing import Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import AccessLayerException, NotFoundError, StoreError
from ..models import User

# Errors that mean "the store could not answer", as opposed to "no such row"
STORE_FAILURES = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgreSQLUserStore:
    """PostgreSQL persistence layer for users."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30,
        pool: Optional[asyncpg.Pool] = None,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("users.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Start the persistence layer."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.command_timeout
                )

            # Create tables if they don't exist
            await self._create_tables()

        except STORE_FAILURES as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

        self.logger.info("PostgreSQL persistence started")

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
                    name TEXT NOT NULL CHECK (name <> ''),
                    email TEXT NOT NULL CHECK (email <> '')
                );
            """)

    async def get_user(self, user_id: str) -> User:
        """Load a user from the database."""
        pool = self._pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT id, name, email FROM users WHERE id = $1
                """, user_id)
        except STORE_FAILURES as e:
            self.logger.error("Error loading user", user_id=user_id, error=str(e))
            raise StoreError("error retrieving user", {"user_id": user_id, "error": str(e)}) from e

        if row is None:
            raise NotFoundError("user", user_id)

        return self._row_to_user(row)

    async def create_user(self, name: str, email: str) -> User:
        """Insert a user; the database assigns the ID."""
        pool = self._pool()
        try:
            async with pool.acquire() as conn:
                # Single statement: the ID is generated and returned with the insert
                user_id = await conn.fetchval("""
                    INSERT INTO users (name, email) VALUES ($1, $2) RETURNING id
                """, name, email)
        except STORE_FAILURES as e:
            self.logger.error("Error creating user", error=str(e))
            raise StoreError("error creating user", {"error": str(e)}) from e

        self.logger.info("User created", user_id=user_id)
        return User(user_id=str(user_id), name=name, email=email)

    def _row_to_user(self, row) -> User:
        """Convert database row to User object."""
        return User(
            user_id=str(row['id']),
            name=row['name'],
            email=row['email']
        )

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except STORE_FAILURES:
            return False

    def _pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreError("store not started")
        return self.pool
