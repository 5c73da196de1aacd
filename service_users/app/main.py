"""
Users service for the User Access Layer.
"""

import math
from typing import Optional

from fastapi import Header

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError

from .coordinator import UserAccessCoordinator
from .models import CreateUserRequest, UserResponse
from .ports import UserCache, UserStore
from .persistence.postgres import PostgreSQLUserStore
from .cache.redis_cache import RedisUserCache

SERVICE_NAME = "users"
SERVICE_PORT = 8020


class UsersService(BaseService):
    """Users service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        cache: Optional[UserCache] = None,
        store: Optional[UserStore] = None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        # Initialize components
        self.store = store or PostgreSQLUserStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout
        )
        self.cache = cache or RedisUserCache(
            self.config.redis_url,
            password=self.config.redis_password,
            db=self.config.redis_db,
            default_ttl=self.config.cache_ttl_seconds
        )
        self.coordinator = UserAccessCoordinator(
            self.cache,
            self.store,
            metrics=self.metrics,
            strict_cache_writes=self.config.strict_cache_writes,
            call_timeout=self.config.backend_timeout_seconds
        )

        self._setup_users_routes()

    def _setup_users_routes(self):
        """Set up users-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "User Access Layer - Users Service",
                "version": "1.0.0",
                "capabilities": ["read_through_cache", "persistence"]
            }

        @self.app.get("/users/{user_id}", response_model=UserResponse)
        async def get_user(user_id: str, x_request_timeout: Optional[str] = Header(None)):
            """GetUser: serve from cache, falling back to the store."""
            user = await self.coordinator.fetch(user_id, timeout=_parse_timeout(x_request_timeout))
            return UserResponse.from_user(user)

        @self.app.post("/users", response_model=UserResponse, status_code=201)
        async def create_user(request: CreateUserRequest, x_request_timeout: Optional[str] = Header(None)):
            """CreateUser: persist, then cache."""
            user = await self.coordinator.create(
                request.name,
                request.email,
                timeout=_parse_timeout(x_request_timeout)
            )
            return UserResponse.from_user(user)

    async def _check_dependencies(self):
        """Check users service dependencies."""
        dependencies = {}

        for name, component in (("redis", self.cache), ("postgres", self.store)):
            check = getattr(component, "health_check", None)
            if check is None:
                continue
            dependencies[name] = "ok" if await check() else "error"

        return dependencies

    async def start(self):
        """Start users service components."""
        started = []
        try:
            for component in (self.store, self.cache):
                start = getattr(component, "start", None)
                if start is not None:
                    await start()
                started.append(component)
        except Exception as e:
            self.logger.error("Users service failed to start", error=str(e))
            await self._stop_components(reversed(started))
            raise

        self.logger.info("Users service started")

    async def stop(self):
        """Stop users service components."""
        await self._stop_components((self.cache, self.store))
        self.logger.info("Users service stopped")

    async def _stop_components(self, components):
        for component in components:
            stop = getattr(component, "stop", None)
            if stop is not None:
                await stop()


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    """Read the caller's deadline (seconds) from the X-Request-Timeout header."""
    if raw is None:
        return None
    try:
        timeout = float(raw)
    except ValueError:
        raise ValidationError("X-Request-Timeout must be a number of seconds", {"value": raw})
    if not math.isfinite(timeout) or timeout <= 0:
        raise ValidationError("X-Request-Timeout must be a positive, finite number", {"value": raw})
    return timeout


def create_app(config: Optional[ServiceConfig] = None):
    """Create users service application."""
    service = UsersService(config)
    return service.app


if __name__ == "__main__":
    service = UsersService()
    service.run()
