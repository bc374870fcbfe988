"""Role-aware rate limiting.

Requests are throttled per (subject, route class) before the handler runs,
so a throttled request never reaches the authorization engine or the
database:

    AUTH     /api/auth/*                    per IP
    PUBLIC   any other unauthenticated call per IP
    API      every authenticated call       per IP
    CREATE   authenticated POST             per user
    USER     other authenticated calls      per user

Administrator-tier principals bypass both the per-IP and per-user quotas.
The role is read from the token claims; the token is only decoded here,
the principal is resolved properly by the route dependencies.

Counters live in Redis sorted sets (sliding window). The limiter is
injected, so tests and alternative stores can replace it; if Redis is
unreachable the request is allowed and the failure is logged.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.auth.jwt import decode_token
from app.config import settings
from app.middleware.exceptions import RateLimitExceeded, create_error_response
from app.models.user import Role
from app.utils.redis import get_redis

logger = logging.getLogger(__name__)


class RouteClass(str, enum.Enum):
    AUTH = "auth"
    PUBLIC = "public"
    API = "api"
    CREATE = "create"
    USER = "user"


@dataclass(frozen=True)
class Quota:
    route_class: RouteClass
    key: str
    limit: int
    window: int


def _default_limits() -> dict[RouteClass, tuple[int, int]]:
    return {
        RouteClass.AUTH: tuple(settings.rate_limit_auth),
        RouteClass.PUBLIC: tuple(settings.rate_limit_public),
        RouteClass.API: tuple(settings.rate_limit_api),
        RouteClass.CREATE: tuple(settings.rate_limit_create),
        RouteClass.USER: tuple(settings.rate_limit_user),
    }


@dataclass
class RateLimitPolicy:
    """Decides which quotas a request is charged against."""

    limits: dict[RouteClass, tuple[int, int]] = field(default_factory=_default_limits)
    exempt_paths: list[str] = field(
        default_factory=lambda: ["/health", "/docs", "/openapi.json"]
    )
    auth_prefix: str = "/api/auth"

    def quotas_for(
        self,
        path: str,
        method: str,
        ip: str,
        user_id: str | None = None,
        role: Role | None = None,
    ) -> list[Quota]:
        if any(path.startswith(p) for p in self.exempt_paths):
            return []

        if path.startswith(self.auth_prefix):
            return [self._quota(RouteClass.AUTH, f"ip:{ip}")]

        if user_id is None:
            return [self._quota(RouteClass.PUBLIC, f"ip:{ip}")]

        if role is not None and role.is_administrator:
            return []

        per_user = RouteClass.CREATE if method.upper() == "POST" else RouteClass.USER
        return [
            self._quota(RouteClass.API, f"ip:{ip}"),
            self._quota(per_user, f"user:{user_id}"),
        ]

    def _quota(self, route_class: RouteClass, subject: str) -> Quota:
        limit, window = self.limits[route_class]
        return Quota(
            route_class=route_class,
            key=f"{route_class.value}:{subject}",
            limit=limit,
            window=window,
        )


class SlidingWindowLimiter:
    """Sliding-window counter over Redis sorted sets."""

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
        prefix: str = "ratelimit",
    ):
        self._redis_factory = redis_factory
        self.prefix = prefix

    async def hit(self, key: str, limit: int, window: int) -> tuple[bool, int, float]:
        """Record one request against `key`.

        Returns:
            (allowed, remaining, reset_time)
        """
        current_time = time.time()
        window_start = current_time - window
        redis_key = f"{self.prefix}:{key}"

        try:
            redis_client = await self._redis_factory()

            # Remove old entries outside the window
            await redis_client.zremrangebyscore(redis_key, 0, window_start)
            count = await redis_client.zcard(redis_key)

            if count >= limit:
                oldest = await redis_client.zrange(redis_key, 0, 0, withscores=True)
                if oldest:
                    reset_time = oldest[0][1] + window
                else:
                    reset_time = current_time + window
                return False, 0, reset_time

            await redis_client.zadd(redis_key, {str(current_time): current_time})
            await redis_client.expire(redis_key, window)

            return True, limit - count - 1, current_time + window

        except redis.RedisError as e:
            # Fail open
            logger.error(f"Rate limit check failed: {e}", extra={"key": redis_key})
            return True, limit, current_time + window


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        limiter: Optional[SlidingWindowLimiter] = None,
        policy: Optional[RateLimitPolicy] = None,
        enabled: bool = True,
    ):
        super().__init__(app)
        self.limiter = limiter or SlidingWindowLimiter()
        self.policy = policy or RateLimitPolicy()
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check every applicable quota before processing the request."""
        if not self.enabled:
            return await call_next(request)

        user_id, role = self._token_subject(request)
        quotas = self.policy.quotas_for(
            request.url.path,
            request.method,
            self._client_ip(request),
            user_id=user_id,
            role=role,
        )

        tightest: tuple[Quota, int, float] | None = None
        for quota in quotas:
            allowed, remaining, reset_time = await self.limiter.hit(
                quota.key, quota.limit, quota.window
            )
            if not allowed:
                retry_after = max(int(reset_time - time.time()), 1)
                logger.warning(
                    f"Rate limit exceeded for {quota.route_class.value}",
                    extra={
                        "key": quota.key,
                        "path": request.url.path,
                        "method": request.method,
                    },
                )
                exc = RateLimitExceeded(
                    f"Rate limit exceeded. Try again in {retry_after} seconds.",
                    retry_after=retry_after,
                )
                # Raised exceptions don't reach the app's handlers from here.
                return create_error_response(
                    status_code=exc.status_code,
                    message=exc.message,
                    error_code=exc.error_code,
                    headers={
                        "X-RateLimit-Limit": str(quota.limit),
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": str(int(reset_time)),
                        "Retry-After": str(exc.retry_after),
                    },
                )
            if tightest is None or remaining < tightest[1]:
                tightest = (quota, remaining, reset_time)

        response = await call_next(request)

        if tightest is not None:
            quota, remaining, reset_time = tightest
            response.headers["X-RateLimit-Limit"] = str(quota.limit)
            response.headers["X-RateLimit-Remaining"] = str(remaining)
            response.headers["X-RateLimit-Reset"] = str(int(reset_time))

        return response

    @staticmethod
    def _token_subject(request: Request) -> tuple[str | None, Role | None]:
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return None, None
        payload = decode_token(auth_header[7:])
        user_id = payload.get("sub")
        if not user_id or payload.get("type") != "access":
            return None, None
        try:
            role = Role(payload.get("role"))
        except ValueError:
            role = None
        return user_id, role

    @staticmethod
    def _client_ip(request: Request) -> str:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"
