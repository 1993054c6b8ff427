"""Custom middleware for the application."""

import logging
import time

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

import redis.asyncio as redis

from roombook.config import settings
from roombook.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


def _client_ip(request: Request) -> str:
    """Extract client IP from request."""
    # Behind proxy/load balancer
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Sliding-window request counter in Redis.

    Used directly as a FastAPI dependency (keyed by client IP) or through
    :meth:`hit` with an explicit key such as a user id. When Redis is
    unreachable every request is allowed.
    """

    def __init__(
        self,
        requests_per_minute: int = 10,
        key_prefix: str = "api",
    ):
        self.requests_per_minute = requests_per_minute
        self.key_prefix = key_prefix
        self._redis: redis.Redis | None = None

    async def get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def count(self, client_id: str) -> int | None:
        """Record one request and return how many preceded it in the window.

        Returns None when Redis is unavailable.
        """
        if not settings.rate_limit_enabled:
            return None
        try:
            redis_client = await self.get_redis()
            key = f"rate:{self.key_prefix}:{client_id}"
            now = time.time()

            async with redis_client.pipeline(transaction=True) as pipe:
                await pipe.zremrangebyscore(key, 0, now - WINDOW_SECONDS)
                await pipe.zcard(key)
                await pipe.zadd(key, {f"{now:.6f}": now})
                await pipe.expire(key, WINDOW_SECONDS)
                results = await pipe.execute()
            return results[1]
        except redis.RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return None

    async def hit(self, client_id: str) -> None:
        """Raise RateLimitExceeded once ``client_id`` exhausts its window."""
        seen = await self.count(client_id)
        if seen is not None and seen >= self.requests_per_minute:
            logger.info(f"Rate limit exceeded: {self.key_prefix}:{client_id}")
            raise RateLimitExceeded()

    async def __call__(self, request: Request) -> None:
        await self.hit(_client_ip(request))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Global per-IP rate limit."""

    def __init__(self, app, requests_per_minute: int = 100):
        super().__init__(app)
        self.limiter = RateLimiter(requests_per_minute=requests_per_minute, key_prefix="global")

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path in ("/health", "/docs", "/redoc", "/openapi.json"):
            return await call_next(request)

        try:
            await self.limiter.hit(_client_ip(request))
        except RateLimitExceeded as e:
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={
                    "Retry-After": str(WINDOW_SECONDS),
                    "X-RateLimit-Limit": str(self.limiter.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                },
            )
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging requests and response times."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID") or str(time.time_ns())
        request.state.request_id = request_id

        response = await call_next(request)
        duration = time.perf_counter() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"

        if duration > 1.0:
            logger.warning(
                f"SLOW REQUEST: {request.method} {request.url.path} took {duration:.3f}s"
            )
        else:
            logger.debug(
                f"{request.method} {request.url.path} -> {response.status_code} ({duration:.3f}s)"
            )

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if not settings.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


booking_limiter = RateLimiter(
    requests_per_minute=settings.booking_rate_limit_per_minute, key_prefix="booking"
)
