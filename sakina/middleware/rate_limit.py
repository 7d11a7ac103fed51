from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sakina.config import settings
from sakina.utils.responses import error_response
import time
import logging

logger = logging.getLogger(__name__)

# Health checks, docs and the payment webhook are never rate limited
EXEMPT_PATHS = {"/health", "/", "/docs", "/redoc", "/openapi.json", f"{settings.API_PREFIX}/payments/webhook"}

# Seconds to wait before trying Redis again after a connection failure
RECONNECT_INTERVAL = 30


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window rate limiting per client IP, per minute and per hour.
    Fails open: when Redis is down requests go through.
    """

    def __init__(self, app):
        super().__init__(app)
        self.redis_client = None
        self._next_attempt = 0.0

    async def setup_redis(self):
        """Initialize Redis connection lazily"""
        if self.redis_client or time.monotonic() < self._next_attempt:
            return
        try:
            client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True
            )
            await client.ping()
            self.redis_client = client
            logger.info("✅ Rate limiter connected to Redis")
        except (RedisError, OSError) as e:
            logger.warning(f"⚠️ Redis unavailable for rate limiting: {e}")
            self.redis_client = None
            self._next_attempt = time.monotonic() + RECONNECT_INTERVAL

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED or not settings.REDIS_ENABLED or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        await self.setup_redis()
        if self.redis_client is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()

        try:
            is_limited, retry_after = await self._check_rate_limit(client_ip)
            if is_limited:
                logger.warning(f"🚫 Rate limit exceeded for IP: {client_ip}")
                response = error_response(
                    f"Too many requests. Try again in {retry_after} seconds.",
                    status.HTTP_429_TOO_MANY_REQUESTS,
                    extra={"retry_after": retry_after},
                )
                response.headers["Retry-After"] = str(retry_after)
                return response
        except RedisError as e:
            logger.error(f"Rate limit check failed: {e}")
            self.redis_client = None

        return await call_next(request)

    async def _check_rate_limit(self, client_ip: str) -> tuple[bool, int]:
        """
        Check if IP has exceeded rate limits
        Returns: (is_limited, retry_after_seconds)
        """
        current_time = int(time.time())

        minute_key = f"rate_limit:{client_ip}:minute:{current_time // 60}"
        minute_count = await self.redis_client.incr(minute_key)
        if minute_count == 1:
            await self.redis_client.expire(minute_key, 60)

        if minute_count > settings.RATE_LIMIT_PER_MINUTE:
            return True, 60 - (current_time % 60)

        hour_key = f"rate_limit:{client_ip}:hour:{current_time // 3600}"
        hour_count = await self.redis_client.incr(hour_key)
        if hour_count == 1:
            await self.redis_client.expire(hour_key, 3600)

        if hour_count > settings.RATE_LIMIT_PER_HOUR:
            return True, 3600 - (current_time % 3600)

        return False, 0


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Reject bodies larger than the biggest allowed upload"""

    async def dispatch(self, request: Request, call_next):
        max_size = settings.MAX_AUDIO_FILE_SIZE + 1024 * 1024
        content_length = request.headers.get("content-length")

        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                return error_response("Invalid Content-Length header", status.HTTP_400_BAD_REQUEST)

            if size > max_size:
                logger.warning(f"🚫 Request too large: {size} bytes")
                return error_response(
                    f"Request body exceeds maximum size of {max_size / (1024 * 1024):.0f}MB",
                    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                )

        return await call_next(request)
