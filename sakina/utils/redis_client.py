import redis
import logging
import time
from typing import Optional
from sakina.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None
_retry_after: float = 0.0

# Seconds to wait before trying to reconnect after a failure
RECONNECT_DELAY = 30


def get_redis() -> Optional[redis.Redis]:
    """
    Shared sync Redis client for services (cache, token blacklist).

    Returns None when Redis is disabled or unreachable; callers treat that as a
    cache miss and carry on.
    """
    global _client, _retry_after

    if not settings.REDIS_ENABLED:
        return None

    if _client is not None:
        return _client

    if time.monotonic() < _retry_after:
        return None

    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client.ping()
        _client = client
        logger.info("✅ Connected to Redis")
        return _client
    except redis.RedisError as e:
        logger.warning(f"⚠️ Redis unavailable: {e}")
        _retry_after = time.monotonic() + RECONNECT_DELAY
        return None


def reset_redis():
    """Drop the cached client so the next call reconnects"""
    global _client, _retry_after
    _client = None
    _retry_after = 0.0
