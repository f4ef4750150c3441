"""Redis client configuration and utilities."""

from typing import cast

import redis
from structlog import get_logger

from firesession.config import Settings

logger = get_logger(__name__)


def create_redis_client(settings: Settings) -> redis.Redis:
    """
    Create a Redis client from settings.

    Built once at application startup and shared through the service
    container.
    """
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username,
        password=settings.redis_password,
        decode_responses=settings.redis_decode_responses,
        socket_connect_timeout=5,
        socket_timeout=5,
        socket_keepalive=True,
        health_check_interval=30,
    )


def check_redis_connection(client: redis.Redis) -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client.ping()
        return True
    except Exception:
        return False


class RateLimiter:
    """Redis-based fixed window rate limiter."""

    def __init__(self, redis_client: redis.Redis):
        """Initialize rate limiter with Redis client."""
        self.redis = redis_client

    def check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int = 60,
    ) -> bool:
        """
        Check if rate limit is exceeded.

        Args:
            key: Rate limit key (e.g., email or IP)
            limit: Maximum number of requests
            window: Time window in seconds

        Returns:
            True if within limit, False if exceeded
        """
        try:
            current = cast(str | None, self.redis.get(key))

            if current is None:
                self.redis.setex(key, window, 1)
                return True

            if int(current) >= limit:
                return False

            self.redis.incr(key)
            return True
        except redis.RedisError as e:
            # Fail open: an unreachable limiter must not block password resets
            logger.warning("rate_limiter_unavailable", key=key, error=str(e))
            return True


class CacheManager:
    """Redis-based key/value helper."""

    def __init__(self, redis_client: redis.Redis):
        """Initialize cache manager with Redis client."""
        self.redis = redis_client

    def get(self, key: str) -> str | None:
        """Get value from cache."""
        try:
            return cast(str | None, self.redis.get(key))
        except redis.RedisError as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

    def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            if ttl:
                self.redis.setex(key, ttl, value)
            else:
                self.redis.set(key, value)
            return True
        except redis.RedisError as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        """Delete key from cache."""
        try:
            self.redis.delete(key)
            return True
        except redis.RedisError as e:
            logger.warning("cache_delete_failed", key=key, error=str(e))
            return False

    def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        try:
            return bool(self.redis.exists(key))
        except redis.RedisError as e:
            logger.warning("cache_exists_failed", key=key, error=str(e))
            return False
