"""Tests for the Redis helpers behind rate limits and used reset tokens."""

from unittest.mock import MagicMock, patch

import redis

from firesession.config import settings
from firesession.core.redis_client import (
    CacheManager,
    RateLimiter,
    check_redis_connection,
    create_redis_client,
)


def test_create_redis_client():
    with patch("firesession.core.redis_client.redis.Redis") as mock_redis:
        create_redis_client(settings)

    kwargs = mock_redis.call_args.kwargs
    assert kwargs["host"] == settings.redis_host
    assert kwargs["port"] == settings.redis_port
    assert kwargs["decode_responses"] == settings.redis_decode_responses


def test_check_redis_connection():
    healthy = MagicMock()
    broken = MagicMock()
    broken.ping.side_effect = redis.ConnectionError("down")

    assert check_redis_connection(healthy) is True
    assert check_redis_connection(broken) is False


def test_cache_manager_get():
    """Test CacheManager get method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    assert cache_manager.get("reset:used:abc") is None
    mock_redis.get.assert_called_once_with("reset:used:abc")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = "1"
    assert cache_manager.get("reset:used:abc") == "1"


def test_cache_manager_set():
    """Test CacheManager set method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test without TTL
    assert cache_manager.set("reset:used:abc", "1") is True
    mock_redis.set.assert_called_once_with("reset:used:abc", "1")

    # Test with TTL
    mock_redis.reset_mock()
    assert cache_manager.set("reset:used:abc", "1", ttl=300) is True
    mock_redis.setex.assert_called_once_with("reset:used:abc", 300, "1")


def test_cache_manager_delete_and_exists():
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.delete("reset:used:abc") is True
    mock_redis.delete.assert_called_once_with("reset:used:abc")

    mock_redis.exists.return_value = 0
    assert cache_manager.exists("reset:used:abc") is False
    mock_redis.exists.return_value = 1
    assert cache_manager.exists("reset:used:abc") is True


def test_cache_manager_swallows_redis_errors():
    mock_redis = MagicMock()
    for command in (mock_redis.get, mock_redis.set, mock_redis.setex, mock_redis.delete, mock_redis.exists):
        command.side_effect = redis.ConnectionError("down")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.get("key") is None
    assert cache_manager.set("key", "1") is False
    assert cache_manager.set("key", "1", ttl=60) is False
    assert cache_manager.delete("key") is False
    assert cache_manager.exists("key") is False


def test_rate_limiter_window(fake_redis):
    limiter = RateLimiter(fake_redis)

    assert [limiter.check_rate_limit("rate:reset:a@x.com", 2, window=3600) for _ in range(3)] == [
        True,
        True,
        False,
    ]
    assert fake_redis.ttls["rate:reset:a@x.com"] == 3600
    # Other keys have their own budget
    assert limiter.check_rate_limit("rate:reset:b@x.com", 2, window=3600) is True


def test_rate_limiter_fails_open():
    mock_redis = MagicMock()
    mock_redis.get.side_effect = redis.ConnectionError("down")

    assert RateLimiter(mock_redis).check_rate_limit("rate:reset:a@x.com", 1) is True
