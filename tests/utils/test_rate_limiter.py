"""Tests for the Redis rate limiter."""

from unittest.mock import MagicMock, patch

import pytest
import redis

from src.utils.errors import RateLimitError
from src.utils.rate_limiter import RateLimiter, create_redis_client


@pytest.fixture
def redis_client():
    client = MagicMock()
    pipe = MagicMock()
    client.pipeline.return_value = pipe
    return client, pipe


def test_allows_under_limit(redis_client):
    client, pipe = redis_client
    pipe.execute.return_value = [1, True, 60]
    limiter = RateLimiter(client, {"like": (2, 60)})

    assert limiter.check("alice", "like") == (True, None)
    pipe.incr.assert_called_once_with("rate_limit:alice:like")
    pipe.expire.assert_called_once_with("rate_limit:alice:like", 60, nx=True)


def test_rejects_over_limit(redis_client):
    client, pipe = redis_client
    pipe.execute.return_value = [3, False, 42]
    limiter = RateLimiter(client, {"like": (2, 60)})

    assert limiter.check("alice", "like") == (False, 42)

    with pytest.raises(RateLimitError) as exc_info:
        limiter.enforce("alice", "like")
    assert exc_info.value.details == {"action": "like", "retry_after": 42}


def test_fails_open_on_redis_error(redis_client):
    client, pipe = redis_client
    pipe.execute.side_effect = redis.ConnectionError("down")
    limiter = RateLimiter(client)

    assert limiter.check("alice", "message") == (True, None)


def test_no_client_or_unknown_action_is_allowed(redis_client):
    client, _ = redis_client
    assert RateLimiter(None).check("alice", "like") == (True, None)
    assert RateLimiter(client).check("alice", "unknown") == (True, None)
    client.pipeline.assert_not_called()


def test_create_redis_client_without_url():
    assert create_redis_client(None) is None


@patch("src.utils.rate_limiter.redis.Redis")
@patch("src.utils.rate_limiter.redis.ConnectionPool.from_url")
def test_create_redis_client(mock_from_url, mock_redis):
    client = create_redis_client("redis://localhost:6379/0")

    mock_from_url.assert_called_once_with("redis://localhost:6379/0", max_connections=10, decode_responses=True)
    mock_redis.assert_called_once_with(connection_pool=mock_from_url.return_value)
    assert client is mock_redis.return_value
