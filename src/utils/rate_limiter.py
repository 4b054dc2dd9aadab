"""Redis backed rate limiting for interaction endpoints."""

from typing import Dict, Optional, Tuple

import redis
import sentry_sdk

from src.utils.errors import RateLimitError
from src.utils.logging import get_logger

logger = get_logger(__name__)

RATE_LIMIT_KEY_PREFIX = "rate_limit"

# action -> (max count, window seconds)
DEFAULT_LIMITS: Dict[str, Tuple[int, int]] = {
    "like": (15, 300),
    "pass": (3, 60),
    "message": (30, 60),
    "call": (10, 60),
    "block": (10, 60),
}


def create_redis_client(redis_url: Optional[str]) -> Optional[redis.Redis]:
    """
    Create a Redis client from a URL.

    Returns None when no URL is configured or the pool cannot be built;
    rate limiting is then disabled.
    """
    if not redis_url:
        logger.warning("No Redis configuration found, rate limiting will be disabled")
        return None
    try:
        pool = redis.ConnectionPool.from_url(redis_url, max_connections=10, decode_responses=True)
        client = redis.Redis(connection_pool=pool)
        logger.info("Redis client initialized")
        return client
    except Exception as e:
        logger.warning("Failed to initialize Redis client, rate limiting will be disabled", error=str(e))
        return None


class RateLimiter:
    """
    Fixed window limiter keyed by profile and action.

    Fails open: when Redis is missing or errors, the action is allowed.
    """

    def __init__(self, client: Optional[redis.Redis], limits: Optional[Dict[str, Tuple[int, int]]] = None) -> None:
        self.client = client
        self.limits = dict(limits or DEFAULT_LIMITS)

    def check(self, profile_id: str, action: str) -> Tuple[bool, Optional[int]]:
        """
        Count one action and report whether it is within the limit.

        Returns:
            Tuple[bool, Optional[int]]: (is_allowed, seconds_until_reset)
        """
        if self.client is None or action not in self.limits:
            return True, None

        limit_count, window_seconds = self.limits[action]
        key = f"{RATE_LIMIT_KEY_PREFIX}:{profile_id}:{action}"

        with sentry_sdk.start_span(op="ratelimit.check", name=action) as span:
            try:
                pipe = self.client.pipeline()
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                pipe.ttl(key)
                count, _, ttl = pipe.execute()
            except Exception as e:
                logger.warning("Rate limit check failed, allowing action", key=key, error=str(e))
                span.set_status("internal_error")
                return True, None

            span.set_data("count", count)
            if int(count) > limit_count:
                seconds_left = max(0, int(ttl)) if ttl is not None else window_seconds
                logger.info("Rate limit exceeded", profile_id=profile_id, action=action, reset_in=seconds_left)
                return False, seconds_left

        return True, None

    def enforce(self, profile_id: str, action: str) -> None:
        """
        Raise when the action is over its limit.

        Raises:
            RateLimitError: With ``retry_after`` seconds in the details.
        """
        allowed, retry_after = self.check(profile_id, action)
        if not allowed:
            raise RateLimitError(
                f"Too many {action} requests, please slow down",
                details={"action": action, "retry_after": retry_after},
            )
