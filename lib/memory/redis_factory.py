"""Redis connection for the optional local artifact mirror.

The mirror only adds a fallback search and a list of what was written,
so an unreachable Redis degrades to running against the external store
alone instead of failing the session.
"""

import random
import time
from typing import Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from .security import get_logger, sanitize

logger = get_logger(__name__)


class RedisStartupError(Exception):
    """Failed to connect to Redis after all retries."""
    pass


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + delay * 0.25 * (2 * random.random() - 1)


def create_redis_client(
    redis_url: str,
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    socket_timeout: float = 5.0
) -> redis.Redis:
    """Connect and ping, retrying with jittered exponential backoff.

    Raises:
        RedisStartupError: If connection fails after all retries
    """
    last_error = None

    for attempt in range(max_retries):
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout
            )
            client.ping()
            return client
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            last_error = e
            logger.warning(
                "Mirror connection failed (attempt %d/%d): %s", attempt + 1, max_retries, str(e)
            )
            if attempt < max_retries - 1:
                time.sleep(_backoff(attempt, base_delay, max_delay))

    raise RedisStartupError(
        f"Failed to connect to Redis at {sanitize(redis_url)} after {max_retries} attempts: {last_error}"
    )


def connect_mirror(redis_url: Optional[str], **kwargs) -> Optional[redis.Redis]:
    """Mirror client for redis_url, or None when unset or unreachable."""
    if not redis_url:
        return None
    try:
        return create_redis_client(redis_url, **kwargs)
    except RedisStartupError as e:
        logger.warning("Continuing without artifact mirror: %s", str(e))
        return None
