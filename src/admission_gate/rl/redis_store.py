"""
Redis-backed window store.

Shares rate limit counters between gateway instances. Each key is a Redis
hash holding the window count and start time; a Lua script performs the
read-check-increment sequence atomically on the server, and a key TTL equal
to the window length lets Redis expire idle windows.
"""

import logging
import math
from typing import Any, Tuple, Union

import redis

from .exceptions import StoreUnavailableError
from .store import WindowStore

logger = logging.getLogger(__name__)


# KEYS[1] = window hash key
# ARGV[1] = now (epoch seconds, as a string to keep sub-second precision)
# ARGV[2] = window length in seconds
# ARGV[3] = TTL in milliseconds
# Returns {count, window_start}
INCREMENT_SCRIPT = """
local entry = redis.call('HMGET', KEYS[1], 'count', 'start')
local count = tonumber(entry[1])
local start = entry[2]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])

if (not count) or (not start) or (now - tonumber(start) >= window) then
    redis.call('HSET', KEYS[1], 'count', 1, 'start', ARGV[1])
    redis.call('PEXPIRE', KEYS[1], ARGV[3])
    return {1, ARGV[1]}
end

count = redis.call('HINCRBY', KEYS[1], 'count', 1)
return {count, start}
"""


def _as_str(value: Union[bytes, str]) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisWindowStore(WindowStore):
    """
    Window store backed by a Redis server.

    Uses a synchronous redis-py client because limiter checks are synchronous
    and bounded. Every Redis failure surfaces as `StoreUnavailableError`; the
    limiter decides whether that fails open or closed.
    """

    def __init__(self, client: "redis.Redis", prefix: str = "rl:"):
        self._client = client
        self._prefix = prefix
        self._increment_script = client.register_script(INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, prefix: str = "rl:", **kwargs: Any) -> "RedisWindowStore":
        """Create a store from a Redis connection URL."""
        return cls(redis.Redis.from_url(url, **kwargs), prefix=prefix)

    def _redis_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def increment(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """Atomically count one event for `key` on the Redis server."""
        ttl_ms = max(1, int(math.ceil(window_seconds * 1000)))
        try:
            count, window_start = self._increment_script(
                keys=[self._redis_key(key)],
                args=[repr(float(now)), window_seconds, ttl_ms]
            )
        except redis.RedisError as e:
            logger.error(
                "Redis window store error during increment",
                extra={"window_seconds": window_seconds, "error": str(e)}
            )
            raise StoreUnavailableError(f"Redis window store failed: {str(e)}", str(e)) from e

        return int(count), float(_as_str(window_start))

    def peek(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """Read (count, window_start) for `key` without mutating it."""
        try:
            count, window_start = self._client.hmget(self._redis_key(key), ["count", "start"])
        except redis.RedisError as e:
            logger.error(
                "Redis window store error during peek",
                extra={"window_seconds": window_seconds, "error": str(e)}
            )
            raise StoreUnavailableError(f"Redis window store failed: {str(e)}", str(e)) from e

        if count is None or window_start is None:
            return 0, now

        start = float(_as_str(window_start))
        if now - start >= window_seconds:
            return 0, now
        return int(_as_str(count)), start

    def reset(self, key: str) -> None:
        """Delete the window hash for `key`."""
        try:
            self._client.delete(self._redis_key(key))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis window store failed: {str(e)}", str(e)) from e
