import logging
import math
import secrets
import threading
import time
from dataclasses import dataclass

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    exceeded: bool
    retry_after: int = 0


class RateLimiter:
    """Sliding-window limiter keyed by caller.

    Uses a Redis sorted set per key when ``redis_url`` is reachable, so that
    several API workers share one window. Without Redis each process keeps
    its own window in memory.
    """

    _REDIS_WINDOW_SCRIPT = """
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]
local ttl = tonumber(ARGV[5])
local cutoff = now_ms - window_ms

redis.call("ZREMRANGEBYSCORE", key, 0, cutoff)
local count = redis.call("ZCARD", key)
if count >= limit then
  local oldest = redis.call("ZRANGE", key, 0, 0, "WITHSCORES")
  redis.call("EXPIRE", key, ttl)
  if oldest[2] then
    return tonumber(oldest[2]) + window_ms - now_ms
  end
  return window_ms
end

redis.call("ZADD", key, now_ms, member)
redis.call("EXPIRE", key, ttl)
return 0
"""

    def __init__(self, redis_url: str | None = None, key_prefix: str = "smartbudget") -> None:
        self._events: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._key_prefix = key_prefix
        self._redis: Redis | None = None
        if redis_url:
            try:
                client = Redis.from_url(redis_url, decode_responses=False)
                client.ping()
                self._redis = client
            except RedisError as exc:
                logger.warning("redis unavailable for rate limiting, using local windows: %s", exc)
                self._redis = None

    @property
    def shared(self) -> bool:
        return self._redis is not None

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:ratelimit:{key}"

    def _hit_redis(self, key: str, limit: int, window_seconds: int) -> RateDecision | None:
        if self._redis is None:
            return None
        now_ms = int(time.time() * 1000)
        member = f"{now_ms}-{secrets.token_hex(6)}"
        window_ms = window_seconds * 1000
        try:
            wait_ms = self._redis.eval(
                self._REDIS_WINDOW_SCRIPT,
                1,
                self._redis_key(key),
                now_ms,
                window_ms,
                limit,
                member,
                window_seconds + 1,
            )
        except RedisError as exc:
            logger.warning("rate limit redis call failed for %s: %s", key, exc)
            return None
        wait_ms = int(wait_ms or 0)
        if wait_ms <= 0:
            return RateDecision(exceeded=False)
        return RateDecision(exceeded=True, retry_after=max(1, math.ceil(wait_ms / 1000)))

    def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        limit = max(1, int(limit))
        window_seconds = max(1, int(window_seconds))

        redis_result = self._hit_redis(key, limit, window_seconds)
        if redis_result is not None:
            return redis_result

        now = time.time()
        cutoff = now - window_seconds
        with self._lock:
            events = [ts for ts in self._events.get(key, []) if ts >= cutoff]
            if len(events) >= limit:
                self._events[key] = events
                retry_after = max(1, math.ceil(events[0] + window_seconds - now))
                return RateDecision(exceeded=True, retry_after=retry_after)
            events.append(now)
            self._events[key] = events
            return RateDecision(exceeded=False)

    def exceeded(self, key: str, limit: int, window_seconds: int) -> bool:
        return self.hit(key, limit, window_seconds).exceeded
