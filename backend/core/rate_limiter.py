"""
Per-tenant rate limiting for chat questions.

Each tenant gets a fixed window whose quota depends on its plan tier.
The counter store performs check-and-increment as one indivisible step, so
two concurrent requests can never both take the last slot.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from core.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int        # seconds until the window resets


class RateLimitStore(Protocol):
    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision: ...


@dataclass
class _Window:
    started_at: float
    count: int = 0


class InMemoryRateLimitStore:
    """Process-local counters guarded by one lock per key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        with self._lock_for(key):
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now - window.started_at >= window_seconds:
                window = self._windows[key] = _Window(started_at=now)

            remaining = window_seconds - (now - window.started_at)
            retry_after = max(1, math.ceil(remaining))
            if window.count >= limit:
                return RateLimitDecision(False, window.count, limit, retry_after)
            window.count += 1
            return RateLimitDecision(True, window.count, limit, retry_after)


# KEYS[1] = counter key; ARGV[1] = limit; ARGV[2] = window seconds
_HIT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
  return {0, current, redis.call('TTL', KEYS[1])}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return {1, current, redis.call('TTL', KEYS[1])}
"""


class RedisRateLimitStore:
    """Shared counters in Redis; the compare-and-increment runs as one Lua script."""

    def __init__(self, client, prefix: str = "storelens:ratelimit:"):
        self.client = client
        self.prefix = prefix
        self._script = client.register_script(_HIT_SCRIPT)

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        allowed, count, ttl = self._script(keys=[f"{self.prefix}{key}"], args=[limit, window_seconds])
        ttl = int(ttl)
        retry_after = ttl if ttl > 0 else window_seconds
        return RateLimitDecision(bool(int(allowed)), int(count), limit, retry_after)


class RateLimiter:
    """Admits or rejects a tenant's question according to its plan tier."""

    def __init__(
        self,
        store: RateLimitStore,
        tiers: dict[str, int],
        window_seconds: int,
        default_plan: str = "free",
    ):
        if default_plan not in tiers:
            raise ValueError(f"Default plan '{default_plan}' has no quota configured")
        self.store = store
        self.tiers = tiers
        self.window_seconds = window_seconds
        self.default_plan = default_plan

    def quota_for(self, plan: Optional[str]) -> int:
        return self.tiers.get((plan or "").lower(), self.tiers[self.default_plan])

    def check(self, store_id: str, plan: Optional[str] = None) -> RateLimitDecision:
        """Raise PipelineError(RateLimitExceeded) when the tenant's window is used up."""
        limit = self.quota_for(plan)
        try:
            decision = self.store.hit(f"{store_id}:chat", limit, self.window_seconds)
        except Exception as e:
            # store unreachable: fail open
            logger.error("Rate limit store error for store %s, allowing request: %s", store_id, e)
            return RateLimitDecision(True, 0, limit, self.window_seconds)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for store %s (%d/%d, retry after %ds)",
                store_id, decision.count, decision.limit, decision.retry_after,
            )
            raise PipelineError(
                ErrorKind.RATE_LIMIT_EXCEEDED,
                detail=f"{decision.count}/{decision.limit} in window",
                retry_after=decision.retry_after,
            )
        return decision


def create_rate_limit_store(redis_url: str) -> RateLimitStore:
    if not redis_url:
        return InMemoryRateLimitStore()
    import redis

    client = redis.Redis.from_url(
        redis_url,
        socket_connect_timeout=2,
        socket_timeout=2,
        decode_responses=True,
    )
    logger.info("Using Redis rate limit store at %s", redis_url.split("@")[-1])
    return RedisRateLimitStore(client)
