"""Per-identity quota enforcement for expensive operations.

Every check is a single increment-and-compare at the storage layer, so two
concurrent requests can never both take the last slot of a window.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping

import redis
from pydantic import BaseModel, Field

from shared.config import config

logger = logging.getLogger(__name__)


class RateLimitConfig(BaseModel):
    max: int = Field(..., ge=1, description="Requests allowed per window")
    window_seconds: int = Field(..., ge=1)
    key_prefix: str = Field(..., description="Namespace of the quota, e.g. 'ai'")

    @classmethod
    def from_pipeline(cls, name: str, default_max: int, default_window: int = 3600) -> "RateLimitConfig":
        return cls(
            max=config.get_pipeline_value(f"rate_limits.{name}.max", default_max),
            window_seconds=config.get_pipeline_value(f"rate_limits.{name}.window_seconds", default_window),
            key_prefix=name,
        )


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: float = Field(..., description="Epoch seconds when the window resets")
    limit: int

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets, never below one."""
        return max(1, math.ceil(self.reset_at - time.time()))


class RateLimitStore(ABC):
    """Storage backend performing the atomic increment."""

    @abstractmethod
    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Atomically bump ``key`` and return ``(count, seconds_until_reset)``."""


class InMemoryRateLimitStore(RateLimitStore):
    """Fixed-window counters guarded by a lock; for single-process deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (count, window reset deadline)
        self._windows: dict[str, tuple[int, float]] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            count, reset_at = self._windows.get(key, (0, now + window_seconds))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at - now

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self._sweep_interval

    def size(self) -> int:
        with self._lock:
            return len(self._windows)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


class RedisRateLimitStore(RateLimitStore):
    """INCR, EXPIRE NX and PTTL executed in one MULTI transaction."""

    def __init__(self, client: redis.Redis | None = None, url: str | None = None) -> None:
        self.redis = client or redis.Redis.from_url(  # type: ignore[misc]
            url or config.get("redis_url"), decode_responses=True
        )

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        pipe = self.redis.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        pipe.pttl(key)
        count, _, ttl_ms = pipe.execute()
        if ttl_ms is None or ttl_ms < 0:
            # Key lost its expiry (e.g. restored from a dump); start a fresh window
            self.redis.expire(key, window_seconds)
            ttl_ms = window_seconds * 1000
        return int(count), ttl_ms / 1000.0


class RateLimiter:
    def __init__(self, store: RateLimitStore) -> None:
        self.store = store

    def consume(self, identity: str, limit: RateLimitConfig) -> RateLimitResult:
        """Take one slot from ``identity``'s budget under ``limit``."""
        key = f"ratelimit:{limit.key_prefix}:{identity}"
        count, seconds_left = self.store.increment(key, limit.window_seconds)
        result = RateLimitResult(
            allowed=count <= limit.max,
            remaining=max(0, limit.max - count),
            reset_at=time.time() + max(0.0, seconds_left),
            limit=limit.max,
        )
        if not result.allowed:
            logger.info(f"Rate limit exceeded for {key} ({count}/{limit.max})")
        return result


def create_rate_limiter() -> RateLimiter:
    """Build a limiter on the backend selected by ``RATE_LIMIT_BACKEND``."""
    backend = config.get("rate_limit_backend", "memory")
    if backend == "redis":
        return RateLimiter(RedisRateLimitStore())
    return RateLimiter(InMemoryRateLimitStore())


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def client_identity(headers: Mapping[str, str], peer: str | None = None) -> str:
    """Resolve the caller's address, trusting proxy headers first."""
    connecting_ip = headers.get("cf-connecting-ip")
    if connecting_ip:
        return connecting_ip.strip()
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return peer or "unknown"
