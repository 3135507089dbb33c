from __future__ import annotations

import logging
import os
import threading
import time
from typing import Dict, Optional, Tuple

import redis

log = logging.getLogger(__name__)

WINDOW_SECONDS: int = int(os.getenv("RATE_WINDOW_SECONDS", "3600"))
MAX_REQUESTS: int = int(os.getenv("RATE_MAX_REQUESTS", "60"))


def _window(now: int, window_seconds: int) -> Tuple[int, int]:
    start = now - (now % window_seconds)
    return start, start + window_seconds


class MemoryRateLimiter:
    """Fixed-window counter per (bucket, key), local to this process."""

    def __init__(self, window_seconds: Optional[int] = None, max_requests: Optional[int] = None) -> None:
        self.window_seconds = int(window_seconds or WINDOW_SECONDS)
        self.max_requests = int(max_requests or MAX_REQUESTS)
        self._lock = threading.Lock()
        self._store: Dict[Tuple[str, str, int], int] = {}

    def check_and_increment(self, bucket: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        """Returns (allowed, remaining, reset_ts)."""
        current_ts = now or int(time.time())
        start, reset_ts = _window(current_ts, self.window_seconds)
        k = (bucket or "default", key or "anon", start)
        with self._lock:
            # Drop counters from finished windows
            for stale in [s for s in self._store if s[2] < start]:
                del self._store[stale]
            used = self._store.get(k, 0) + 1
            self._store[k] = used
        return used <= self.max_requests, max(0, self.max_requests - used), reset_ts

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


class RedisRateLimiter:
    """
    Same contract as MemoryRateLimiter, shared across worker processes via Redis.
    """

    def __init__(
        self,
        redis_url: str,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        client: Optional["redis.Redis"] = None,
    ) -> None:
        self.window_seconds = int(window_seconds or WINDOW_SECONDS)
        self.max_requests = int(max_requests or MAX_REQUESTS)
        # Connection is lazy; nothing hits the network until the first command.
        self._client = client or redis.from_url(redis_url, decode_responses=True)

    def check_and_increment(self, bucket: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        current_ts = now or int(time.time())
        start, reset_ts = _window(current_ts, self.window_seconds)
        redis_key = f"pc:rl:{bucket or 'default'}:{key or 'anon'}:{start}"
        pipe = self._client.pipeline()
        pipe.incr(redis_key, 1)
        pipe.expire(redis_key, self.window_seconds)
        count, _ = pipe.execute()
        used = int(count)
        return used <= self.max_requests, max(0, self.max_requests - used), reset_ts


class FailOpenLimiter:
    """Wraps a shared limiter; falls back to a local one when the backend errors."""

    def __init__(self, primary: RedisRateLimiter, fallback: MemoryRateLimiter) -> None:
        self.primary = primary
        self.fallback = fallback

    def check_and_increment(self, bucket: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        try:
            return self.primary.check_and_increment(bucket, key, now)
        except redis.RedisError as e:
            log.warning("rate limit backend unavailable, using in-process limiter: %s", e)
            return self.fallback.check_and_increment(bucket, key, now)


def build_limiter(redis_url: Optional[str] = None):
    url = (redis_url if redis_url is not None else os.getenv("REDIS_URL", "")).strip()
    memory = MemoryRateLimiter()
    if not url:
        return memory
    return FailOpenLimiter(RedisRateLimiter(url), memory)
