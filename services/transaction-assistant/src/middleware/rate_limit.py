import asyncio
import os
import time
from collections import defaultdict, deque
from collections.abc import Callable

from shared.assistant_settings import AssistantSettingsError


class SimpleRateLimiter:
    """
    Sliding-window rate limiter keyed by caller (user id when known, else client IP).

    Timestamps live in per-key deques inside the process; the assistant keeps
    its sessions in memory too, so a single process owns both.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        burst: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limit = max(1, max_requests) + max(0, burst)
        self._window_seconds = max(1.0, window_seconds)
        self._clock = clock
        self._buckets: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    async def allow(self, key: str) -> tuple[bool, float]:
        """Returns (allowed, retry_after_seconds)."""

        now = self._clock()
        async with self._lock:
            bucket = self._buckets[key]
            threshold = now - self._window_seconds
            while bucket and bucket[0] <= threshold:
                bucket.popleft()

            if len(bucket) >= self._limit:
                return False, max(self._window_seconds - (now - bucket[0]), 0.0)

            bucket.append(now)
            return True, 0.0

    def remaining(self, key: str) -> int:
        return max(self._limit - len(self._buckets.get(key, ())), 0)


def build_default_rate_limiter() -> SimpleRateLimiter:
    per_minute = _read_int("GATEWAY_RATE_LIMIT_PER_MIN", 60)
    burst = _read_int("GATEWAY_RATE_LIMIT_BURST", 20)
    return SimpleRateLimiter(max_requests=per_minute, window_seconds=60, burst=burst)


def _read_int(env_key: str, default: int) -> int:
    raw_value = os.getenv(env_key)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise AssistantSettingsError(f"{env_key} must be an integer (received {raw_value!r}).") from exc
    if value < 0:
        raise AssistantSettingsError(f"{env_key} must not be negative.")
    return value
