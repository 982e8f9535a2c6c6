"""Summary: In-memory sliding-window rate limiter.

Importance: Gives best-effort burst protection for login, brief, and invite endpoints.
Alternatives: Use Redis sorted sets shared across processes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


CLEANUP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    retry_after_seconds: float


class SlidingWindowRateLimiter:
    """Summary: Tracks request timestamps per key within a rolling window.

    Importance: State is per process and resets on restart.
    Alternatives: Fixed-window counters, which allow bursts at window edges.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._windows: dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def hit(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        """Summary: Record a request for ``key`` unless it exceeds ``limit``.

        Importance: Rejected requests are not recorded, so retry_after reflects the oldest hit.
        Alternatives: Count rejected requests to punish retries.
        """

        now = self._clock()
        with self._lock:
            self._cleanup(now)
            self._windows[key] = window_seconds
            window_start = now - window_seconds
            timestamps = [stamp for stamp in self._hits.get(key, []) if stamp > window_start]
            if len(timestamps) >= limit:
                self._hits[key] = timestamps
                retry_after = window_seconds - (now - timestamps[0])
                return RateLimitResult(success=False, remaining=0, retry_after_seconds=retry_after)
            timestamps.append(now)
            self._hits[key] = timestamps
            return RateLimitResult(
                success=True, remaining=limit - len(timestamps), retry_after_seconds=0.0
            )

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._windows.clear()

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        for key in list(self._hits):
            # Each key keeps the window it was last hit with.
            window_start = now - self._windows[key]
            fresh = [stamp for stamp in self._hits[key] if stamp > window_start]
            if fresh:
                self._hits[key] = fresh
            else:
                del self._hits[key]
                del self._windows[key]
