"""Summary: Tests for the TTL cache and sliding-window rate limiter.

Importance: Brief caching and endpoint throttling depend on exact expiry behavior.
Alternatives: Test caching only through the API.
"""

from __future__ import annotations

from workintel.cache import TtlCache, brief_key, team_github_key, tool_status_key
from workintel.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_cache_entries_expire() -> None:
    """Summary: Verify entries disappear after their TTL.

    Importance: Stale briefs must not be served past the cache window.
    Alternatives: Expire entries on a background timer.
    """

    clock = FakeClock()
    cache = TtlCache(clock)
    cache.set("key", {"value": 1}, ttl_seconds=60)
    assert cache.get("key") == {"value": 1}
    clock.now += 61
    assert cache.get("key") is None
    assert not cache.has("key")


def test_cache_invalidate_pattern() -> None:
    cache = TtlCache()
    cache.set(brief_key(1, "2026-01-15"), "a")
    cache.set(brief_key(1, "2026-01-16"), "b")
    cache.set(brief_key(2, "2026-01-15"), "c")
    cache.set(tool_status_key(1), "d")
    assert cache.invalidate_pattern(r"^brief:1:") == 2
    assert cache.get(brief_key(2, "2026-01-15")) == "c"
    assert cache.get(tool_status_key(1)) == "d"
    assert team_github_key(5) == "team-github:5"


def test_rate_limiter_blocks_after_limit() -> None:
    """Summary: Verify the limiter rejects requests past the limit and reports retry time.

    Importance: Login and brief endpoints rely on this for burst protection.
    Alternatives: Use fixed windows.
    """

    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock)
    results = [limiter.hit("login:1.2.3.4", 3, 60) for _ in range(3)]
    assert [result.remaining for result in results] == [2, 1, 0]
    clock.now += 10
    blocked = limiter.hit("login:1.2.3.4", 3, 60)
    assert not blocked.success
    assert blocked.retry_after_seconds == 50
    assert limiter.hit("login:5.6.7.8", 3, 60).success


def test_rate_limiter_window_slides() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock)
    limiter.hit("brief:1", 1, 60)
    clock.now += 30
    assert not limiter.hit("brief:1", 1, 60).success
    clock.now += 31
    assert limiter.hit("brief:1", 1, 60).success


def test_rate_limiter_reset() -> None:
    limiter = SlidingWindowRateLimiter()
    limiter.hit("invite:1", 1, 3600)
    limiter.reset()
    assert limiter.hit("invite:1", 1, 3600).success


def test_rate_limiter_cleanup_keeps_longer_windows() -> None:
    """Summary: Verify periodic cleanup prunes each key with its own window.

    Importance: A short login window must not erase the hourly invite history.
    Alternatives: Run one limiter instance per endpoint.
    """

    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock)
    for _ in range(20):
        assert limiter.hit("invite:1", 20, 3600).success
    assert not limiter.hit("invite:1", 20, 3600).success

    limiter.hit("login:127.0.0.1", 10, 60)
    clock.now += 400
    assert limiter.hit("login:127.0.0.1", 10, 60).remaining == 9

    blocked = limiter.hit("invite:1", 20, 3600)
    assert not blocked.success
    assert blocked.retry_after_seconds == 3200
