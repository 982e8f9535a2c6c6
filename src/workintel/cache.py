"""Summary: In-memory TTL cache shared by brief, tool status, and team data lookups.

Importance: Avoids repeated provider calls within short windows.
Alternatives: Use Redis or memcached for a cross-process cache.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Any, Callable


DEFAULT_TTL_SECONDS = 15 * 60


class TtlCache:
    """Summary: Dictionary cache whose entries expire after a per-entry TTL.

    Importance: Expired entries are dropped lazily on read.
    Alternatives: Use functools.lru_cache, which has no expiry.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def invalidate_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        with self._lock:
            doomed = [key for key in self._entries if regex.search(key)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)


def brief_key(user_id: int, brief_date: str) -> str:
    return f"brief:{user_id}:{brief_date}"


def tool_status_key(user_id: int) -> str:
    return f"toolStatus:{user_id}"


def team_github_key(team_id: int) -> str:
    return f"team-github:{team_id}"
