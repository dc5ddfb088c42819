"""In-process read cache for hot A/B test lookups.

The store is the source of truth; everything here can be dropped at any time
(``NullCache``) without changing what callers observe. A reader takes the
current generation before loading, and ``set`` refuses the value if the key
was invalidated after that point:

    gen = await cache.generation(key)
    value = await load_from_db()
    await cache.set(key, value, generation=gen)   # dropped if a write happened

Only invalidated keys are tracked, at most ``max_tracked`` of them. When the
oldest are forgotten their sequence becomes a floor every untracked key is
checked against, so pruning can refuse a fresh value but never admit a stale
one.
"""

import asyncio
import time
from typing import Any, Callable, Optional

ACTIVE_TESTS_KEY = "active_tests"


def detail_key(test_id: str) -> str:
    return f"test:{test_id}"


class TTLCache:
    """Dict-backed cache whose entries expire ``ttl_seconds`` after being set."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        max_tracked: int = 10_000,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_tracked = max_tracked
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._sequence = 0
        # key -> sequence of its last invalidation, oldest first
        self._invalidated: dict[str, int] = {}
        self._floor = 0
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def generation(self, key: str) -> int:
        async with self._lock:
            return self._sequence

    async def set(self, key: str, value: Any, generation: Optional[int] = None) -> bool:
        """Store ``value``; refused when ``key`` was invalidated since ``generation``."""
        async with self._lock:
            if generation is not None and self._invalidated.get(key, self._floor) > generation:
                return False
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            return True

    async def invalidate(self, *keys: str) -> None:
        async with self._lock:
            self._sequence += 1
            for key in keys:
                self._entries.pop(key, None)
                self._invalidated.pop(key, None)
                self._invalidated[key] = self._sequence
            self._prune()

    async def clear(self) -> None:
        async with self._lock:
            self._sequence += 1
            self._floor = self._sequence
            self._invalidated.clear()
            self._entries.clear()

    def _prune(self) -> None:
        excess = len(self._invalidated) - self.max_tracked
        if excess <= 0:
            return
        for key in list(self._invalidated)[:excess]:
            self._floor = max(self._floor, self._invalidated.pop(key))

    @property
    def tracked_keys(self) -> int:
        return len(self._invalidated)

    def __len__(self) -> int:
        return len(self._entries)


class NullCache:
    """Same interface as ``TTLCache``; never holds anything."""

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def generation(self, key: str) -> int:
        return 0

    async def set(self, key: str, value: Any, generation: Optional[int] = None) -> bool:
        return False

    async def invalidate(self, *keys: str) -> None:
        return None

    async def clear(self) -> None:
        return None

    def __len__(self) -> int:
        return 0


def build_cache(settings):
    if not settings.cache_enabled:
        return NullCache()
    return TTLCache(ttl_seconds=settings.cache_ttl_seconds)
