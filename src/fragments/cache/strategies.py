"""In-memory cache strategies.

Used by the command pack loader (parsed manifests) and the ``ai.generate``
step (provider responses).
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any

#: Hard ceiling on entries for any TTL cache.
MAX_CACHE_ENTRIES = 10_000


class CacheStrategy(ABC):
    """Abstract base for cache strategies."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the cached value for ``key`` or None."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def clear(self) -> None:
        """Evict every entry."""

    def has(self, key: str) -> bool:
        """Return True when ``key`` holds a live entry."""
        return self.get(key) is not None


class TTLCacheStrategy(CacheStrategy):
    """Time-to-live cache with FIFO eviction at capacity.

    Args:
        ttl: Default lifetime of an entry in seconds.
        max_entries: Maximum number of live entries.
        cleanup_interval: Seconds between sweeps of expired entries.

    Examples:
        >>> cache = TTLCacheStrategy(ttl=60)
        >>> cache.set("answer", 42)
        >>> cache.get("answer")
        42
        >>> cache.get("missing") is None
        True
    """

    def __init__(
        self,
        ttl: float = 300,
        max_entries: int = 1000,
        cleanup_interval: float = 60,
    ) -> None:
        self.ttl = ttl
        self.max_entries = min(max_entries, MAX_CACHE_ENTRIES)
        self.cleanup_interval = cleanup_interval
        self._cache: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._last_cleanup = time.monotonic()

    def get(self, key: str) -> Any | None:
        self._maybe_cleanup()
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        lifetime = self.ttl if ttl is None else ttl
        if key in self._cache:
            del self._cache[key]
        while len(self._cache) >= self.max_entries:
            self._cache.popitem(last=False)
        self._cache[key] = (time.monotonic() + lifetime, value)

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def _maybe_cleanup(self) -> None:
        now = time.monotonic()
        if now - self._last_cleanup < self.cleanup_interval:
            return
        self._last_cleanup = now
        expired = [k for k, (expires_at, _) in self._cache.items() if now >= expires_at]
        for key in expired:
            del self._cache[key]


__all__ = [
    "CacheStrategy",
    "MAX_CACHE_ENTRIES",
    "TTLCacheStrategy",
]
