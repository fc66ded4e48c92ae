"""Caching primitives for fragments."""

from fragments.cache.strategies import CacheStrategy, TTLCacheStrategy

__all__ = [
    "CacheStrategy",
    "TTLCacheStrategy",
]
