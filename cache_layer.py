from __future__ import annotations

import os
import threading
from typing import Any, Callable

from cachetools import TTLCache


# Namespaces in use:
#   RBAC:      role index and per-action permission rules
#   CATALOG:   active skill catalog
_MISSING = object()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


class DirectoryCache:
    """Process-local TTL cache for slow-changing lookups."""

    def __init__(self, *, ttl: int, maxsize: int):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            val = self._cache.get(key, _MISSING)
            if val is _MISSING:
                self._misses += 1
                return default
            self._hits += 1
            return val

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        val = self.get(key, _MISSING)
        if val is not _MISSING:
            return val
        computed = factory()
        with self._lock:
            self._cache.setdefault(key, computed)
            return self._cache.get(key, computed)

    def invalidate_prefix(self, prefix: str) -> int:
        pfx = str(prefix or "")
        if not pfx:
            return 0
        with self._lock:
            keys = [k for k in list(self._cache.keys()) if str(k).startswith(pfx)]
            for k in keys:
                self._cache.pop(k, None)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round((self._hits / total * 100) if total else 0.0, 2),
            }


_cache = DirectoryCache(
    ttl=max(1, min(3600, _env_int("CACHE_TTL_SECONDS", 60))),
    maxsize=max(100, min(100_000, _env_int("CACHE_MAX_ITEMS", 5000))),
)


def cache_get(key: str) -> Any:
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_get_or_set(key: str, factory: Callable[[], Any]) -> Any:
    return _cache.get_or_set(key, factory)


def cache_invalidate_prefix(prefix: str) -> int:
    return _cache.invalidate_prefix(prefix)


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
