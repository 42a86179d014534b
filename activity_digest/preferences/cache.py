"""Read-through cache keyed by entity id."""

import threading
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

import structlog


logger = structlog.get_logger()

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ReadThroughCache(Generic[K, V]):
    """Thread-safe read-through cache with explicit invalidation.

    Misses call ``loader`` outside the lock; concurrent misses for the same
    key may load twice, and the last result wins.
    """

    def __init__(self, name: str, loader: Callable[[K], V]) -> None:
        """Initialize the cache.

        Args:
            name: Cache name for logging.
            loader: Loads the value for a key on a miss.
        """
        self._name = name
        self._loader = loader
        self._entries: dict[K, V] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._log = logger.bind(component="preferences", cache=name)

    def get(self, key: K) -> V:
        """Get the value for ``key``, loading it on a miss."""
        with self._lock:
            if key in self._entries:
                self._hits += 1
                return self._entries[key]
            self._misses += 1

        value = self._loader(key)
        with self._lock:
            self._entries[key] = value
        return value

    def invalidate(self, key: K) -> None:
        """Drop one entry."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            self._log.debug("cache_entry_invalidated", key=key)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self._log.debug("cache_cleared", entries=count)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def hits(self) -> int:
        """Number of lookups served from the cache."""
        return self._hits

    @property
    def misses(self) -> int:
        """Number of lookups that called the loader."""
        return self._misses
