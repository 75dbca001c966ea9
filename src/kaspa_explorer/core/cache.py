"""
In-memory caches shared between concurrent requests.

Each cache guards its own state with a private lock that is only held for
the swap itself; callers never hold it across an ``await``. Stored values
are frozen view models, so handing out the stored reference is a safe copy.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


class SnapshotCache(Generic[T]):
    """A single mutable slot holding the latest value and when it was stored."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._value: T | None = None
        self._stored_at: float = 0.0

    def get(self) -> T | None:
        with self._lock:
            return self._value

    def get_fresh(self, max_age: float) -> T | None:
        """Return the value only if it was stored at most ``max_age`` seconds ago."""
        with self._lock:
            if self._value is None:
                return None
            if self._clock() - self._stored_at > max_age:
                return None
            return self._value

    def replace(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._stored_at = self._clock()

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._stored_at = 0.0

    @property
    def stored_at(self) -> float:
        with self._lock:
            return self._stored_at


class KeyedCache(Generic[T]):
    """
    Per-key cache with LRU eviction and optional TTL reads.

    ``replace`` always overwrites, so an entry is the result of exactly one
    fetch.
    """

    def __init__(self, max_entries: int = 1000, clock: Clock = time.time) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[float, T]] = OrderedDict()

    def get(self, key: str, max_age: float | None = None) -> T | None:
        """
        Return the cached value for ``key``.

        Args:
            key: Cache key
            max_age: When given, entries older than this many seconds are
                treated as missing

        Returns:
            The cached value or None
        """
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            stored_at, value = item
            if max_age is not None and self._clock() - stored_at > max_age:
                return None
            self._entries.move_to_end(key)
            return value

    def replace(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
