"""An in-memory, size-bounded cache of values with expiration times."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Optional, Tuple, TypeVar

from mosdns.concurrent_map import ConcurrentMap

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_SIZE = 1024
DEFAULT_CLEANER_INTERVAL = 10.0


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    expiration_time: float


class Cache(Generic[K, V]):
    """A thread-safe cache. Expiration times are Unix timestamps in seconds.

    A background thread drops expired entries every ``cleaner_interval`` seconds
    until ``close`` is called.
    """

    def __init__(self, size: int = DEFAULT_SIZE, cleaner_interval: float = DEFAULT_CLEANER_INTERVAL) -> None:
        if size <= 0:
            size = DEFAULT_SIZE
        if cleaner_interval <= 0:
            cleaner_interval = DEFAULT_CLEANER_INTERVAL
        self.size = size
        self.cleaner_interval = cleaner_interval
        self._map: ConcurrentMap[K, _Entry[V]] = ConcurrentMap(size)
        self._closed = threading.Event()
        self._cleaner = threading.Thread(target=self._gc_loop, name="cache-cleaner", daemon=True)
        self._cleaner.start()

    def _gc_loop(self) -> None:
        while not self._closed.wait(self.cleaner_interval):
            self.gc(time.time())

    def close(self) -> None:
        """Stop the background cleaner. Calling it again does nothing."""
        self._closed.set()

    def __enter__(self) -> "Cache[K, V]":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get(self, key: K) -> Optional[Tuple[V, float]]:
        """Return ``(value, expiration_time)``, or None if missing or expired."""
        entry = self._map.get(key)
        if entry is None:
            return None
        if entry.expiration_time < time.time():
            self._map.delete(key)
            return None
        return entry.value, entry.expiration_time

    def range(self, func: Callable[[K, V, float], None]) -> None:
        """Call ``func(key, value, expiration_time)`` for every entry."""

        def visit(key: K, entry: _Entry[V]) -> Tuple[None, bool, bool]:
            func(key, entry.value, entry.expiration_time)
            return None, False, False

        self._map.range_do(visit)

    def store(self, key: K, value: V, expiration_time: float) -> None:
        """Store a value; does nothing if it has already expired."""
        if time.time() > expiration_time:
            return
        self._map.set(key, _Entry(value, expiration_time))

    def gc(self, now: float) -> None:
        """Drop every entry that expired before ``now``."""
        self._map.range_do(lambda k, e: (None, False, now > e.expiration_time))

    def __len__(self) -> int:
        return len(self._map)

    def flush(self) -> None:
        """Remove all entries."""
        self._map.flush()