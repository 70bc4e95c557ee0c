"""A bounded least-recently-used mapping."""

from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

EvictCallback = Callable[[K, V], None]


class LRU(Generic[K, V]):
    """A least-recently-used cache holding at most ``max_size`` entries.

    ``on_evict`` is called for entries dropped by overflow, ``delete`` or ``clean``.
    """

    def __init__(self, max_size: int, on_evict: Optional[Callable[[K, V], None]] = None) -> None:
        if max_size <= 0:
            raise ValueError(f"LRU: invalid max size: {max_size}")
        self.max_size = max_size
        self._on_evict = on_evict
        self._data: "OrderedDict[K, V]" = OrderedDict()

    def _evict(self, key: K, value: V) -> None:
        if self._on_evict is not None:
            self._on_evict(key, value)

    def add(self, key: K, value: V) -> None:
        """Insert or update a key, marking it most recently used."""
        if key in self._data:
            self._data[key] = value
            self._data.move_to_end(key)
            return
        while len(self._data) >= self.max_size:
            old_key, old_value = self._data.popitem(last=False)
            self._evict(old_key, old_value)
        self._data[key] = value

    def delete(self, key: K) -> None:
        """Remove a key if present."""
        if key in self._data:
            value = self._data.pop(key)
            self._evict(key, value)

    def pop_oldest(self) -> Tuple[K, V]:
        """Remove and return the least recently used pair; KeyError if empty."""
        if not self._data:
            raise KeyError("pop from an empty LRU")
        return self._data.popitem(last=False)

    def clean(self, predicate: Callable[[K, V], bool]) -> int:
        """Remove every entry for which ``predicate`` is true; return the count."""
        removed = 0
        for key, value in list(self._data.items()):
            if predicate(key, value):
                del self._data[key]
                self._evict(key, value)
                removed += 1
        return removed

    def flush(self) -> None:
        """Drop all entries without calling the evict callback."""
        self._data = OrderedDict()

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Return the value for key and mark it most recently used."""
        if key not in self._data:
            return default
        self._data.move_to_end(key)
        return self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)