"""A sharded, lock-protected dictionary with an optional size bound."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

MAP_SHARD_SIZE = 64

TestAndSetFunc = Callable[[Any, bool], Tuple[Any, bool, bool]]
RangeFunc = Callable[[Any, Any], Tuple[Any, bool, bool]]


class _Shard(Generic[K, V]):
    __slots__ = ("lock", "max", "data")

    def __init__(self, max_size: int) -> None:
        self.lock = threading.Lock()
        self.max = max_size  # zero or negative means unbounded
        self.data: Dict[K, V] = {}

    def set(self, key: K, value: V) -> None:
        with self.lock:
            if self.max > 0 and len(self.data) + 1 > self.max:
                for k in list(self.data):
                    del self.data[k]
                    if len(self.data) + 1 <= self.max:
                        break
            self.data[key] = value


class ConcurrentMap(Generic[K, V]):
    """A thread-safe map split into 64 shards.

    With ``max_size`` > 0 each shard holds at most ``max_size // 64`` entries,
    arbitrary entries being dropped to make room.
    """

    def __init__(self, max_size: int = 0) -> None:
        per_shard = max_size // MAP_SHARD_SIZE if max_size > 0 else 0
        self._shards: List[_Shard[K, V]] = [_Shard(per_shard) for _ in range(MAP_SHARD_SIZE)]

    def _shard(self, key: K) -> _Shard[K, V]:
        return self._shards[hash(key) % MAP_SHARD_SIZE]

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        shard = self._shard(key)
        with shard.lock:
            return shard.data.get(key, default)

    def set(self, key: K, value: V) -> None:
        self._shard(key).set(key, value)

    def delete(self, key: K) -> None:
        shard = self._shard(key)
        with shard.lock:
            shard.data.pop(key, None)

    def test_and_set(self, key: K, func: TestAndSetFunc) -> None:
        """Call ``func(value, present)`` under the shard lock.

        It returns ``(new_value, set_value, delete_value)``.
        """
        shard = self._shard(key)
        with shard.lock:
            present = key in shard.data
            new_value, set_value, delete_value = func(shard.data.get(key), present)
            if set_value:
                shard.data[key] = new_value
            elif delete_value and present:
                del shard.data[key]

    def range_do(self, func: RangeFunc) -> None:
        """Call ``func(key, value)`` for every entry; it returns
        ``(new_value, set_value, delete_value)``. Exceptions stop the walk."""
        for shard in self._shards:
            with shard.lock:
                for k, v in list(shard.data.items()):
                    new_value, set_value, delete_value = func(k, v)
                    if set_value:
                        shard.data[k] = new_value
                    elif delete_value:
                        del shard.data[k]

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.data)
        return total

    def flush(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.data = {}