"""Per-client token bucket rate limiting."""

from __future__ import annotations

import functools
import ipaddress
import math
import operator
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

TABLE_SHARDS = 32
GC_INTERVAL = 60.0

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Address = Union[str, IPAddress]


class TokenBucket:
    """A token bucket refilled at ``rate`` tokens per second, holding at most ``burst``.

    The bucket starts full. An infinite rate allows everything; a zero rate
    allows only the first ``burst`` events.
    """

    def __init__(self, rate: float, burst: int) -> None:
        self.rate = float(rate)
        self.burst = burst
        self._tokens = float(burst)
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def allow(self, now: Optional[float] = None, n: int = 1) -> bool:
        """Take n tokens at time ``now`` (monotonic seconds) if available."""
        if now is None:
            now = time.monotonic()
        with self._lock:
            if self.rate == math.inf:
                return True
            if self.rate == 0:
                if self.burst >= n:
                    self.burst -= n
                    return True
                return False
            elapsed = 0.0 if self._last is None else max(0.0, now - self._last)
            tokens = min(self._tokens + elapsed * self.rate, float(self.burst))
            if n > self.burst or tokens < n:
                return False
            self._tokens = tokens - n
            self._last = now
            return True


@dataclass
class _Entry:
    bucket: TokenBucket
    last_seen: float


class _Shard:
    __slots__ = ("lock", "table")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.table: Dict[IPAddress, _Entry] = {}


def _as_addr(addr: Address) -> IPAddress:
    return ipaddress.ip_address(addr) if isinstance(addr, str) else addr


def _shard_index(addr: IPAddress) -> int:
    return functools.reduce(operator.xor, addr.packed, 0) % TABLE_SHARDS


class Limiter:
    """Rate limits clients by address, each with its own TokenBucket.

    A background thread drops clients unseen for a minute until ``close``.
    Callers should pass IPv4 addresses unmapped.
    """

    def __init__(self, limit: float, burst: int) -> None:
        self.limit = limit
        self.burst = burst
        self._shards: List[_Shard] = [_Shard() for _ in range(TABLE_SHARDS)]
        self._closed = threading.Event()
        self._gc_thread = threading.Thread(target=self._gc_loop, name="rate-limiter-gc", daemon=True)
        self._gc_thread.start()

    def _shard(self, addr: IPAddress) -> _Shard:
        return self._shards[_shard_index(addr)]

    def allow(self, addr: Address) -> bool:
        """Report whether one more query from addr is allowed now."""
        ip = _as_addr(addr)
        now = time.monotonic()
        shard = self._shard(ip)
        with shard.lock:
            entry = shard.table.get(ip)
            if entry is None:
                entry = _Entry(TokenBucket(self.limit, self.burst), now)
                shard.table[ip] = entry
            entry.last_seen = now
        return entry.bucket.allow(now)

    def close(self) -> None:
        """Stop the background cleaner. Calling it again does nothing."""
        self._closed.set()

    def __enter__(self) -> "Limiter":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _gc_loop(self) -> None:
        while not self._closed.wait(GC_INTERVAL):
            self.do_gc(time.monotonic(), GC_INTERVAL)

    def do_gc(self, now: float, interval: float = GC_INTERVAL) -> None:
        """Drop clients not seen for more than ``interval`` seconds before ``now``."""
        for shard in self._shards:
            with shard.lock:
                stale = [a for a, e in shard.table.items() if now - e.last_seen > interval]
                for a in stale:
                    del shard.table[a]

    def for_each(self, func: Callable[[IPAddress, TokenBucket], bool]) -> bool:
        """Call ``func(addr, bucket)`` per client; a true result stops the walk
        and makes this return True."""
        for shard in self._shards:
            with shard.lock:
                for a, e in list(shard.table.items()):
                    if func(a, e.bucket):
                        return True
        return False

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.table)
        return total