"""A sorted list of IP prefixes searched by bisection.

IPv4 prefixes are stored as IPv4-mapped IPv6 prefixes, so one list can hold
both address families.
"""

from __future__ import annotations

import ipaddress
from bisect import bisect_right
from typing import Iterable, List, NamedTuple, Optional, Protocol, Union

_V4_MAPPED = 0xFFFF << 32
_ADDR_BITS = 128

Address = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]
PrefixLike = Union[
    str,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
    ipaddress.IPv4Address,
    ipaddress.IPv6Address,
]


class Matcher(Protocol):
    def match(self, addr: Address) -> bool:
        """Report whether addr is matched."""


class _Prefix(NamedTuple):
    start: int
    bits: int

    def contains(self, addr: int) -> bool:
        shift = _ADDR_BITS - self.bits
        return (addr >> shift) == (self.start >> shift)


def _addr_to_int(addr: Address) -> int:
    if isinstance(addr, str):
        addr = ipaddress.ip_address(addr)
    if isinstance(addr, ipaddress.IPv4Address):
        return _V4_MAPPED | int(addr)
    return int(addr)


def _to_prefix(net: PrefixLike) -> _Prefix:
    if isinstance(net, str):
        net = ipaddress.ip_network(net, strict=False)
    elif isinstance(net, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        net = net.network
    elif isinstance(net, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        net = ipaddress.ip_network(net)
    start = int(net.network_address)
    bits = net.prefixlen
    if net.version == 4:
        start |= _V4_MAPPED
        bits += 96
    return _Prefix(start, bits)


class NetList:
    """A list of IP prefixes; call ``sort`` after changes and before lookups."""

    def __init__(self) -> None:
        self._entries: List[_Prefix] = []
        self._starts: List[int] = []
        self._sorted = False

    def append(self, *args: PrefixLike) -> None:
        """Add prefixes; host bits are masked off. The list becomes unsorted."""
        self._entries.extend(_to_prefix(net) for net in args)
        self._sorted = False

    def sort(self) -> None:
        """Sort the list and merge prefixes that are covered by others."""
        if self._sorted:
            return
        merged: List[_Prefix] = []
        for prefix in sorted(self._entries):
            if not merged:
                merged.append(prefix)
                continue
            last = merged[-1]
            if prefix.start == last.start:
                if prefix.bits < last.bits:
                    merged[-1] = prefix
            elif not last.contains(prefix.start):
                merged.append(prefix)
        self._entries = merged
        self._starts = [p.start for p in merged]
        self._sorted = True

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, addr: Optional[Address]) -> bool:
        """Same as ``contains``."""
        return self.contains(addr)

    def contains(self, addr: Optional[Address]) -> bool:
        """Report whether some prefix of the list includes addr."""
        if not self._sorted:
            raise RuntimeError("list is not sorted")
        if addr is None:
            return False
        value = _addr_to_int(addr)
        i = bisect_right(self._starts, value)
        if i == 0:
            return False
        return self._entries[i - 1].contains(value)


def load_from_text(netlist: NetList, s: str) -> None:
    """Add one address or prefix in text form. The list becomes unsorted."""
    if "/" in s:
        netlist.append(ipaddress.ip_network(s, strict=False))
        return
    netlist.append(ipaddress.ip_network(ipaddress.ip_address(s)))


def load_from_reader(netlist: NetList, reader: Union[str, Iterable[str]]) -> None:
    """Load one address or prefix per line; '#' starts a comment and anything
    after the first space is ignored. The list becomes unsorted."""
    lines = reader.splitlines() if isinstance(reader, str) else reader
    for line_no, line in enumerate(lines, 1):
        s = line.strip().split("#", 1)[0].split(" ", 1)[0]
        if not s:
            continue
        try:
            load_from_text(netlist, s)
        except ValueError as exc:
            raise ValueError(f"invalid data at line #{line_no}: {exc}") from exc