"""Extraction of IP addresses from PTR query names."""

from __future__ import annotations

import ipaddress
import re
from typing import Iterator, Union

IP4ARPA = ".in-addr.arpa."
IP6ARPA = ".ip6.arpa."

_DECIMAL = re.compile(r"[0-9]+")


def parse_ptr_qname(fqdn: str) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    """Return the IP address that a PTR query name encodes."""
    if fqdn.endswith(IP4ARPA):
        return reverse4(fqdn[: -len(IP4ARPA)])
    if fqdn.endswith(IP6ARPA):
        return reverse6(fqdn[: -len(IP6ARPA)])
    raise ValueError("domain does not have a ptr suffix")


def _labels_from_right(s: str) -> Iterator[str]:
    return (label for label in reversed(s.split(".")) if label)


def reverse4(s: str) -> ipaddress.IPv4Address:
    """Decode the reversed IPv4 labels of s; extra labels on the left are ignored."""
    octets = bytearray()
    for label in _labels_from_right(s):
        if len(octets) == 4:
            break
        if not _DECIMAL.fullmatch(label) or int(label) > 255:
            raise ValueError(f"invalid bit {label!r}")
        octets.append(int(label))
    if len(octets) < 4:
        raise ValueError(f"expect at least 4 labels, got {len(octets)}")
    return ipaddress.IPv4Address(bytes(octets))


def _nibble(c: str) -> int:
    if "0" <= c <= "9":
        return ord(c) - ord("0")
    lower = chr(ord(c) | 0x20)
    if "a" <= lower <= "z":
        return ord(lower) - ord("a") + 10
    raise ValueError(f"invalid bit {ord(c)}")


def reverse6(s: str) -> ipaddress.IPv6Address:
    """Decode the reversed IPv6 nibble labels of s; extra labels on the left are ignored."""
    octets = bytearray()
    high = None
    for label in _labels_from_right(s):
        if len(octets) == 16:
            break
        if len(label) != 1:
            raise ValueError(f"invalid label {label}")
        n = _nibble(label)
        if high is None:
            high = n
        else:
            octets.append(((high << 4) + n) & 0xFF)
            high = None
    if len(octets) < 16:
        raise ValueError(f"expect at least 16 bytes, got {len(octets)}")
    return ipaddress.IPv6Address(bytes(octets))