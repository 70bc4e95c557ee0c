"""Reading and writing DNS messages over stream and datagram transports.

Stream messages carry a two byte big-endian length prefix (RFC 1035).
"""

from __future__ import annotations

import struct
from typing import Any, Tuple

import dns.exception
import dns.message

DNS_HEADER_LEN = 12  # minimum dns msg size
MAX_MSG_SIZE = 65535
MIN_MSG_SIZE = 512


class PayloadTooSmallError(ValueError):
    """Raised when a length prefix announces fewer bytes than a DNS header."""

    def __init__(self) -> None:
        super().__init__("payload is too small for a valid dns msg")


def pack_msg(msg: dns.message.Message) -> bytes:
    """Return msg in wire format."""
    return msg.to_wire()


def pack_tcp_msg(msg: dns.message.Message) -> bytes:
    """Return msg in wire format with a two byte length prefix."""
    wire = pack_msg(msg)
    if len(wire) > MAX_MSG_SIZE:
        raise ValueError(f"dns payload size {len(wire)} is too large")
    return struct.pack("!H", len(wire)) + wire


def _read_exact(stream: Any, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"unexpected end of stream after {len(data)} of {n} bytes")
        data += chunk
    return data


def _unpack(data: bytes) -> dns.message.Message:
    try:
        return dns.message.from_wire(data)
    except dns.exception.DNSException as exc:
        raise ValueError(f"failed to unpack msg [{data.hex()}], {exc}") from exc


def read_raw_msg_from_tcp(stream: Any) -> bytes:
    """Read one length-prefixed message body from a binary stream."""
    (length,) = struct.unpack("!H", _read_exact(stream, 2))
    if length <= DNS_HEADER_LEN:
        raise PayloadTooSmallError()
    return _read_exact(stream, length)


def read_msg_from_tcp(stream: Any) -> Tuple[dns.message.Message, int]:
    """Read and parse one length-prefixed message; return it and the bytes read."""
    data = read_raw_msg_from_tcp(stream)
    return _unpack(data), len(data) + 2


def _write(stream: Any, data: bytes) -> int:
    written = stream.write(data)
    return len(data) if written is None else written


def write_msg_to_tcp(stream: Any, msg: dns.message.Message) -> int:
    """Write msg with a length prefix; return the number of bytes written."""
    return _write(stream, pack_tcp_msg(msg))


def write_raw_msg_to_tcp(stream: Any, data: bytes) -> int:
    """Write a wire-format message with a length prefix."""
    if len(data) > MAX_MSG_SIZE:
        raise ValueError(f"payload length {len(data)} is greater than dns max msg size")
    return _write(stream, struct.pack("!H", len(data)) + bytes(data))


def write_msg_to_udp(stream: Any, msg: dns.message.Message) -> int:
    """Write msg in wire format without a prefix."""
    return _write(stream, pack_msg(msg))


def read_msg_from_udp(stream: Any, buf_size: int = MIN_MSG_SIZE) -> Tuple[dns.message.Message, int]:
    """Read one datagram (``recv`` if available, else ``read``) and parse it.

    Buffers smaller than 512 bytes are enlarged to 512.
    """
    size = max(buf_size, MIN_MSG_SIZE)
    receive = getattr(stream, "recv", None) or stream.read
    data = receive(size)
    return _unpack(data), len(data)