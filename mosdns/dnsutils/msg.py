"""Helpers that inspect and adjust DNS messages."""

from __future__ import annotations

from typing import Iterator

import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.SOA import SOA

FAKE_SOA_TTL = 300


def _ttl_rrsets(msg: dns.message.Message) -> Iterator[dns.rrset.RRset]:
    for section in (msg.answer, msg.authority, msg.additional):
        for rrset in section:
            if rrset.rdtype != dns.rdatatype.OPT:  # an OPT ttl is not a ttl
                yield rrset


def get_minimal_ttl(msg: dns.message.Message) -> int:
    """Return the smallest record ttl of msg, or 0 if it has no record."""
    return min((rrset.ttl for rrset in _ttl_rrsets(msg)), default=0)


def set_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Set the ttl of every record, except OPT, to ttl."""
    for rrset in _ttl_rrsets(msg):
        rrset.ttl = ttl


def apply_maximum_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Lower every record ttl that is above ttl."""
    for rrset in _ttl_rrsets(msg):
        if rrset.ttl > ttl:
            rrset.ttl = ttl


def apply_minimal_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Raise every record ttl that is below ttl."""
    for rrset in _ttl_rrsets(msg):
        if rrset.ttl < ttl:
            rrset.ttl = ttl


def subtract_ttl(msg: dns.message.Message, delta: int) -> bool:
    """Subtract delta from every record ttl.

    A ttl that is not greater than delta becomes 1, and True is returned.
    """
    overflowed = False
    for rrset in _ttl_rrsets(msg):
        if rrset.ttl > delta:
            rrset.ttl -= delta
        else:
            rrset.ttl = 1
            overflowed = True
    return overflowed


def qclass_to_string(value: int) -> str:
    """Return the mnemonic of a class, or its number as text."""
    text = dns.rdataclass.to_text(value)
    return str(value) if text.startswith("CLASS") else text


def qtype_to_string(value: int) -> str:
    """Return the mnemonic of a type, or its number as text."""
    text = dns.rdatatype.to_text(value)
    return str(value) if text.startswith("TYPE") else text


def _reply_to(query: dns.message.Message) -> dns.message.Message:
    reply = dns.message.Message(id=query.id)
    opcode = dns.opcode.from_flags(query.flags)
    reply.flags = dns.flags.QR
    reply.set_opcode(opcode)
    if opcode == dns.opcode.QUERY:
        reply.flags |= query.flags & (dns.flags.RD | dns.flags.CD)
    if query.question:
        first = query.question[0]
        reply.question = [dns.rrset.RRset(first.name, first.rdclass, first.rdtype)]
    return reply


def gen_empty_reply(query: dns.message.Message, rcode: int) -> dns.message.Message:
    """Build a reply to query with rcode and a fake SOA in the authority section."""
    reply = _reply_to(query)
    reply.set_rcode(rcode)
    name = query.question[0].name.to_text() if len(query.question) > 1 else "."
    reply.authority = [fake_soa(name)]
    return reply


def fake_soa(name: str) -> dns.rrset.RRset:
    """Return an SOA record set for name with fixed placeholder content."""
    rdata = SOA(
        dns.rdataclass.IN,
        dns.rdatatype.SOA,
        dns.name.from_text("fake-ns.mosdns.fake.root."),
        dns.name.from_text("fake-mbox.mosdns.fake.root."),
        2021110400,
        1800,
        900,
        604800,
        86400,
    )
    return dns.rrset.from_rdata(dns.name.from_text(name), FAKE_SOA_TTL, rdata)