"""Static host records answered from a domain matcher."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from mosdns.dnsutils.msg import fake_soa

HOSTS_TTL = 10


@dataclass
class IPs:
    """The addresses bound to one hosts pattern."""

    ipv4: List[ipaddress.IPv4Address] = field(default_factory=list)
    ipv6: List[ipaddress.IPv6Address] = field(default_factory=list)


class Hosts:
    """Answers A and AAAA queries from a matcher whose values are IPs."""

    def __init__(self, matcher: Any) -> None:
        self._matcher = matcher

    def lookup(self, fqdn: str) -> Tuple[List[ipaddress.IPv4Address], List[ipaddress.IPv6Address]]:
        """Return the IPv4 and IPv6 addresses of fqdn; both empty if unknown."""
        hit = self._matcher.match(fqdn)
        if hit is None:
            return [], []
        ips: IPs = hit.value
        return list(ips.ipv4), list(ips.ipv6)

    def lookup_msg(self, msg: dns.message.Message) -> Optional[dns.message.Message]:
        """Build a reply to msg from the hosts, or return None if it cannot be answered.

        A known name queried for a type it has no address of gets an empty
        reply with a fake SOA in the authority section.
        """
        if len(msg.question) != 1:
            return None
        question = msg.question[0]
        typ = question.rdtype
        if question.rdclass != dns.rdataclass.IN or typ not in (dns.rdatatype.A, dns.rdatatype.AAAA):
            return None

        fqdn = question.name.to_text()
        ipv4, ipv6 = self.lookup(fqdn)
        if not ipv4 and not ipv6:
            return None

        reply = dns.message.make_response(msg)
        reply.use_edns(False)

        addrs: List[Any] = []
        if typ == dns.rdatatype.A:
            addrs = ipv4
        elif typ == dns.rdatatype.AAAA:
            addrs = ipv6

        if addrs:
            reply.answer.append(
                dns.rrset.from_text_list(
                    question.name, HOSTS_TTL, dns.rdataclass.IN, typ, [str(ip) for ip in addrs]
                )
            )
        else:
            reply.authority = [fake_soa(fqdn)]
        return reply


def parse_ips(s: str) -> Tuple[str, IPs]:
    """Parse a hosts line "pattern ip [ip ...]" into its pattern and addresses."""
    fields = s.split()
    if not fields:
        raise ValueError("empty string")
    pattern, *addr_texts = fields
    ips = IPs()
    for text in addr_texts:
        try:
            ip = ipaddress.ip_address(text)
        except ValueError as exc:
            raise ValueError(f"invalid ip addr {text}, {exc}") from exc
        if ip.version == 4:
            ips.ipv4.append(ip)
        else:
            ips.ipv6.append(ip)
    return pattern, ips