import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.OPT import OPT

from mosdns.dnsutils.msg import (
    apply_maximum_ttl,
    apply_minimal_ttl,
    fake_soa,
    gen_empty_reply,
    get_minimal_ttl,
    qclass_to_string,
    qtype_to_string,
    set_ttl,
    subtract_ttl,
)


def _response(with_opt=False):
    q = dns.message.make_query("example.com.", dns.rdatatype.A)
    r = dns.message.make_response(q)
    r.answer.append(dns.rrset.from_text("example.com.", 300, "IN", "A", "192.0.2.1"))
    r.authority.append(dns.rrset.from_text("example.com.", 60, "IN", "NS", "ns.example.com."))
    r.additional.append(dns.rrset.from_text("ns.example.com.", 120, "IN", "A", "192.0.2.53"))
    if with_opt:
        opt = OPT(1232, dns.rdatatype.OPT, [])
        r.additional.append(dns.rrset.from_rdata(dns.name.root, 0, opt))
    return r


def _ttls(msg):
    return [rrset.ttl for section in (msg.answer, msg.authority, msg.additional) for rrset in section]


def test_minimal_ttl():
    assert get_minimal_ttl(_response()) == 60


def test_minimal_ttl_ignores_opt():
    assert get_minimal_ttl(_response(with_opt=True)) == 60


def test_minimal_ttl_of_empty_message_is_zero():
    q = dns.message.make_query("example.com.", dns.rdatatype.A)
    assert get_minimal_ttl(q) == 0


def test_set_ttl_skips_opt():
    r = _response(with_opt=True)
    set_ttl(r, 10)
    assert _ttls(r) == [10, 10, 10, 0]


def test_apply_maximum_ttl():
    r = _response()
    apply_maximum_ttl(r, 100)
    assert _ttls(r) == [100, 60, 100]


def test_apply_minimal_ttl():
    r = _response()
    apply_minimal_ttl(r, 200)
    assert _ttls(r) == [300, 200, 200]


def test_subtract_ttl_overflow():
    r = _response()
    assert subtract_ttl(r, 100) is True
    assert _ttls(r) == [300 - 100, 1, 120 - 100]


def test_subtract_ttl_no_overflow():
    r = _response()
    assert subtract_ttl(r, 10) is False
    assert min(_ttls(r)) == 60 - 10


def test_type_and_class_names():
    assert qtype_to_string(dns.rdatatype.AAAA) == "AAAA"
    assert qclass_to_string(dns.rdataclass.IN) == "IN"


def test_unknown_type_and_class_are_numbers():
    assert qtype_to_string(65280) == "65280"
    assert qclass_to_string(4000) == "4000"


def test_fake_soa_content():
    rrset = fake_soa("example.com.")
    assert rrset.name == dns.name.from_text("example.com.")
    assert rrset.ttl == 300
    soa = rrset[0]
    assert soa.mname == dns.name.from_text("fake-ns.mosdns.fake.root.")
    assert soa.rname == dns.name.from_text("fake-mbox.mosdns.fake.root.")
    assert soa.serial == 2021110400
    assert soa.minimum == 86400


def test_gen_empty_reply_single_question():
    q = dns.message.make_query("example.com.", dns.rdatatype.A)
    r = gen_empty_reply(q, dns.rcode.NXDOMAIN)
    assert r.id == q.id
    assert r.rcode() == dns.rcode.NXDOMAIN
    assert r.flags & dns.flags.QR
    assert r.flags & dns.flags.RD
    assert r.question == q.question
    assert r.answer == []
    assert r.authority[0].rdtype == dns.rdatatype.SOA
    assert r.authority[0].name == dns.name.root


def test_gen_empty_reply_multiple_questions():
    q = dns.message.make_query("example.com.", dns.rdatatype.A)
    q.find_rrset(
        q.question,
        dns.name.from_text("other.example.com."),
        dns.rdataclass.IN,
        dns.rdatatype.A,
        create=True,
        force_unique=True,
    )
    r = gen_empty_reply(q, dns.rcode.SERVFAIL)
    assert r.rcode() == dns.rcode.SERVFAIL
    assert len(r.question) == 1
    assert r.authority[0].name == dns.name.from_text("example.com.")