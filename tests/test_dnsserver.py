from unittest import mock

import dns.flags
import dns.message
import dns.query
import dns.rcode
import dns.rrset
import pytest

from netclient.dnsrecords import DNSRecord, DNSResolver, RecordType
from netclient.dnsserver import DNSServer


def _resolver():
    resolver = DNSResolver()
    resolver.register_a(DNSRecord("svc.netmaker", RecordType.A, "10.1.2.3"))
    return resolver


def test_local_answer():
    server = DNSServer(_resolver(), [])
    query = dns.message.make_query("svc.netmaker.", "A")
    reply = dns.message.from_wire(server.handle_query(query.to_wire()))
    assert reply.id == query.id
    assert [r.address for r in reply.answer[0]] == ["10.1.2.3"]
    assert reply.rcode() == dns.rcode.NOERROR
    assert reply.flags & dns.flags.RA


def test_unknown_without_upstreams_is_nxdomain():
    server = DNSServer(_resolver(), [])
    query = dns.message.make_query("missing.netmaker.", "A")
    reply = dns.message.from_wire(server.handle_query(query.to_wire()))
    assert reply.rcode() == dns.rcode.NXDOMAIN
    assert reply.answer == []


def test_forwards_to_upstream():
    server = DNSServer(DNSResolver(), ["9.9.9.9"])
    query = dns.message.make_query("example.com.", "A")
    upstream = dns.message.make_response(query)
    upstream.answer.append(dns.rrset.from_text("example.com.", 60, "IN", "A", "192.0.2.1"))
    with mock.patch("dns.query.udp", return_value=upstream) as udp:
        reply = dns.message.from_wire(server.handle_query(query.to_wire()))
    assert udp.call_args.args[1] == "9.9.9.9"
    assert [r.address for r in reply.answer[0]] == ["192.0.2.1"]


def test_failed_upstreams_are_skipped():
    server = DNSServer(DNSResolver(), lambda: ["9.9.9.9", "fd00::53"])
    query = dns.message.make_query("example.com.", "A")
    failing = dns.message.make_response(query)
    failing.set_rcode(dns.rcode.SERVFAIL)
    with mock.patch("dns.query.udp", side_effect=[failing, OSError("down")]) as udp:
        reply = dns.message.from_wire(server.handle_query(query.to_wire()))
    assert udp.call_count == 2
    assert udp.call_args.args[1] == "fd00::53"
    assert reply.rcode() == dns.rcode.NXDOMAIN


def test_start_serves_and_stop_clears():
    server = DNSServer(_resolver(), [])
    bound = server.start(["127.0.0.1:0"])
    try:
        assert bound == [server.addr_str()]
        assert server.start(["127.0.0.1:0"]) == []
        host, port = server.addr_str().rsplit(":", 1)
        query = dns.message.make_query("svc.netmaker.", "A")
        reply = dns.query.udp(query, host, port=int(port), timeout=2)
        assert [r.address for r in reply.answer[0]] == ["10.1.2.3"]
    finally:
        server.stop()
    assert server.addr_str() == ""
    assert server.addr_list == []


def test_start_rejects_malformed_address():
    server = DNSServer(_resolver(), [])
    with pytest.raises(ValueError):
        server.start(["no-port"])
    assert server.addr_str() == ""