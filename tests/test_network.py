import pytest

from visitor_site.network import (
    LOOPBACK_FALLBACK,
    header_audit,
    is_local_ip,
    normalize_ip,
    resolve_client_ip,
)


def test_connecting_ip_header_wins_over_forwarded_for():
    headers = {"CF-Connecting-IP": "9.9.9.9", "X-Forwarded-For": "1.1.1.1, 2.2.2.2"}
    assert resolve_client_ip(headers) == "9.9.9.9"


def test_forwarded_for_takes_first_entry():
    assert resolve_client_ip({"x-forwarded-for": "203.0.113.5, 70.41.3.18"}) == "203.0.113.5"


def test_rfc7239_forwarded_header():
    assert resolve_client_ip({"forwarded": "for=198.51.100.23;proto=https"}) == "198.51.100.23"


def test_forwarded_header_with_bracketed_ipv6_and_port():
    assert normalize_ip('for="[2001:db8:cafe::17]:4711"') == "2001:db8:cafe::17"


def test_real_ip_beats_forwarded_for():
    headers = {"x-real-ip": "8.8.4.4", "x-forwarded-for": "1.1.1.1"}
    assert resolve_client_ip(headers) == "8.8.4.4"


def test_mapped_ipv4_prefix_is_stripped():
    assert resolve_client_ip({}, framework_ip="::ffff:203.0.113.9") == "203.0.113.9"


def test_ipv4_port_is_stripped():
    assert normalize_ip("203.0.113.9:51234") == "203.0.113.9"


def test_malformed_forwarded_for_falls_through_to_next_source():
    headers = {"x-forwarded-for": "garbage, nonsense", "forwarded": "for=unknown"}
    assert resolve_client_ip(headers, framework_ip="198.51.100.7") == "198.51.100.7"


def test_loopback_sources_are_skipped():
    headers = {"x-real-ip": "127.0.0.1", "x-forwarded-for": "::1"}
    assert resolve_client_ip(headers, remote_addr="203.0.113.1") == "203.0.113.1"


def test_falls_back_to_loopback_when_nothing_usable():
    assert resolve_client_ip({}, framework_ip="testclient") == LOOPBACK_FALLBACK
    assert resolve_client_ip({"x-real-ip": "   "}) == LOOPBACK_FALLBACK


def test_private_source_is_accepted_in_priority_order():
    headers = {"x-real-ip": "192.168.1.10", "x-forwarded-for": "8.8.8.8"}
    assert resolve_client_ip(headers) == "192.168.1.10"


def test_header_audit_keeps_raw_values():
    audit = header_audit({"X-Forwarded-For": "1.1.1.1, 2.2.2.2"})
    assert audit["x-forwarded-for"] == "1.1.1.1, 2.2.2.2"
    assert audit["cf-connecting-ip"] is None


@pytest.mark.parametrize("ip", ["127.0.0.1", "::1", "192.168.1.50", "10.0.0.5", "172.20.3.4", "172.31.255.1"])
def test_local_addresses(ip):
    assert is_local_ip(ip) is True


@pytest.mark.parametrize("ip", ["8.8.8.8", "172.32.0.1", "11.0.0.1", "193.168.1.1"])
def test_public_addresses(ip):
    assert is_local_ip(ip) is False


@pytest.mark.parametrize("ip", [None, "", "  "])
def test_empty_input_counts_as_local(ip):
    assert is_local_ip(ip) is True
