"""Tests for acmerenew.core.identifiers."""

from __future__ import annotations

import pytest

from acmerenew.core.identifiers import (
    DnsIdentifier,
    IpIdentifier,
    UnknownIdentifier,
    identifier_from_san,
    ip_from_octets,
    parse_identifier,
)
from acmerenew.core.types import IdentifierType


class TestDnsIdentifier:
    def test_lowercases_and_strips_trailing_dot(self):
        assert DnsIdentifier("WWW.Example.COM.").value == "www.example.com"

    def test_idn_is_stored_as_a_label(self):
        ident = DnsIdentifier("bücher.example")
        assert ident.value == "xn--bcher-kva.example"
        assert ident.unicode_value == "bücher.example"

    def test_wildcard(self):
        ident = DnsIdentifier("*.Example.com")
        assert ident.value == "*.example.com"
        assert ident.is_wildcard

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            DnsIdentifier("  ")

    def test_overlong_label_rejected(self):
        with pytest.raises(ValueError):
            DnsIdentifier("a" * 64 + ".example.com")

    def test_equality_uses_normalised_value(self):
        assert DnsIdentifier("Example.com") == DnsIdentifier("example.com")
        assert len({DnsIdentifier("A.example"), DnsIdentifier("a.example")}) == 1


class TestIpIdentifier:
    def test_canonical_ipv6(self):
        assert IpIdentifier("2001:0db8:0000::0001").value == "2001:db8::1"

    def test_type(self):
        assert IpIdentifier("10.0.0.1").type == IdentifierType.IP


class TestParseIdentifier:
    def test_ip_preferred(self):
        assert isinstance(parse_identifier("192.0.2.7"), IpIdentifier)

    def test_falls_back_to_dns(self):
        assert isinstance(parse_identifier("host.example"), DnsIdentifier)


class TestSanClassification:
    def test_dns_entry(self):
        ident = identifier_from_san("dns", "Mail.Example.org")
        assert ident == DnsIdentifier("mail.example.org")

    def test_hex_octet_string_normalises_to_dotted_decimal(self):
        assert identifier_from_san("ip", "#7f000001") == IpIdentifier("127.0.0.1")

    def test_raw_ipv4_octets(self):
        assert ip_from_octets(bytes([192, 0, 2, 1])) == IpIdentifier("192.0.2.1")

    def test_raw_ipv6_octets_are_colon_grouped(self):
        raw = bytes.fromhex("20010db8000000000000000000000001")
        assert ip_from_octets(raw).value == "2001:db8::1"

    def test_ipv6_hex_dump(self):
        ident = ip_from_octets("#20010db8000000000000000000000001")
        assert ident == IpIdentifier("2001:db8::1")

    def test_address_mask_pair_is_unknown(self):
        ident = ip_from_octets(bytes([10, 0, 0, 0, 255, 0, 0, 0]))
        assert isinstance(ident, UnknownIdentifier)
        assert ident.value == "#0a000000ff000000"

    def test_invalid_hex_keeps_raw_text(self):
        ident = ip_from_octets("#zz")
        assert ident == UnknownIdentifier("#zz")

    def test_unrecognised_type_keeps_raw_string_unchanged(self):
        raw = "1.3.6.1.4.1.311.20.2.3:#0c0b75736572406578616d706c65"
        ident = identifier_from_san("other", raw)
        assert isinstance(ident, UnknownIdentifier)
        assert ident.value == raw
