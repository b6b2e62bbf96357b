"""Tests for acmerenew.csr.processor."""

from __future__ import annotations

import ipaddress
from dataclasses import replace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import NameOID

import support
from acmerenew.core.errors import CsrIdentifierMismatch, UnsupportedKeyType
from acmerenew.core.identifiers import DnsIdentifier, IpIdentifier, UnknownIdentifier
from acmerenew.csr.processor import CsrProcessor, build_csr, load_csr


@pytest.fixture()
def processor(settings_factory):
    return CsrProcessor(settings_factory().csr)


def _common_names(csr):
    return [a.value for a in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------


class TestGenerateKey:
    def test_ec_curve(self, processor):
        key = processor.generate_key()
        assert isinstance(key, ec.EllipticCurvePrivateKey)
        assert key.curve.name == "secp256r1"

    def test_rsa(self, settings_factory):
        settings = settings_factory(csr={"key_type": "rsa", "rsa_key_bits": 2048}).csr
        key = CsrProcessor(settings).generate_key()
        assert isinstance(key, rsa.RSAPrivateKey)
        assert key.key_size == 2048

    def test_rsa_below_minimum(self, settings_factory):
        settings = replace(settings_factory(csr={"key_type": "rsa"}).csr, rsa_key_bits=1024)
        with pytest.raises(UnsupportedKeyType, match="1024"):
            CsrProcessor(settings).generate_key()

    def test_unknown_curve(self, settings_factory):
        settings = replace(settings_factory().csr, ec_curve="brainpool")
        with pytest.raises(UnsupportedKeyType, match="brainpool"):
            CsrProcessor(settings).generate_key()

    def test_reused_key_must_be_rsa_or_ec(self, processor):
        with pytest.raises(UnsupportedKeyType):
            processor.process(
                [DnsIdentifier("a.example")],
                reuse_key=ed25519.Ed25519PrivateKey.generate(),
            )


# ---------------------------------------------------------------------------
# CSR construction
# ---------------------------------------------------------------------------


class TestBuildCsr:
    def test_subject_and_san(self, processor):
        idents = [DnsIdentifier("www.example.com"), IpIdentifier("192.0.2.5")]
        result = processor.process(idents, DnsIdentifier("www.example.com"))
        csr = x509.load_der_x509_csr(result.csr_der)
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["www.example.com"]
        assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("192.0.2.5")]
        assert _common_names(csr) == ["www.example.com"]
        assert csr.is_signature_valid
        assert result.private_key is not None

    def test_common_name_not_in_order_falls_back_to_first(self):
        csr = build_csr(
            support.ec_key(),
            [DnsIdentifier("b.example"), DnsIdentifier("c.example")],
            DnsIdentifier("a.example"),
        )
        assert _common_names(csr) == ["b.example"]

    def test_long_first_name_leaves_subject_empty(self):
        long_name = ".".join(["a" * 60, "b" * 60, "example"])
        csr = build_csr(support.ec_key(), [DnsIdentifier(long_name)])
        assert _common_names(csr) == []

    def test_reused_key_signs_request(self, processor):
        key = support.ec_key()
        result = processor.process([DnsIdentifier("a.example")], reuse_key=key)
        csr = x509.load_der_x509_csr(result.csr_der)
        assert result.private_key is key
        assert csr.public_key().public_numbers() == key.public_key().public_numbers()

    def test_unknown_identifier_cannot_be_requested(self):
        with pytest.raises(CsrIdentifierMismatch):
            build_csr(support.ec_key(), [UnknownIdentifier("admin@example.com")])

    def test_no_identifiers(self):
        with pytest.raises(CsrIdentifierMismatch):
            build_csr(support.ec_key(), [])


# ---------------------------------------------------------------------------
# User supplied CSR
# ---------------------------------------------------------------------------


class TestUserCsr:
    def _pem(self, *names):
        csr = build_csr(support.ec_key(), [DnsIdentifier(n) for n in names])
        return csr.public_bytes(serialization.Encoding.PEM)

    def test_passes_through_when_covering(self, processor):
        user = self._pem("a.example", "b.example")
        result = processor.process([DnsIdentifier("b.example")], user_csr=user)
        assert result.private_key is None
        assert result.csr_der == load_csr(user).public_bytes(serialization.Encoding.DER)

    def test_der_input_accepted(self, processor):
        der = load_csr(self._pem("a.example")).public_bytes(serialization.Encoding.DER)
        assert processor.process([DnsIdentifier("a.example")], user_csr=der).csr_der == der

    def test_missing_identifier_rejected(self, processor):
        user = self._pem("a.example")
        with pytest.raises(CsrIdentifierMismatch, match="c.example"):
            processor.process(
                [DnsIdentifier("a.example"), DnsIdentifier("c.example")],
                user_csr=user,
            )

    def test_garbage_rejected(self, processor):
        with pytest.raises(CsrIdentifierMismatch, match="parse"):
            processor.process([DnsIdentifier("a.example")], user_csr=b"garbage")
