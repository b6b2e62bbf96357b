"""Shared test helpers: certificate material, settings and test doubles."""

from __future__ import annotations

import ipaddress
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acmerenew.ca.base import (
    Authorization,
    CertificateAuthorityClient,
    ChallengeDetails,
    OrderHandle,
    PendingIssuance,
)
from acmerenew.certificates.chain import assemble
from acmerenew.certificates.pfx import PfxBundle
from acmerenew.config.renew_config import load_settings
from acmerenew.core.types import AuthorizationStatus, ChallengeType, ParallelOperations, ProtectionMode
from acmerenew.validation.base import Validator

# ---------------------------------------------------------------------------
# Certificate material
# ---------------------------------------------------------------------------


def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _name(cn: str | None) -> x509.Name:
    if cn is None:
        return x509.Name([])
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])


def make_ca(cn: str, issuer=None, issuer_key=None, key=None):
    """CA certificate; self-signed unless *issuer*/*issuer_key* given."""
    key = key or ec_key()
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(cn))
        .issuer_name(issuer.subject if issuer is not None else _name(cn))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(issuer_key or key, hashes.SHA256())
    )
    return cert, key


def make_leaf(
    issuer,
    issuer_key,
    *,
    cn: str | None = "www.example.com",
    dns: tuple[str, ...] = ("www.example.com",),
    ips: tuple[str, ...] = (),
    key=None,
    public_key=None,
    not_before: datetime | None = None,
    days: int = 90,
    extra_names: tuple[x509.GeneralName, ...] = (),
):
    key = key or (None if public_key is not None else ec_key())
    start = not_before or (datetime.now(UTC) - timedelta(minutes=5))
    names = [x509.DNSName(d) for d in dns]
    names += [x509.IPAddress(ipaddress.ip_address(i)) for i in ips]
    names += list(extra_names)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(cn))
        .issuer_name(issuer.subject)
        .public_key(public_key or key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(start + timedelta(days=days))
    )
    if names:
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
    return builder.sign(issuer_key, hashes.SHA256()), key


@dataclass
class Pki:
    root: x509.Certificate
    root_key: object
    intermediate: x509.Certificate
    intermediate_key: object

    def leaf(self, **kwargs):
        return make_leaf(self.intermediate, self.intermediate_key, **kwargs)

    def info(
        self,
        *,
        protection_mode: ProtectionMode = ProtectionMode.DEFAULT,
        password: str | None = None,
        friendly_name: str | None = None,
        key=None,
        **kwargs,
    ):
        """Assembled :class:`CertificateInfo` for a fresh leaf."""
        leaf, leaf_key = self.leaf(key=key, **kwargs)
        bundle = PfxBundle(
            certificates=(leaf, self.intermediate, self.root),
            private_key=leaf_key,
            protection_mode=protection_mode,
            password=password,
            friendly_name=friendly_name,
        )
        return assemble(bundle)


def make_pki() -> Pki:
    root, root_key = make_ca("Test Root")
    intermediate, intermediate_key = make_ca("Test Intermediate", root, root_key)
    return Pki(root, root_key, intermediate, intermediate_key)


def pem(*certs) -> bytes:
    return b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def _merge(base: dict, overrides: dict) -> dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def make_settings(tmp_path: Path, **sections):
    """Real settings rooted in *tmp_path* with fast polling and EC keys."""
    base = {
        "cache": {"path": str(tmp_path / "cache"), "password": "cache-secret"},
        "csr": {"key_type": "ec", "ec_curve": "secp256r1"},
        "order": {"issuance_poll_attempts": 3, "issuance_poll_interval_seconds": 0},
        "validation": {
            "poll_attempts": 3,
            "poll_interval_seconds": 0,
            "poll_max_interval_seconds": 0,
            "timeout_seconds": 0,
            "selfhosting": {"bind": "127.0.0.1", "port": 0},
        },
        "history": {"path": str(tmp_path / "history")},
    }
    return load_settings(_merge(base, sections))


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


def challenges_for(value: str) -> tuple[ChallengeDetails, ...]:
    token = f"token-{value.replace('*', 'star').replace(':', '-')}"
    return (
        ChallengeDetails(ChallengeType.HTTP_01, token, f"{token}.thumb", url=f"http://ca/chall/{token}"),
        ChallengeDetails(ChallengeType.DNS_01, token, f"{token}.thumb", url=f"dns://ca/chall/{token}"),
    )


class FakeCA(CertificateAuthorityClient):
    """In-memory authority issuing real certificates from *pki*.

    Identifiers listed in ``invalid`` fail validation; ``valid`` ones
    start out already valid.  Every call is recorded in ``calls``.
    """

    def __init__(self, pki: Pki, *, invalid=(), valid=(), fail_orders=(), pending_polls=0):
        self.pki = pki
        self.invalid = {str(v) for v in invalid}
        self.valid = {str(v) for v in valid}
        self.fail_orders = {str(v) for v in fail_orders}
        self.pending_polls = pending_polls
        self.calls: list[tuple] = []
        self.issued: list[x509.Certificate] = []
        self._lock = threading.Lock()
        self._polls: dict[str, int] = {}

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def create_order(self, identifiers):
        from acmerenew.core.errors import OrderCreationFailed

        self._record("create_order", tuple(i.value for i in identifiers))
        if any(i.value in self.fail_orders for i in identifiers):
            msg = "Order refused"
            raise OrderCreationFailed(msg)
        return OrderHandle(url=f"order-{len(self.calls)}", identifiers=tuple(identifiers))

    def get_authorizations(self, order):
        self._record("get_authorizations", order.url)
        return [
            Authorization(
                identifier=i,
                status=AuthorizationStatus.VALID if i.value in self.valid else AuthorizationStatus.PENDING,
                challenges=challenges_for(i.value),
                url=f"authz-{i.value}",
            )
            for i in order.identifiers
        ]

    def answer_challenge(self, authorization, challenge):
        self._record("answer_challenge", authorization.identifier.value, challenge.type)

    def poll_authorization(self, authorization):
        value = authorization.identifier.value
        self._record("poll_authorization", value)
        with self._lock:
            count = self._polls.get(value, 0)
            self._polls[value] = count + 1
        if count < self.pending_polls:
            return authorization
        if value in self.invalid:
            return Authorization(
                identifier=authorization.identifier,
                status=AuthorizationStatus.INVALID,
                challenges=authorization.challenges,
                url=authorization.url,
                error="Connection refused",
            )
        return Authorization(
            identifier=authorization.identifier,
            status=AuthorizationStatus.VALID,
            challenges=authorization.challenges,
            url=authorization.url,
        )

    def submit_csr(self, order, csr_der):
        self._record("submit_csr", order.url)
        csr = x509.load_der_x509_csr(csr_der)
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        leaf, _ = make_leaf(
            self.pki.intermediate,
            self.pki.intermediate_key,
            cn=cn[0].value if cn else None,
            dns=tuple(san.get_values_for_type(x509.DNSName)),
            ips=tuple(str(i) for i in san.get_values_for_type(x509.IPAddress)),
            public_key=csr.public_key(),
        )
        with self._lock:
            self.issued.append(leaf)
        return PendingIssuance(order=order, location=order.url, extra={"leaf": leaf})

    def poll_for_certificate(self, pending):
        self._record("poll_for_certificate", pending.location)
        return pem(pending.extra["leaf"], self.pki.intermediate, self.pki.root)


class RecordingValidator(Validator):
    """http-01 validator recording phases and peak prepare concurrency."""

    challenge_type = ChallengeType.HTTP_01

    def __init__(self, parallelism=ParallelOperations.NONE, *, fail_prepare=(), fail_commit=False, delay=0.0):
        super().__init__()
        self.parallelism = parallelism
        self.fail_prepare = set(fail_prepare)
        self.fail_commit = fail_commit
        self.delay = delay
        self.prepared: list[str] = []
        self.commits = 0
        self.cleanups = 0
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def prepare_challenge(self, context, challenge):
        from acmerenew.core.errors import ValidationFailure

        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            if context.identifier.value in self.fail_prepare:
                msg = f"Cannot prepare {context.identifier.value}"
                raise ValidationFailure(msg)
            with self._lock:
                self.prepared.append(context.identifier.value)
        finally:
            with self._lock:
                self.active -= 1

    def commit(self):
        from acmerenew.core.errors import ValidationFailure

        with self._lock:
            self.commits += 1
        if self.fail_commit:
            msg = "Listener unavailable"
            raise ValidationFailure(msg)

    def cleanup(self):
        with self._lock:
            self.cleanups += 1


def make_renewal(renewal_id: str = "r1", **kwargs):
    from acmerenew.models.renewal import PluginOptions, Renewal

    defaults = {
        "target": PluginOptions("manual", {"common_name": "www.example.com"}),
        "validation": PluginOptions("recording"),
    }
    defaults.update(kwargs)
    return Renewal(id=renewal_id, **defaults)


def plugin_context(settings, renewal=None, cancel=None):
    from acmerenew.core.cancellation import NEVER_CANCELLED
    from acmerenew.core.context import PluginContext
    from acmerenew.core.secrets import SecretService

    return PluginContext(
        settings=settings,
        secrets=SecretService(),
        renewal=renewal or make_renewal(),
        cancel=cancel or NEVER_CANCELLED,
    )
