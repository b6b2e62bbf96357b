"""Key pair and certificate signing request handling.

For each order the processor either generates (or reuses) a key and
builds a CSR covering every identifier of the order, or, when the
target carries a user-supplied CSR, checks that the CSR covers the
order's identifiers and passes it through unchanged.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acmerenew.core.errors import CsrIdentifierMismatch, UnsupportedKeyType
from acmerenew.core.identifiers import (
    MAX_COMMON_NAME,
    DnsIdentifier,
    Identifier,
    IpIdentifier,
    UnknownIdentifier,
)
from acmerenew.core.types import KeyType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from acmerenew.config.settings import CsrSettings

log = logging.getLogger(__name__)

_MIN_RSA_KEY_BITS = 2048

_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "secp256r1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}


@dataclass(frozen=True)
class CsrResult:
    """DER encoded CSR plus the key it was signed with.

    ``private_key`` is ``None`` for user-supplied CSRs.
    """

    csr_der: bytes
    private_key: PrivateKeyTypes | None


class CsrProcessor:
    """Generates keys and CSRs according to the ``csr`` settings.

    Parameters
    ----------
    settings:
        The ``csr`` section from :class:`RenewSettings`.

    """

    def __init__(self, settings: CsrSettings) -> None:
        self._settings = settings

    # -- keys ---------------------------------------------------------------

    def generate_key(self) -> PrivateKeyTypes:
        """Generate a new key pair of the configured type.

        Raises
        ------
        UnsupportedKeyType
            For unknown key types, curves or a too small RSA modulus.

        """
        key_type = str(self._settings.key_type).lower()
        if key_type == KeyType.RSA:
            bits = self._settings.rsa_key_bits
            if bits < _MIN_RSA_KEY_BITS:
                msg = f"RSA key size {bits} is below the minimum of {_MIN_RSA_KEY_BITS}"
                raise UnsupportedKeyType(msg)
            log.debug("Generating RSA key (%d bits)", bits)
            return rsa.generate_private_key(public_exponent=65537, key_size=bits)
        if key_type == KeyType.EC:
            curve = _CURVES.get(self._settings.ec_curve.lower())
            if curve is None:
                msg = (
                    f"Unsupported elliptic curve '{self._settings.ec_curve}'. "
                    f"Supported: {sorted(_CURVES)}"
                )
                raise UnsupportedKeyType(msg)
            log.debug("Generating EC key (%s)", self._settings.ec_curve)
            return ec.generate_private_key(curve())
        msg = f"Unsupported key type '{self._settings.key_type}'"
        raise UnsupportedKeyType(msg)

    @staticmethod
    def check_key(key: PrivateKeyTypes) -> None:
        if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            msg = f"Unsupported private key type {type(key).__name__}"
            raise UnsupportedKeyType(msg)

    # -- CSR ----------------------------------------------------------------

    def process(
        self,
        identifiers: Sequence[Identifier],
        common_name: Identifier | None = None,
        *,
        user_csr: bytes | None = None,
        reuse_key: PrivateKeyTypes | None = None,
    ) -> CsrResult:
        """Produce the CSR for one order.

        Parameters
        ----------
        identifiers:
            Identifiers the order covers.
        common_name:
            Preferred subject CN; ignored when longer than the limit or
            not part of *identifiers*.
        user_csr:
            PEM or DER CSR supplied by the user.  Bypasses generation.
        reuse_key:
            Existing key to sign with instead of generating a new one.

        """
        if user_csr is not None:
            csr = load_csr(user_csr)
            validate_user_csr(csr, identifiers)
            return CsrResult(csr_der=csr.public_bytes(serialization.Encoding.DER), private_key=None)

        if reuse_key is not None:
            self.check_key(reuse_key)
            key = reuse_key
            log.debug("Reusing existing private key")
        else:
            key = self.generate_key()
        csr = build_csr(key, identifiers, common_name)
        return CsrResult(csr_der=csr.public_bytes(serialization.Encoding.DER), private_key=key)


def _general_name(identifier: Identifier) -> x509.GeneralName:
    if isinstance(identifier, IpIdentifier):
        return x509.IPAddress(identifier.address)
    if isinstance(identifier, DnsIdentifier):
        return x509.DNSName(identifier.value)
    msg = f"Identifier '{identifier.value}' of unknown type cannot be requested"
    raise CsrIdentifierMismatch(msg)


def build_csr(
    key: PrivateKeyTypes,
    identifiers: Sequence[Identifier],
    common_name: Identifier | None = None,
) -> x509.CertificateSigningRequest:
    """Build and sign a CSR with a SAN entry per identifier.

    The subject CN is set only when a suitable name exists: the
    requested *common_name* if it is among *identifiers*, otherwise the
    first identifier, in both cases only when at most 64 characters.
    """
    unique = list(dict.fromkeys(identifiers))
    if not unique:
        msg = "Cannot build a CSR without identifiers"
        raise CsrIdentifierMismatch(msg)
    cn = common_name if common_name in unique else unique[0]
    subject: list[x509.NameAttribute] = []
    if len(cn.value) <= MAX_COMMON_NAME:
        subject.append(x509.NameAttribute(NameOID.COMMON_NAME, cn.value))
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name(subject))
        .add_extension(
            x509.SubjectAlternativeName([_general_name(i) for i in unique]),
            critical=False,
        )
    )
    return builder.sign(key, hashes.SHA256())


def load_csr(data: bytes) -> x509.CertificateSigningRequest:
    """Load a CSR from PEM or DER bytes."""
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_csr(data)
        return x509.load_der_x509_csr(data)
    except ValueError as exc:
        msg = f"Unable to parse user-supplied CSR: {exc}"
        raise CsrIdentifierMismatch(msg) from exc


def csr_identifiers(csr: x509.CertificateSigningRequest) -> set[Identifier]:
    """Identifiers encoded in *csr* (SAN entries plus the subject CN)."""
    found: set[Identifier] = set()
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None
    if san is not None:
        for name in san.get_values_for_type(x509.DNSName):
            found.add(DnsIdentifier(name))
        for ip in san.get_values_for_type(x509.IPAddress):
            found.add(IpIdentifier(str(ip)))
    for attr in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
        value = attr.value if isinstance(attr.value, str) else attr.value.decode()
        try:
            ipaddress.ip_address(value)
            found.add(IpIdentifier(value))
        except ValueError:
            try:
                found.add(DnsIdentifier(value))
            except ValueError:
                found.add(UnknownIdentifier(value))
    return found


def validate_user_csr(
    csr: x509.CertificateSigningRequest,
    identifiers: Sequence[Identifier],
) -> None:
    """Check that every declared identifier is encoded in *csr*.

    Raises
    ------
    CsrIdentifierMismatch
        If the signature is invalid or an identifier is missing.

    """
    if not csr.is_signature_valid:
        msg = "User-supplied CSR has an invalid signature"
        raise CsrIdentifierMismatch(msg)
    encoded = csr_identifiers(csr)
    missing = [i.value for i in identifiers if i not in encoded]
    if missing:
        msg = f"User-supplied CSR does not cover: {', '.join(missing)}"
        raise CsrIdentifierMismatch(msg)
