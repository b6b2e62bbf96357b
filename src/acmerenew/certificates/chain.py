"""Certificate chain assembler.

Turns a flat bundle (certificates in arbitrary order plus an optional
private key) into a :class:`CertificateInfo`:

1. **Leaf** -- the first certificate whose subject is not the issuer of
   any *other* member.  When every certificate issues another one (e.g.
   two cross-signed CAs) the first certificate is used.
2. **Thumbprint** -- uppercase hex SHA-1 over the leaf's DER encoding.
   Identity only, never used for a trust decision.
3. **Identifiers** -- subject CN plus the SAN entries (DNS, IP, other).
4. **Chain** -- starting from the leaf, repeatedly pick the remaining
   certificate whose subject equals the tail's issuer.  A missing link
   ends the chain; that is not an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from acmerenew.core.errors import EmptyBundle
from acmerenew.core.identifiers import (
    MAX_COMMON_NAME,
    Identifier,
    UnknownIdentifier,
    identifier_from_san,
    parse_identifier,
)
from acmerenew.models.certificate import CertificateInfo

if TYPE_CHECKING:
    from collections.abc import Sequence

    from acmerenew.certificates.pfx import PfxBundle

log = logging.getLogger(__name__)


def thumbprint(cert: x509.Certificate) -> str:
    """Uppercase hex SHA-1 digest of *cert*'s DER encoding (40 chars)."""
    return cert.fingerprint(hashes.SHA1()).hex().upper()  # noqa: S303


def select_leaf(certs: Sequence[x509.Certificate]) -> int:
    """Return the index of the leaf certificate in *certs*.

    Raises
    ------
    EmptyBundle
        If *certs* is empty.

    """
    if not certs:
        raise EmptyBundle
    # A self-signed certificate issues itself and never qualifies.
    for idx, cert in enumerate(certs):
        if not any(other.issuer == cert.subject for other in certs):
            return idx
    log.debug("No certificate qualifies as leaf, using the first of %d", len(certs))
    return 0


def build_chain(
    leaf: x509.Certificate,
    others: Sequence[x509.Certificate],
) -> tuple[x509.Certificate, ...]:
    """Order *others* root-ward from *leaf*, stopping at the first gap."""
    remaining = list(others)
    chain: list[x509.Certificate] = []
    tail = leaf
    while remaining:
        idx = next(
            (i for i, c in enumerate(remaining) if c.subject == tail.issuer),
            None,
        )
        if idx is None:
            break
        tail = remaining.pop(idx)
        chain.append(tail)
    if remaining:
        log.debug("%d certificate(s) not part of the issuer chain", len(remaining))
    return tuple(chain)


def common_name(cert: x509.Certificate) -> Identifier | None:
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return None
    value = attrs[0].value
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not value or len(value) > MAX_COMMON_NAME:
        return None
    try:
        return parse_identifier(value)
    except ValueError:
        log.debug("Common name '%s' is not a valid identifier", value)
        return None


def _general_name_text(name: x509.GeneralName) -> str:
    value = name.value
    if isinstance(value, x509.Name):
        return value.rfc4514_string()
    if isinstance(value, x509.ObjectIdentifier):
        return value.dotted_string
    if isinstance(name, x509.OtherName):
        return f"{name.type_id.dotted_string}:#{name.value.hex()}"
    return str(value)


def san_identifiers(cert: x509.Certificate) -> tuple[Identifier, ...]:
    """Classify every SAN entry of *cert*."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return ()
    result: list[Identifier] = []
    for name in ext.value:
        if isinstance(name, x509.DNSName):
            try:
                result.append(identifier_from_san("dns", name.value))
            except ValueError:
                result.append(UnknownIdentifier(name.value))
        elif isinstance(name, x509.IPAddress):
            packed = getattr(name.value, "packed", None)
            if packed is not None:
                result.append(identifier_from_san("ip", packed))
            else:
                result.append(UnknownIdentifier(str(name.value)))
        else:
            result.append(UnknownIdentifier(_general_name_text(name)))
    return tuple(result)


def assemble(bundle: PfxBundle) -> CertificateInfo:
    """Build a :class:`CertificateInfo` from *bundle*.

    Pure transformation.  Fails with :class:`EmptyBundle` when the
    bundle holds no certificates.
    """
    certs = bundle.certificates
    leaf_idx = select_leaf(certs)
    leaf = certs[leaf_idx]
    others = [c for i, c in enumerate(certs) if i != leaf_idx]
    thumb = thumbprint(leaf)
    cn = common_name(leaf)
    sans = san_identifiers(leaf)
    friendly = bundle.friendly_name or (cn.value if cn else None) or thumb
    return CertificateInfo(
        certificate=leaf,
        friendly_name=friendly,
        private_key=bundle.private_key,
        chain=build_chain(leaf, others),
        common_name=cn,
        san_identifiers=sans,
        thumbprint=thumb,
        protection_mode=bundle.protection_mode,
        bundle=bundle,
    )
