"""Assembled certificate as seen by stores and installers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmerenew.core.types import IdentifierType

if TYPE_CHECKING:
    from datetime import datetime

    from cryptography import x509
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from acmerenew.certificates.pfx import PfxBundle
    from acmerenew.core.identifiers import Identifier
    from acmerenew.core.types import ProtectionMode


@dataclass(frozen=True)
class CertificateInfo:
    """Leaf certificate, its chain and key, derived from a bundle.

    Built by :func:`acmerenew.certificates.chain.assemble`; never mutated.
    Use :meth:`convert` to obtain the same certificate under another
    protection mode.

    Attributes
    ----------
    certificate:
        The leaf certificate.
    friendly_name:
        Display label.
    private_key:
        Key of the leaf, absent for certificate-only bundles.
    chain:
        Issuer chain ordered root-ward, starting with the leaf's issuer.
    common_name:
        Subject common name, if present and short enough.
    san_identifiers:
        Subject alternative names in extension order.
    thumbprint:
        Uppercase hex SHA-1 of the leaf's DER encoding.
    protection_mode:
        How the key is protected in :attr:`bundle`.
    bundle:
        The bundle this info was assembled from.

    """

    certificate: x509.Certificate
    friendly_name: str
    private_key: PrivateKeyTypes | None
    chain: tuple[x509.Certificate, ...]
    common_name: Identifier | None
    san_identifiers: tuple[Identifier, ...]
    thumbprint: str
    protection_mode: ProtectionMode
    bundle: PfxBundle

    @property
    def expire_date(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def valid_from(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def dns_identifiers(self) -> tuple[Identifier, ...]:
        return tuple(i for i in self.san_identifiers if i.type == IdentifierType.DNS)

    def convert(self, mode: ProtectionMode, password: str | None = None) -> CertificateInfo:
        """Re-derive this certificate from a bundle re-encoded under *mode*."""
        from acmerenew.certificates.chain import assemble  # noqa: PLC0415

        return assemble(self.bundle.with_protection(mode, password))

    def __str__(self) -> str:
        return f"[{self.thumbprint}] {self.friendly_name}"
