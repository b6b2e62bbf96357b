"""PKCS#12 (PFX) bundle codec.

A :class:`PfxBundle` is the in-memory form of a key/certificate
collection: a list of certificates in stable input order, at most one
private key and the protection mode used when the bundle is written
out.  Conversion between protection modes re-encodes the same logical
content; certificates (and so thumbprints) never change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from acmerenew.core.errors import EmptyBundle, PlatformIncompatibility
from acmerenew.core.types import ProtectionMode

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

log = logging.getLogger(__name__)

_KDF_ROUNDS = 50000


def _encryption(
    mode: ProtectionMode,
    password: str | None,
) -> serialization.KeySerializationEncryption:
    """Map a protection mode and password to a PKCS#12 encryption."""
    if not password:
        return serialization.NoEncryption()
    secret = password.encode("utf-8")
    if mode == ProtectionMode.LEGACY:
        return (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(_KDF_ROUNDS)
            .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
            .hmac_hash(hashes.SHA1())  # noqa: S303
            .build(secret)
        )
    if mode == ProtectionMode.AES256:
        return (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(_KDF_ROUNDS)
            .key_cert_algorithm(pkcs12.PBES.PBESv2SHA256AndAES256CBC)
            .hmac_hash(hashes.SHA256())
            .build(secret)
        )
    return serialization.BestAvailableEncryption(secret)


def _public_bytes(cert_or_key) -> bytes:
    return cert_or_key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@dataclass(frozen=True)
class PfxBundle:
    """Key/certificate collection plus its at-rest protection.

    Attributes
    ----------
    certificates:
        Certificates in stable input order.
    private_key:
        The bundle's private key, if any.
    protection_mode:
        Encryption scheme used by :meth:`to_bytes`.
    password:
        Password used by :meth:`to_bytes` (``None`` or empty disables
        encryption).
    friendly_name:
        PKCS#12 friendly name attached to the key's certificate.

    """

    certificates: tuple[x509.Certificate, ...]
    private_key: PrivateKeyTypes | None = None
    protection_mode: ProtectionMode = ProtectionMode.DEFAULT
    password: str | None = None
    friendly_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "certificates", tuple(self.certificates))

    # -- constructors -------------------------------------------------------

    @classmethod
    def from_pem(
        cls,
        data: bytes | str,
        private_key: PrivateKeyTypes | None = None,
        *,
        protection_mode: ProtectionMode = ProtectionMode.DEFAULT,
        password: str | None = None,
        friendly_name: str | None = None,
    ) -> PfxBundle:
        """Build a bundle from a PEM chain as returned by the authority."""
        raw = data.encode("ascii") if isinstance(data, str) else data
        try:
            certs = x509.load_pem_x509_certificates(raw)
        except ValueError as exc:
            if b"-----BEGIN" not in raw:
                raise EmptyBundle from exc
            raise
        return cls(
            certificates=tuple(certs),
            private_key=private_key,
            protection_mode=protection_mode,
            password=password,
            friendly_name=friendly_name,
        )

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        password: str | None = None,
        protection_mode: ProtectionMode = ProtectionMode.DEFAULT,
    ) -> PfxBundle:
        """Decode a PKCS#12 blob.

        Raises
        ------
        ValueError
            If the blob is malformed or the password is wrong.

        """
        loaded = pkcs12.load_pkcs12(data, password.encode("utf-8") if password else None)
        certs: list[x509.Certificate] = []
        friendly_name = None
        if loaded.cert is not None:
            certs.append(loaded.cert.certificate)
            if loaded.cert.friendly_name:
                friendly_name = loaded.cert.friendly_name.decode("utf-8", errors="replace")
        certs.extend(c.certificate for c in loaded.additional_certs)
        return cls(
            certificates=tuple(certs),
            private_key=loaded.key,
            protection_mode=protection_mode,
            password=password,
            friendly_name=friendly_name,
        )

    # -- encoding -----------------------------------------------------------

    def key_certificate(self) -> x509.Certificate | None:
        """The certificate matching the private key, if any."""
        if self.private_key is None:
            return None
        key_pub = _public_bytes(self.private_key)
        for cert in self.certificates:
            if _public_bytes(cert) == key_pub:
                return cert
        return None

    def to_bytes(self) -> bytes:
        """Encode as PKCS#12 using the bundle's protection mode.

        Raises
        ------
        EmptyBundle
            If there is nothing to encode.
        PlatformIncompatibility
            If the key cannot be encoded under the protection mode.

        """
        if not self.certificates:
            raise EmptyBundle
        main = self.key_certificate()
        if self.private_key is not None and main is None:
            log.warning("Private key does not match any certificate in the bundle, dropping it")
        others = [c for c in self.certificates if c is not main]
        name = self.friendly_name.encode("utf-8") if self.friendly_name else None
        try:
            return pkcs12.serialize_key_and_certificates(
                name,
                self.private_key if main is not None else None,
                main,
                others or None,
                _encryption(self.protection_mode, self.password),
            )
        except (TypeError, ValueError) as exc:
            msg = f"Unable to encode bundle with protection mode '{self.protection_mode}': {exc}"
            raise PlatformIncompatibility(msg) from exc

    def with_protection(
        self,
        mode: ProtectionMode,
        password: str | None = None,
    ) -> PfxBundle:
        """Same logical bundle re-encoded under *mode*.

        The content is round-tripped through PKCS#12 so an incompatible
        key surfaces here rather than at the store.
        """
        target = replace(
            self,
            protection_mode=mode,
            password=self.password if password is None else password,
        )
        return PfxBundle.from_bytes(target.to_bytes(), target.password, mode)
