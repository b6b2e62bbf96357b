"""PEM files store.

Writes four files named after the certificate's display name::

    <name>-crt.pem         leaf certificate
    <name>-chain.pem       leaf followed by the chain
    <name>-chain-only.pem  the chain without the leaf
    <name>-key.pem         private key (PKCS#8, encrypted when a password is set)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from acmerenew.certificates.chain import thumbprint
from acmerenew.core.errors import ConfigurationError
from acmerenew.store.base import Store, StoreInfo, safe_file_name

if TYPE_CHECKING:
    from acmerenew.core.context import PluginContext
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)

_SUFFIXES = ("-crt.pem", "-chain.pem", "-chain-only.pem", "-key.pem")


class PemFilesStore(Store):
    store_type = "pemfiles"

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        settings = context.settings.store.pem_files if context else None
        path = self.option("path", getattr(settings, "path", None))
        if not path:
            msg = "PEM files store requires a path (option 'path' or store.pem_files.path)"
            raise ConfigurationError(msg)
        self._path = Path(str(path))
        password = self.option("password", getattr(settings, "password", None))
        self._password = context.secrets.evaluate(password) if context and password else password

    @staticmethod
    def _base_name(certificate: CertificateInfo) -> str:
        name = certificate.common_name or (
            certificate.san_identifiers[0] if certificate.san_identifiers else None
        )
        return safe_file_name(name.value if name else certificate.thumbprint)

    def save(self, certificate: CertificateInfo) -> StoreInfo:
        self._path.mkdir(parents=True, exist_ok=True)
        base = self._base_name(certificate)
        leaf = certificate.certificate.public_bytes(serialization.Encoding.PEM)
        chain = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certificate.chain)

        (self._path / f"{base}-crt.pem").write_bytes(leaf)
        (self._path / f"{base}-chain.pem").write_bytes(leaf + chain)
        (self._path / f"{base}-chain-only.pem").write_bytes(chain)

        if certificate.private_key is not None:
            encryption: serialization.KeySerializationEncryption = (
                serialization.BestAvailableEncryption(self._password.encode("utf-8"))
                if self._password
                else serialization.NoEncryption()
            )
            key_pem = certificate.private_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                encryption,
            )
            (self._path / f"{base}-key.pem").write_bytes(key_pem)
        else:
            log.debug("No private key to export for %s", certificate.thumbprint)
        log.info("Exported PEM files %s-*.pem to %s", base, self._path)
        return StoreInfo(store_type=self.store_type, path=str(self._path))

    def delete(self, certificate: CertificateInfo) -> None:
        base = self._base_name(certificate)
        crt = self._path / f"{base}-crt.pem"
        try:
            current = x509.load_pem_x509_certificate(crt.read_bytes())
        except (OSError, ValueError):
            log.debug("No PEM files for %s to delete", certificate.thumbprint)
            return
        if thumbprint(current) != certificate.thumbprint:
            log.debug("PEM files for %s belong to another certificate, keeping them", base)
            return
        for suffix in _SUFFIXES:
            (self._path / f"{base}{suffix}").unlink(missing_ok=True)
        log.info("Deleted PEM files %s-*.pem from %s", base, self._path)
