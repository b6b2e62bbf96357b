"""PFX file store.

Writes one PKCS#12 file per DNS identifier of the certificate
(``<identifier>.pfx``, wildcard ``*`` written as ``_``), the layout
expected by servers that pick a certificate per host name from a
shared directory.  Deletion only removes files whose thumbprint matches.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from acmerenew.certificates.chain import assemble
from acmerenew.certificates.pfx import PfxBundle
from acmerenew.core.errors import ConfigurationError
from acmerenew.core.types import ProtectionMode
from acmerenew.store.base import Store, StoreInfo, safe_file_name

if TYPE_CHECKING:
    from acmerenew.core.context import PluginContext
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


class PfxFileStore(Store):
    store_type = "pfxfile"

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        settings = context.settings.store.pfx_file if context else None
        path = self.option("path", getattr(settings, "path", None))
        if not path:
            msg = "PFX file store requires a path (option 'path' or store.pfx_file.path)"
            raise ConfigurationError(msg)
        self._path = Path(str(path))
        password = self.option("password", getattr(settings, "password", None))
        self._password = context.secrets.evaluate(password) if context and password else password
        mode = self.option("protection_mode", getattr(settings, "protection_mode", None))
        self._mode = ProtectionMode(mode) if mode else None

    def _files(self, certificate: CertificateInfo) -> list[Path]:
        return [
            self._path / f"{safe_file_name(i.value)}.pfx" for i in certificate.dns_identifiers
        ]

    def save(self, certificate: CertificateInfo) -> StoreInfo:
        files = self._files(certificate)
        if not files:
            log.warning("Certificate %s has no DNS names, nothing to store", certificate.thumbprint)
            return StoreInfo(store_type=self.store_type, path=str(self._path))
        mode = self._mode or certificate.protection_mode
        bundle = PfxBundle(
            certificates=(certificate.certificate, *certificate.chain),
            private_key=certificate.private_key,
            protection_mode=mode,
            password=self._password,
            friendly_name=certificate.friendly_name,
        )
        data = bundle.to_bytes()
        self._path.mkdir(parents=True, exist_ok=True)
        for target in files:
            log.info("Saving certificate to %s", target)
            target.write_bytes(data)
        return StoreInfo(store_type=self.store_type, path=str(self._path))

    def _read(self, path: Path) -> CertificateInfo | None:
        data = path.read_bytes()
        for password in dict.fromkeys((self._password, "")):
            try:
                return assemble(PfxBundle.from_bytes(data, password))
            except ValueError:
                continue
        log.warning("Unable to read %s with the configured or an empty password", path)
        return None

    def delete(self, certificate: CertificateInfo) -> None:
        for target in self._files(certificate):
            if not target.exists():
                continue
            try:
                stored = self._read(target)
            except OSError as exc:
                log.warning("Unable to read %s: %s", target, exc)
                continue
            if stored is not None and stored.thumbprint == certificate.thumbprint:
                log.info("Removing certificate from %s", target)
                target.unlink(missing_ok=True)
