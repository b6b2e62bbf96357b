"""Directory backed platform key store.

Layout under the configured path::

    my/<thumbprint>.crt + my/<thumbprint>.key   converted (RSA) entries
    my/<thumbprint>.pfx                         regular entries
    ca/<thumbprint>.crt                         intermediate certificates

Saving first tries to convert the key into the platform's native format
(PKCS#1 PEM); keys that cannot be converted, or whose conversion fails,
are imported as a regular PKCS#12 entry instead.  Bundles whose
protection mode is not in ``accepted_modes`` are rejected with
:class:`PlatformIncompatibility` so the retry engine can offer the
legacy form.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from acmerenew.certificates.chain import thumbprint
from acmerenew.core.errors import ConfigurationError, PlatformIncompatibility
from acmerenew.store.base import Store, StoreInfo

if TYPE_CHECKING:
    from cryptography import x509

    from acmerenew.core.context import PluginContext
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


class KeyStore(Store):
    store_type = "keystore"

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        settings = context.settings.store.keystore if context else None
        path = self.option("path", getattr(settings, "path", None))
        if not path:
            msg = "Key store requires a path (option 'path' or store.keystore.path)"
            raise ConfigurationError(msg)
        self._root = Path(str(path))
        self._accepted = tuple(getattr(settings, "accepted_modes", ()) or ())
        self._convert = bool(self.option("convert_legacy_key", getattr(settings, "convert_legacy_key", True)))
        self._install_chain = bool(self.option("install_chain", getattr(settings, "install_chain", True)))

    @property
    def personal(self) -> Path:
        return self._root / "my"

    @property
    def intermediate(self) -> Path:
        return self._root / "ca"

    # -- save ---------------------------------------------------------------

    def save(self, certificate: CertificateInfo) -> StoreInfo:
        if self._accepted and certificate.protection_mode not in self._accepted:
            msg = (
                f"Key store does not accept protection mode {certificate.protection_mode} "
                f"(accepted: {', '.join(str(m) for m in self._accepted)})"
            )
            raise PlatformIncompatibility(msg)

        self.personal.mkdir(parents=True, exist_ok=True)
        if not (self._convert and self._convert_and_save(certificate)):
            self._regular_save(certificate)

        if self._install_chain:
            self._save_chain(certificate.chain)
        return StoreInfo(store_type=self.store_type, path=str(self.personal))

    def _convert_and_save(self, certificate: CertificateInfo) -> bool:
        key = certificate.private_key
        if not isinstance(key, rsa.RSAPrivateKey):
            log.debug("Key of %s cannot be converted, using regular import", certificate.thumbprint)
            return False
        base = self.personal / certificate.thumbprint
        written: list[Path] = []
        try:
            for path, data in (
                (
                    base.with_suffix(".crt"),
                    certificate.certificate.public_bytes(serialization.Encoding.PEM),
                ),
                (
                    base.with_suffix(".key"),
                    key.private_bytes(
                        serialization.Encoding.PEM,
                        serialization.PrivateFormat.TraditionalOpenSSL,
                        serialization.NoEncryption(),
                    ),
                ),
            ):
                path.write_bytes(data)
                written.append(path)
        except (OSError, ValueError, TypeError) as exc:
            log.warning(
                "Converting key of %s failed, using regular import: %s",
                certificate.thumbprint,
                exc,
            )
            for path in written:
                path.unlink(missing_ok=True)
            return False
        log.info("Imported %s into key store %s (converted key)", certificate.thumbprint, self.personal)
        return True

    def _regular_save(self, certificate: CertificateInfo) -> None:
        data = certificate.bundle.to_bytes()
        (self.personal / f"{certificate.thumbprint}.pfx").write_bytes(data)
        log.info("Imported %s into key store %s", certificate.thumbprint, self.personal)

    def _save_chain(self, chain: tuple[x509.Certificate, ...]) -> None:
        for cert in chain:
            if cert.subject == cert.issuer:
                log.debug("Skipping self-signed root %s", cert.subject.rfc4514_string())
                continue
            try:
                self.intermediate.mkdir(parents=True, exist_ok=True)
                target = self.intermediate / f"{thumbprint(cert)}.crt"
                if not target.exists():
                    target.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
                    log.debug("Added intermediate %s", cert.subject.rfc4514_string())
            except OSError as exc:
                log.warning(
                    "Unable to add intermediate %s: %s",
                    cert.subject.rfc4514_string(),
                    exc,
                )

    # -- delete -------------------------------------------------------------

    def find(self, thumb: str) -> list[Path]:
        """Files holding the entry with thumbprint *thumb*."""
        return [
            p
            for p in (self.personal / f"{thumb}{s}" for s in (".crt", ".key", ".pfx"))
            if p.exists()
        ]

    def delete(self, certificate: CertificateInfo) -> None:
        files = self.find(certificate.thumbprint)
        if not files:
            log.debug("Certificate %s not found in key store", certificate.thumbprint)
            return
        for path in files:
            path.unlink(missing_ok=True)
        log.info("Removed %s from key store %s", certificate.thumbprint, self.personal)
