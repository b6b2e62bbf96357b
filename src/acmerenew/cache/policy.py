"""Certificate cache and reuse policy.

Issued bundles are kept on disk as
``<cache.path>/<renewal id>-<order name>-<thumbprint>.pfx``, protected
with the renewal password (falling back to ``cache.password``).  Before
contacting the authority the executor asks :meth:`CertificateCache.lookup`
for a bundle that covers the same identifiers and was issued within the
reuse window; a hit short-circuits ordering entirely.

Flags
-----
``force``
    Ignore the cache for this run (the cache is left untouched).
``no_cache``
    Ignore the cache and delete every cached bundle of the renewal.
``cache.reuse_days = 0``
    Disables reuse entirely.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from acmerenew.certificates.chain import assemble
from acmerenew.certificates.pfx import PfxBundle
from acmerenew.store.base import safe_file_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from acmerenew.config.settings import CacheSettings
    from acmerenew.core.identifiers import Identifier
    from acmerenew.core.secrets import SecretService
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.renewal import Renewal

log = logging.getLogger(__name__)


class CertificateCache:
    """On-disk cache of issued certificate bundles.

    Parameters
    ----------
    settings:
        The ``cache`` section of the settings.
    secrets:
        Resolves the password references.

    """

    def __init__(self, settings: CacheSettings, secrets: SecretService) -> None:
        self._settings = settings
        self._secrets = secrets
        self._path = Path(settings.path)

    @property
    def path(self) -> Path:
        return self._path

    def password(self, renewal: Renewal) -> str | None:
        """Plaintext password protecting the renewal's cached bundles."""
        return self._secrets.evaluate(renewal.password or self._settings.password)

    # -- file naming --------------------------------------------------------

    @staticmethod
    def _prefix(renewal: Renewal, order_name: str | None = None) -> str:
        if order_name is None:
            return f"{safe_file_name(renewal.id)}-"
        return f"{safe_file_name(renewal.id)}-{safe_file_name(order_name)}-"

    def file_name(self, renewal: Renewal, order_name: str, thumbprint: str) -> Path:
        return self._path / f"{self._prefix(renewal, order_name)}{thumbprint}.pfx"

    def _files(self, renewal: Renewal, order_name: str | None = None) -> list[Path]:
        if not self._path.is_dir():
            return []
        files = self._path.glob(f"{self._prefix(renewal, order_name)}*.pfx")
        return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)

    def _read(self, path: Path, password: str | None) -> CertificateInfo | None:
        try:
            data = path.read_bytes()
            bundle = PfxBundle.from_bytes(data, password, self._settings.protection_mode)
            return assemble(bundle)
        except (OSError, ValueError) as exc:
            log.warning("Unable to read cached certificate %s: %s", path.name, exc)
            return None

    # -- operations ---------------------------------------------------------

    def lookup(
        self,
        renewal: Renewal,
        order_name: str,
        identifiers: Iterable[Identifier],
        *,
        force: bool = False,
        no_cache: bool = False,
    ) -> CertificateInfo | None:
        """Cached certificate usable for this order, or ``None``."""
        if no_cache:
            self.invalidate(renewal)
            return None
        if self._settings.reuse_days <= 0:
            return None
        if force:
            log.debug("Cache ignored for %s (forced renewal)", renewal.label)
            return None

        wanted = set(identifiers)
        now = datetime.now(UTC)
        window = timedelta(days=self._settings.reuse_days)
        password = self.password(renewal)
        for path in self._files(renewal, order_name):
            cached = self._read(path, password)
            if cached is None:
                continue
            if set(cached.san_identifiers) != wanted:
                log.debug("Cached %s covers different identifiers", cached.thumbprint)
                continue
            if cached.expire_date <= now:
                log.debug("Cached %s has expired", cached.thumbprint)
                continue
            if now - cached.valid_from > window:
                log.debug("Cached %s is older than %d day(s)", cached.thumbprint, window.days)
                continue
            log.info("Using cached certificate %s for order %s", cached.thumbprint, order_name)
            return cached
        return None

    def store(self, renewal: Renewal, order_name: str, certificate: CertificateInfo) -> Path:
        """Write *certificate* to the cache under the renewal's password."""
        self._path.mkdir(parents=True, exist_ok=True)
        bundle = replace(
            certificate.bundle,
            password=self.password(renewal),
            protection_mode=self._settings.protection_mode,
        )
        target = self.file_name(renewal, order_name, certificate.thumbprint)
        target.write_bytes(bundle.to_bytes())
        log.debug("Cached certificate %s as %s", certificate.thumbprint, target.name)
        return target

    def find_by_thumbprint(self, renewal: Renewal, thumbprint: str) -> CertificateInfo | None:
        """Previously issued certificate of *renewal* with *thumbprint*."""
        if not self._path.is_dir():
            return None
        password = self.password(renewal)
        for path in self._path.glob(f"{self._prefix(renewal)}*-{thumbprint}.pfx"):
            cached = self._read(path, password)
            if cached is not None and cached.thumbprint == thumbprint:
                return cached
        return None

    def private_key(self, renewal: Renewal, order_name: str) -> PrivateKeyTypes | None:
        """Key of the newest cached certificate for the order, if any."""
        password = self.password(renewal)
        for path in self._files(renewal, order_name):
            cached = self._read(path, password)
            if cached is not None and cached.private_key is not None:
                return cached.private_key
        return None

    def invalidate(self, renewal: Renewal) -> int:
        """Delete every cached bundle of *renewal*; returns the count."""
        count = 0
        for path in self._files(renewal):
            path.unlink(missing_ok=True)
            count += 1
        if count:
            log.info("Removed %d cached certificate(s) of %s", count, renewal.label)
        return count
