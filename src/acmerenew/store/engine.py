"""Store/install retry engine.

Runs every configured store, then every installation plugin, for one
issued certificate.  Each step goes through :func:`save_with_retry`:
if the platform rejects the certificate's protection mode the
certificate is re-derived under the legacy mode and the step is retried
exactly once.  Finally, unless ``store.keep_existing`` is set, the
previous certificate is removed from every store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from acmerenew.core.errors import PlatformIncompatibility
from acmerenew.core.types import ProtectionMode

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.store.base import Installer, Store, StoreInfo

log = logging.getLogger(__name__)

T = TypeVar("T")


def save_with_retry(
    certificate: CertificateInfo,
    operation: Callable[[CertificateInfo], T],
) -> tuple[T, CertificateInfo]:
    """Run *operation*, retrying once under the legacy protection mode.

    Only :class:`PlatformIncompatibility` triggers the retry; any other
    exception propagates unchanged, as does a failure of the retry.

    Returns
    -------
    The operation's result and the certificate that was used.

    """
    try:
        return operation(certificate), certificate
    except PlatformIncompatibility as exc:
        if certificate.protection_mode == ProtectionMode.LEGACY:
            raise
        log.warning(
            "Unable to save using protection mode %s (%s), retrying with %s...",
            certificate.protection_mode,
            exc.detail,
            ProtectionMode.LEGACY,
        )
        legacy = certificate.convert(ProtectionMode.LEGACY)
        return operation(legacy), legacy


@dataclass
class InstallReport:
    """What the engine did for one certificate."""

    stores: list[StoreInfo] = field(default_factory=list)
    stored_certificates: list[CertificateInfo] = field(default_factory=list)
    installed: int = 0
    deleted_previous: bool = False


class StoreInstallEngine:
    """Applies stores and installers to an issued certificate.

    Parameters
    ----------
    stores:
        Store plugins, in configured order.
    installers:
        Installation plugins, run after every store succeeded.
    keep_existing:
        Keep the previous certificate in the stores.

    """

    def __init__(
        self,
        stores: list[Store],
        installers: list[Installer],
        *,
        keep_existing: bool = False,
    ) -> None:
        self._stores = stores
        self._installers = installers
        self._keep_existing = keep_existing

    def run(
        self,
        certificate: CertificateInfo,
        previous: CertificateInfo | None = None,
    ) -> InstallReport:
        """Store and install *certificate*.

        Store and installation failures propagate; cleanup of the
        previous certificate is best-effort.
        """
        report = InstallReport()
        for store in self._stores:
            info, used = save_with_retry(certificate, store.save)
            log.info("Stored %s in %s (%s)", certificate.thumbprint, info.store_type, info.path)
            report.stores.append(info)
            report.stored_certificates.append(used)

        for installer in self._installers:
            save_with_retry(
                certificate,
                lambda cert, inst=installer: inst.install(report.stores, cert, previous),
            )
            report.installed += 1

        if (
            previous is not None
            and not self._keep_existing
            and previous.thumbprint != certificate.thumbprint
        ):
            for store in self._stores:
                try:
                    store.delete(previous)
                except Exception as exc:  # noqa: BLE001
                    log.warning(
                        "Unable to remove previous certificate %s from %s: %s",
                        previous.thumbprint,
                        store.store_type,
                        exc,
                    )
            report.deleted_previous = True
        return report
