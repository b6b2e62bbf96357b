"""Store and installation plugin contracts.

Stores persist a :class:`CertificateInfo` somewhere (files, a key
store); installation plugins then make consumers use it.  Both accept a
certificate and may reject its protection mode by raising
:class:`PlatformIncompatibility`, which the retry engine answers by
retrying once under the legacy mode.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from acmerenew.core.context import PluginContext
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreInfo:
    """Where a store put the certificate (passed on to installers)."""

    store_type: str
    path: str


def safe_file_name(value: str) -> str:
    """File name for an identifier (wildcard ``*`` becomes ``_``)."""
    return value.replace("*", "_").replace("/", "_").replace("\\", "_").replace(":", "_")


class Store(abc.ABC):
    """Base class for store plugins.

    Parameters
    ----------
    options:
        Plugin options from the renewal definition.
    context:
        Shared services (settings, secrets).

    """

    store_type: ClassVar[str]

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        self.options = options
        self.context = context

    def option(self, key: str, default: object = None) -> object:
        if self.options is None:
            return default
        value = self.options.get(key)
        return default if value is None else value

    @abc.abstractmethod
    def save(self, certificate: CertificateInfo) -> StoreInfo:
        """Persist *certificate*.

        Raises :class:`PlatformIncompatibility` when the certificate's
        protection mode cannot be stored.
        """

    @abc.abstractmethod
    def delete(self, certificate: CertificateInfo) -> None:
        """Remove *certificate*, located by thumbprint.

        Must not raise when nothing matches.
        """


class Installer(abc.ABC):
    """Base class for installation plugins."""

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        self.options = options
        self.context = context

    @abc.abstractmethod
    def install(
        self,
        stores: list[StoreInfo],
        new_certificate: CertificateInfo,
        old_certificate: CertificateInfo | None,
    ) -> None:
        """Install *new_certificate*, replacing *old_certificate* if any.

        Raises :class:`InstallationFailed` on failure.
        """
