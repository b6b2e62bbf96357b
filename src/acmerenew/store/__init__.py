"""Store and installation plugins plus the retry engine."""

from acmerenew.store.base import Installer, Store, StoreInfo
from acmerenew.store.engine import InstallReport, StoreInstallEngine, save_with_retry

__all__ = [
    "InstallReport",
    "Installer",
    "Store",
    "StoreInfo",
    "StoreInstallEngine",
    "save_with_retry",
]
