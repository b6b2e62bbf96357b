"""Tests for acmerenew.store.engine."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from acmerenew.core.errors import InstallationFailed, PlatformIncompatibility
from acmerenew.core.types import ProtectionMode
from acmerenew.store.base import StoreInfo
from acmerenew.store.engine import StoreInstallEngine, save_with_retry


def _store(name="mock", **kwargs):
    store = MagicMock(**kwargs)
    store.store_type = name
    store.save.return_value = StoreInfo(store_type=name, path=f"/stores/{name}")
    return store


class TestSaveWithRetry:
    def test_success_first_time(self, pki):
        cert = pki.info()
        op = MagicMock(return_value="ok")
        assert save_with_retry(cert, op) == ("ok", cert)
        op.assert_called_once_with(cert)

    def test_legacy_retry(self, pki):
        cert = pki.info(password="pw", protection_mode=ProtectionMode.AES256)
        op = MagicMock(side_effect=[PlatformIncompatibility("AES not supported"), "ok"])
        result, used = save_with_retry(cert, op)
        assert result == "ok"
        assert used.protection_mode == ProtectionMode.LEGACY
        assert used.thumbprint == cert.thumbprint
        assert op.call_count == 2

    def test_retry_failure_propagates(self, pki):
        cert = pki.info()
        op = MagicMock(side_effect=PlatformIncompatibility("nope"))
        with pytest.raises(PlatformIncompatibility):
            save_with_retry(cert, op)
        assert op.call_count == 2

    def test_legacy_is_not_retried(self, pki):
        cert = pki.info(protection_mode=ProtectionMode.LEGACY)
        op = MagicMock(side_effect=PlatformIncompatibility("nope"))
        with pytest.raises(PlatformIncompatibility):
            save_with_retry(cert, op)
        op.assert_called_once()

    def test_other_errors_are_not_retried(self, pki):
        op = MagicMock(side_effect=OSError("disk full"))
        with pytest.raises(OSError, match="disk full"):
            save_with_retry(pki.info(), op)
        op.assert_called_once()


class TestStoreInstallEngine:
    def test_stores_then_installers(self, pki):
        cert, previous = pki.info(), pki.info()
        first, second = _store("one"), _store("two")
        installer = MagicMock()
        report = StoreInstallEngine([first, second], [installer]).run(cert, previous)
        assert [s.store_type for s in report.stores] == ["one", "two"]
        installer.install.assert_called_once_with(report.stores, cert, previous)
        first.delete.assert_called_once_with(previous)
        second.delete.assert_called_once_with(previous)
        assert report.deleted_previous
        assert report.installed == 1

    def test_keep_existing(self, pki):
        store = _store()
        report = StoreInstallEngine([store], [], keep_existing=True).run(pki.info(), pki.info())
        store.delete.assert_not_called()
        assert not report.deleted_previous

    def test_same_thumbprint_is_not_deleted(self, pki):
        cert = pki.info()
        store = _store()
        StoreInstallEngine([store], []).run(cert, cert)
        store.delete.assert_not_called()

    def test_previous_cleanup_is_best_effort(self, pki):
        store = _store()
        store.delete.side_effect = OSError("busy")
        report = StoreInstallEngine([store], []).run(pki.info(), pki.info())
        assert report.deleted_previous

    def test_store_retry_reports_legacy_certificate(self, pki):
        store = _store()
        store.save.side_effect = [
            PlatformIncompatibility("unsupported"),
            StoreInfo(store_type="mock", path="/x"),
        ]
        report = StoreInstallEngine([store], []).run(pki.info())
        assert report.stored_certificates[0].protection_mode == ProtectionMode.LEGACY

    def test_installer_failure_propagates(self, pki):
        installer = MagicMock()
        installer.install.side_effect = InstallationFailed("script failed")
        store = _store()
        with pytest.raises(InstallationFailed):
            StoreInstallEngine([store], [installer]).run(pki.info(), pki.info())
        store.delete.assert_not_called()
