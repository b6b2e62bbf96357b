"""Tests for acmerenew.renewal.executor."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization

import support
from acmerenew.core.cancellation import CancellationToken
from acmerenew.core.errors import ConfigurationError, InstallationFailed
from acmerenew.core.registry import default_registries
from acmerenew.core.identifiers import DnsIdentifier
from acmerenew.core.types import RenewalState
from acmerenew.csr.processor import build_csr
from acmerenew.models.renewal import PluginOptions
from acmerenew.renewal.executor import RenewalExecutor

_RECORDING_ID = "6d0c6f4e-8b8e-4f0e-9d59-0f3a4b8c1d01"
_BROKEN_ID = "6d0c6f4e-8b8e-4f0e-9d59-0f3a4b8c1d02"
_EXPLODING_ID = "6d0c6f4e-8b8e-4f0e-9d59-0f3a4b8c1d03"

_FULL_RUN = [
    RenewalState.IDLE,
    RenewalState.CACHE_CHECK,
    RenewalState.ORDERING,
    RenewalState.VALIDATING,
    RenewalState.ISSUING,
    RenewalState.INSTALLING,
    RenewalState.COMPLETED,
]


@pytest.fixture()
def validator():
    return support.RecordingValidator()


@pytest.fixture()
def registries(validator):
    registries = default_registries()
    registries.validation.register(_RECORDING_ID, "recording", lambda options, context: validator)
    return registries


@pytest.fixture()
def make_executor(pki, registries, settings_factory):
    def _make(ca=None, *, cancel=None, **sections):
        ca = ca or support.FakeCA(pki)
        executor = RenewalExecutor(
            settings_factory(**sections),
            ca,
            registries=registries,
            cancel=cancel or CancellationToken(),
        )
        return executor, ca

    return _make


def _renewal(tmp_path, **kwargs):
    kwargs.setdefault(
        "target",
        PluginOptions(
            "manual",
            {"common_name": "www.example.com", "alternative_names": ["api.example.com"]},
        ),
    )
    kwargs.setdefault("stores", (PluginOptions("pemfiles", {"path": str(tmp_path / "pem")}),))
    return support.make_renewal("site", **kwargs)


class TestFullRun:
    def test_success(self, tmp_path, make_executor, validator):
        executor, ca = make_executor()
        result = executor.execute(_renewal(tmp_path))
        assert result.success
        (order,) = result.order_results
        assert order.name == "main"
        assert order.thumbprint
        assert result.expire_date == order.expire_date
        assert (tmp_path / "pem" / "www.example.com-crt.pem").exists()
        assert list((tmp_path / "cache").glob(f"site-main-{order.thumbprint}.pfx"))
        assert executor.transitions == _FULL_RUN
        assert executor.finished
        assert sorted(validator.prepared) == ["api.example.com", "www.example.com"]
        assert len(ca.issued) == 1

    def test_cached_certificate_skips_authority(self, tmp_path, make_executor, pki):
        executor, _ = make_executor()
        first = executor.execute(_renewal(tmp_path))
        second_ca = support.FakeCA(pki)
        executor, _ = make_executor(second_ca)
        second = executor.execute(_renewal(tmp_path))
        assert second.success
        assert second.thumbprints == first.thumbprints
        assert second_ca.calls == []
        assert executor.transitions == [
            RenewalState.IDLE,
            RenewalState.CACHE_CHECK,
            RenewalState.INSTALLING,
            RenewalState.COMPLETED,
        ]

    def test_force_orders_again(self, tmp_path, make_executor):
        executor, ca = make_executor()
        first = executor.execute(_renewal(tmp_path))
        second = executor.execute(_renewal(tmp_path), force=True)
        assert second.thumbprints != first.thumbprints
        assert len(ca.issued) == 2

    def test_reused_private_key(self, tmp_path, make_executor):
        executor, ca = make_executor(csr={"reuse_private_key": True})
        executor.execute(_renewal(tmp_path))
        executor.execute(_renewal(tmp_path), force=True)
        first, second = (c.public_key().public_numbers() for c in ca.issued)
        assert first == second

    def test_previous_certificate_is_replaced(self, tmp_path, make_executor):
        renewal = _renewal(tmp_path, stores=(PluginOptions("keystore", {"path": str(tmp_path / "ks")}),))
        executor, _ = make_executor()
        first = executor.execute(renewal)
        second = executor.execute(renewal, force=True, previous=first)
        names = sorted(p.name for p in (tmp_path / "ks" / "my").iterdir())
        assert names == [f"{second.thumbprints[0]}.pfx"]


    def test_manual_csr_is_submitted(self, tmp_path, make_executor):
        key = support.ec_key()
        csr = build_csr(key, [DnsIdentifier("www.example.com"), DnsIdentifier("api.example.com")])
        path = tmp_path / "request.csr"
        path.write_bytes(csr.public_bytes(serialization.Encoding.PEM))
        executor, ca = make_executor()
        result = executor.execute(_renewal(tmp_path, target=PluginOptions("manual", {"csr": str(path)})))
        assert result.success
        (issued,) = ca.issued
        assert issued.public_key().public_numbers() == key.public_key().public_numbers()
        assert list((tmp_path / "pem").glob("*-crt.pem"))
        assert not list((tmp_path / "pem").glob("*-key.pem"))


class TestFailures:
    def test_partial_failure_keeps_successful_order(self, tmp_path, make_executor, pki):
        ca = support.FakeCA(pki, invalid=["api.example.com"])
        executor, _ = make_executor(ca)
        result = executor.execute(_renewal(tmp_path, order_mode="host"))
        assert result.success is False
        ok, failed = result.order_results
        assert ok.name == "host-www.example.com"
        assert ok.success
        assert ok.thumbprint
        assert failed.success is False
        assert "api.example.com" in failed.error
        assert executor.state == RenewalState.FAILED

    def test_cancelled(self, tmp_path, make_executor):
        token = CancellationToken()
        token.cancel()
        executor, ca = make_executor(cancel=token)
        result = executor.execute(_renewal(tmp_path))
        assert result.abort
        assert result.success is None
        assert executor.state == RenewalState.ABORTED
        assert ca.calls == []

    def test_configuration_error(self, tmp_path, make_executor):
        executor, _ = make_executor()
        result = executor.execute(_renewal(tmp_path, target=PluginOptions("bogus")))
        assert result.success is False
        assert result.error_messages == ("No target plugin registered for 'bogus'",)
        assert executor.state == RenewalState.FAILED

    def test_unexpected_exception(self, tmp_path, make_executor, registries):
        def exploding(options, context):
            msg = "kaput"
            raise RuntimeError(msg)

        registries.target.register(_EXPLODING_ID, "exploding", exploding)
        executor, _ = make_executor()
        result = executor.execute(_renewal(tmp_path, target=PluginOptions("exploding")))
        assert result.error_messages == ("kaput",)
        assert result.order_results == ()

    def test_store_failure_is_contained_to_order(self, tmp_path, make_executor, registries):
        broken = MagicMock()
        broken.save.side_effect = InstallationFailed("disk full")
        registries.store.register(_BROKEN_ID, "broken", lambda options, context: broken)
        executor, _ = make_executor()
        result = executor.execute(_renewal(tmp_path, stores=(PluginOptions("broken"),)))
        (order,) = result.order_results
        assert order.success is False
        assert order.error == "disk full"
        assert order.thumbprint
        assert result.success is False

    def test_store_configuration_error_fails_run(self, tmp_path, make_executor):
        executor, _ = make_executor()
        result = executor.execute(_renewal(tmp_path, stores=(PluginOptions("pemfiles"),)))
        assert "PEM files store requires a path" in result.error_messages[0]
        (order,) = result.order_results
        assert order.success is False
        assert order.thumbprint
        assert order.error.startswith("Not installed")

    def test_executor_never_raises(self, tmp_path, make_executor, pki):
        ca = support.FakeCA(pki)
        ca.create_order = MagicMock(side_effect=ConfigurationError("bad account"))
        executor, _ = make_executor(ca)
        result = executor.execute(_renewal(tmp_path))
        assert result.error_messages == ("bad account",)


class _GarbledCA(support.FakeCA):
    """Returns an unreadable certificate for identifiers in ``garbled``."""

    def __init__(self, pki, garbled):
        super().__init__(pki)
        self.garbled = set(garbled)

    def poll_for_certificate(self, pending):
        if {i.value for i in pending.order.identifiers} & self.garbled:
            return b"-----BEGIN CERTIFICATE-----\nnot base64\n-----END CERTIFICATE-----\n"
        return super().poll_for_certificate(pending)


class _CrashingCA(support.FakeCA):
    """Raises a programming error when submitting a CSR for ``crash``."""

    def __init__(self, pki, crash):
        super().__init__(pki)
        self.crash = crash

    def submit_csr(self, order, csr_der):
        if any(i.value == self.crash for i in order.identifiers):
            msg = "socket closed"
            raise RuntimeError(msg)
        return super().submit_csr(order, csr_der)


class TestSiblingContainment:
    def test_unreadable_certificate_fails_only_its_order(self, tmp_path, make_executor, pki):
        executor, ca = make_executor(_GarbledCA(pki, ["api.example.com"]))
        result = executor.execute(_renewal(tmp_path, order_mode="host"))
        ok, failed = result.order_results
        assert ok.name == "host-www.example.com"
        assert ok.success
        assert (tmp_path / "pem" / "www.example.com-crt.pem").exists()
        assert failed.name == "host-api.example.com"
        assert failed.success is False
        assert "Unable to read the certificate" in failed.error
        assert len(ca.issued) == 2

    def test_unexpected_error_keeps_issued_sibling(self, tmp_path, make_executor, pki):
        executor, _ = make_executor(_CrashingCA(pki, "api.example.com"))
        result = executor.execute(_renewal(tmp_path, order_mode="host"))
        assert result.success is False
        assert result.error_messages == ("socket closed",)
        (order,) = result.order_results
        assert order.name == "host-www.example.com"
        assert order.thumbprint
        assert order.error == "Not installed: socket closed"
        cached = tmp_path / "cache" / f"site-host-www.example.com-{order.thumbprint}.pfx"
        assert cached.exists()
