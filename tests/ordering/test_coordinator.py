"""Tests for acmerenew.ordering.coordinator."""

from __future__ import annotations

from dataclasses import replace

import pytest

import support
from acmerenew.core.cancellation import CancellationToken
from acmerenew.core.errors import RenewalCancelled
from acmerenew.core.identifiers import DnsIdentifier
from acmerenew.core.types import OrderMode, RenewalState
from acmerenew.csr.processor import CsrProcessor
from acmerenew.models.target import Target, TargetPart
from acmerenew.ordering.coordinator import OrderCoordinator, plan_orders

_A, _B, _C = DnsIdentifier("a.example"), DnsIdentifier("b.example"), DnsIdentifier("c.example")


def _target():
    return Target(
        friendly_name="Example",
        common_name=_B,
        parts=(TargetPart((_A, _B), site_id=7), TargetPart((_B, _C))),
    )


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class TestPlanOrders:
    def test_single(self):
        (plan,) = plan_orders(_target(), OrderMode.SINGLE)
        assert plan.name == "main"
        assert plan.identifiers == (_A, _B, _C)
        assert plan.common_name == _B

    def test_site_names_use_site_id_or_position(self):
        plans = plan_orders(_target(), "site")
        assert [p.name for p in plans] == ["site-7", "site-2"]
        assert plans[1].identifiers == (_B, _C)
        assert plans[0].common_name == _B

    def test_host(self):
        plans = plan_orders(_target(), OrderMode.HOST)
        assert [p.name for p in plans] == ["host-a.example", "host-b.example", "host-c.example"]
        assert all(len(p.identifiers) == 1 for p in plans)
        assert len(plans[1].parts) == 2

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            plan_orders(_target(), "bogus")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_coordinator(settings_factory):
    def _make(ca, *, strict=False, cancel=None, states=None, validator=None, on_issued=None):
        settings = settings_factory(order={"strict": strict})
        return OrderCoordinator(
            ca,
            validator or support.RecordingValidator(),
            CsrProcessor(settings.csr),
            settings.order,
            settings.validation,
            bundle_password="pw",
            cancel=cancel or CancellationToken(),
            on_state=states.append if states is not None else None,
            on_issued=on_issued,
        )

    return _make


class TestOrderCoordinator:
    def test_single_order_issued(self, pki, make_coordinator):
        ca = support.FakeCA(pki)
        states = []
        (outcome,) = make_coordinator(ca, states=states).execute(
            plan_orders(_target()),
            friendly_name="My Site",
        )
        assert outcome.success
        info = outcome.certificate
        assert set(info.san_identifiers) == {_A, _B, _C}
        assert info.common_name == _B
        assert info.chain == (pki.intermediate, pki.root)
        assert info.bundle.friendly_name.startswith("My Site @ ")
        assert info.bundle.password == "pw"
        assert states == [RenewalState.ORDERING, RenewalState.VALIDATING, RenewalState.ISSUING]

    def test_csr_not_submitted_before_validation(self, pki, make_coordinator):
        ca = support.FakeCA(pki)
        make_coordinator(ca).execute(plan_orders(_target(), OrderMode.HOST))
        names = [c[0] for c in ca.calls]
        assert max(i for i, n in enumerate(names) if n == "poll_authorization") < names.index(
            "submit_csr",
        )

    def test_best_effort_keeps_successful_sibling(self, pki, make_coordinator):
        ca = support.FakeCA(pki, invalid=["c.example"])
        outcomes = make_coordinator(ca).execute(plan_orders(_target(), OrderMode.SITE))
        assert outcomes[0].success
        assert not outcomes[1].success
        assert "c.example" in outcomes[1].error
        assert "Connection refused" in outcomes[1].error
        assert len(ca.calls_named("submit_csr")) == 1

    def test_strict_fails_siblings(self, pki, make_coordinator):
        ca = support.FakeCA(pki, invalid=["c.example"])
        outcomes = make_coordinator(ca, strict=True).execute(plan_orders(_target(), OrderMode.SITE))
        assert not any(o.success for o in outcomes)
        assert "strict" in outcomes[0].error
        assert ca.calls_named("submit_csr") == []

    def test_order_creation_failure_is_contained(self, pki, make_coordinator):
        ca = support.FakeCA(pki, fail_orders=["a.example"])
        outcomes = make_coordinator(ca).execute(plan_orders(_target(), OrderMode.HOST))
        assert [o.success for o in outcomes] == [False, True, True]
        assert outcomes[0].error == "Order refused"

    def test_already_valid_authorizations_skip_validation(self, pki, make_coordinator):
        ca = support.FakeCA(pki, valid=["a.example", "b.example", "c.example"])
        states = []
        (outcome,) = make_coordinator(ca, states=states).execute(plan_orders(_target()))
        assert outcome.success
        assert ca.calls_named("answer_challenge") == []

    def test_reused_key(self, pki, make_coordinator):
        ca = support.FakeCA(pki)
        key = support.ec_key()
        (outcome,) = make_coordinator(ca).execute(plan_orders(_target()), reuse_keys={"main": key})
        issued = outcome.certificate.certificate.public_key()
        assert issued.public_numbers() == key.public_key().public_numbers()

    def test_issuance_timeout(self, pki, make_coordinator):
        class SlowCA(support.FakeCA):
            def poll_for_certificate(self, pending):
                return None

        (outcome,) = make_coordinator(SlowCA(pki)).execute(plan_orders(_target()))
        assert not outcome.success
        assert "not issued after 3 attempt(s)" in outcome.error

    def test_cancelled(self, pki, make_coordinator):
        token = CancellationToken()
        token.cancel()
        ca = support.FakeCA(pki)
        with pytest.raises(RenewalCancelled):
            make_coordinator(ca, cancel=token).execute(plan_orders(_target()))
        assert ca.calls == []

    def test_common_name_outside_order_is_dropped(self, pki, make_coordinator):
        ca = support.FakeCA(pki)
        plan = replace(plan_orders(_target(), OrderMode.SITE)[1], common_name=_A)
        (outcome,) = make_coordinator(ca).execute([plan])
        assert outcome.certificate.common_name == _B

    def test_preparation_failure_fails_only_owning_order(self, pki, make_coordinator):
        ca = support.FakeCA(pki)
        validator = support.RecordingValidator(fail_prepare=["b.example"])
        outcomes = make_coordinator(ca, validator=validator).execute(
            plan_orders(_target(), OrderMode.HOST),
        )
        assert [o.success for o in outcomes] == [True, False, True]
        assert "Cannot prepare b.example" in outcomes[1].error
        assert validator.commits == 1
        assert len(ca.calls_named("submit_csr")) == 2

    def test_unreadable_certificate_is_an_order_failure(self, pki, make_coordinator):
        class GarbledCA(support.FakeCA):
            def poll_for_certificate(self, pending):
                if pending.order.identifiers == (_C,):
                    return b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n"
                return super().poll_for_certificate(pending)

        issued = []
        coordinator = make_coordinator(GarbledCA(pki), on_issued=issued.append)
        outcomes = coordinator.execute(plan_orders(_target(), OrderMode.HOST))
        assert [o.success for o in outcomes] == [True, True, False]
        assert "Unable to read the certificate issued for order host-c.example" in outcomes[2].error
        assert [o.plan.name for o in issued] == ["host-a.example", "host-b.example"]
