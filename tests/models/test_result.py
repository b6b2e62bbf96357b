"""Tests for acmerenew.models.result and acmerenew.models.target."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from acmerenew.core.errors import ConfigurationError
from acmerenew.core.identifiers import DnsIdentifier, IpIdentifier
from acmerenew.models.result import OrderResult, RenewResult
from acmerenew.models.target import Target, TargetPart

_JAN = datetime(2026, 1, 10, tzinfo=UTC)
_FEB = datetime(2026, 2, 10, tzinfo=UTC)


class TestRenewResult:
    def test_expire_date_is_min_of_orders(self):
        result = RenewResult.from_orders(
            [
                OrderResult("site-1", "AA", _FEB, success=True),
                OrderResult("site-2", "BB", _JAN, success=True),
                OrderResult("site-3", success=False, error="failed"),
            ],
        )
        assert result.expire_date == _JAN

    def test_empty_orders_have_no_expire_date(self):
        assert RenewResult.from_orders([]).expire_date is None
        assert RenewResult.from_error("boom").expire_date is None

    def test_partial_failure_keeps_successful_order(self):
        ok = OrderResult("main", "AA", _FEB, success=True)
        bad = OrderResult("host-b.example", success=False, error="invalid")
        result = RenewResult.from_orders([ok, bad])
        assert result.success is False
        assert result.order_results[0] == ok
        assert result.thumbprints == ["AA"]

    def test_success_requires_orders(self):
        assert RenewResult.from_orders([]).success is False
        assert RenewResult.from_orders([OrderResult("main", "AA", _JAN, True)]).success is True

    def test_aborted_is_not_a_failure(self):
        result = RenewResult.aborted()
        assert result.abort
        assert result.success is None

    def test_str(self):
        result = RenewResult(
            date=datetime(2026, 3, 1, 12, 30, 5, tzinfo=UTC),
            success=False,
            order_results=(OrderResult("main", success=False),),
            error_messages=("line one\nline two",),
        )
        assert str(result) == "2026-03-01 12:30:05 - Error - Orders main - line one line two"

    def test_str_success(self):
        result = RenewResult.from_orders([OrderResult("main", "AA", _JAN, True)])
        assert " - Success - Orders main" in str(result)

    def test_immutable(self):
        result = RenewResult.from_orders([])
        with pytest.raises(AttributeError):
            result.success = True

    def test_thumbprint_summary_is_sorted(self):
        result = RenewResult.from_orders(
            [OrderResult("a", "BB", _JAN, True), OrderResult("b", "AA", _JAN, True)],
        )
        assert result.thumbprint_summary == "AA|BB"


class TestTarget:
    def test_from_identifiers(self):
        target = Target.from_identifiers([DnsIdentifier("a.example"), IpIdentifier("192.0.2.1")])
        assert target.common_name == DnsIdentifier("a.example")
        assert str(target) == "a.example and 1 alternative"

    def test_identifiers_are_distinct_across_parts(self):
        a, b = DnsIdentifier("a.example"), DnsIdentifier("b.example")
        target = Target(
            friendly_name=None,
            common_name=None,
            parts=(TargetPart((a, b), site_id=1), TargetPart((b,), site_id=2)),
        )
        assert target.identifiers == (a, b)
        assert target.display_name == a
        assert str(target) == "a.example and 1 alternative"

    def test_empty_part_rejected(self):
        with pytest.raises(ConfigurationError):
            TargetPart(())

    def test_no_parts_rejected(self):
        with pytest.raises(ConfigurationError):
            Target(friendly_name=None, common_name=None, parts=())
