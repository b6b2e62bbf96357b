"""Renewal results: one :class:`RenewResult` per run, one
:class:`OrderResult` per order within it.

Both are immutable snapshots.  ``RenewResult.expire_date`` is computed
once at construction as the soonest expiry among the order results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(frozen=True)
class OrderResult:
    name: str
    thumbprint: str | None = None
    expire_date: datetime | None = None
    success: bool | None = None
    error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RenewResult:
    """Outcome of one renewal run.

    Attributes
    ----------
    date:
        When the run happened (UTC).
    success:
        ``True`` when every order succeeded, ``False`` on any failure,
        ``None`` when the run produced no verdict (aborted).
    abort:
        The run was cancelled by the user.  Aborted runs are not failures
        and must not influence scheduling or failure notification.
    order_results:
        Per-order outcomes, successful ones preserved even when a
        sibling failed.
    error_messages:
        General (not order specific) error messages.

    """

    date: datetime = field(default_factory=_utcnow)
    success: bool | None = None
    abort: bool = False
    order_results: tuple[OrderResult, ...] = ()
    error_messages: tuple[str, ...] = ()
    expire_date: datetime | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_results", tuple(self.order_results))
        object.__setattr__(self, "error_messages", tuple(self.error_messages))
        expiries = [o.expire_date for o in self.order_results if o.expire_date is not None]
        object.__setattr__(self, "expire_date", min(expiries) if expiries else None)

    # -- constructors -------------------------------------------------------

    @classmethod
    def from_orders(
        cls,
        order_results: list[OrderResult] | tuple[OrderResult, ...],
        error_messages: list[str] | tuple[str, ...] = (),
    ) -> RenewResult:
        """Aggregate order outcomes; any failure makes the run a failure."""
        success = (
            bool(order_results)
            and all(o.success for o in order_results)
            and not error_messages
        )
        return cls(
            success=success,
            order_results=tuple(order_results),
            error_messages=tuple(error_messages),
        )

    @classmethod
    def from_error(
        cls,
        message: str,
        order_results: list[OrderResult] | tuple[OrderResult, ...] = (),
    ) -> RenewResult:
        return cls(
            success=False,
            order_results=tuple(order_results),
            error_messages=(message,),
        )

    @classmethod
    def aborted(cls) -> RenewResult:
        return cls(abort=True)

    # -- derived ------------------------------------------------------------

    @property
    def thumbprints(self) -> list[str]:
        return [o.thumbprint for o in self.order_results if o.thumbprint]

    @property
    def thumbprint_summary(self) -> str:
        return "|".join(sorted(self.thumbprints))

    def __str__(self) -> str:
        text = f"{self.date:%Y-%m-%d %H:%M:%S} - {'Success' if self.success else 'Error'}"
        if self.order_results:
            text += " - Orders " + ", ".join(o.name for o in self.order_results)
        if self.error_messages:
            text += " - " + ", ".join(" ".join(m.splitlines()) for m in self.error_messages)
        return text
