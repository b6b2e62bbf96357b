"""Due-date computation from the renewal history."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from acmerenew.config.settings import ScheduleSettings
    from acmerenew.models.result import RenewResult


def due_date(history: Sequence[RenewResult], settings: ScheduleSettings) -> datetime | None:
    """When the renewal should run next; ``None`` means now.

    Aborted runs are ignored.  Without a result, or when the latest
    result is a failure, the renewal is due immediately.  Otherwise it
    is due ``renewal_days`` after the last success, or ``min_valid_days``
    before the soonest expiring certificate, whichever comes first.
    """
    results = [r for r in history if not r.abort]
    if not results or not results[-1].success:
        return None
    last = results[-1]
    due = last.date + timedelta(days=settings.renewal_days)
    if last.expire_date is not None:
        due = min(due, last.expire_date - timedelta(days=settings.min_valid_days))
    return due


def is_due(
    history: Sequence[RenewResult],
    settings: ScheduleSettings,
    now: datetime | None = None,
) -> bool:
    due = due_date(history, settings)
    return due is None or (now or datetime.now(UTC)) >= due
