"""Renewal execution.

Public API::

    from acmerenew.renewal import RenewalExecutor, RenewalRunner

    executor = RenewalExecutor(settings, ca_client)
    runner = RenewalRunner(executor, RenewalHistory(settings.history))
    result = runner.run(renewal)
"""

from acmerenew.renewal.due_date import due_date, is_due
from acmerenew.renewal.executor import RenewalExecutor
from acmerenew.renewal.history import RenewalHistory
from acmerenew.renewal.runner import NotificationTarget, RenewalRunner

__all__ = [
    "NotificationTarget",
    "RenewalExecutor",
    "RenewalHistory",
    "RenewalRunner",
    "due_date",
    "is_due",
]
