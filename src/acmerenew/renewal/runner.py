"""Caller side of the executor: history and notifications.

The executor never persists or notifies; :class:`RenewalRunner` does,
after the executor has returned.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING

from acmerenew.models.result import RenewResult
from acmerenew.renewal.due_date import is_due

if TYPE_CHECKING:
    from acmerenew.config.settings import ScheduleSettings
    from acmerenew.logging.setup import MemoryLogHandler
    from acmerenew.models.renewal import Renewal
    from acmerenew.renewal.executor import RenewalExecutor
    from acmerenew.renewal.history import RenewalHistory

log = logging.getLogger(__name__)


class NotificationTarget(abc.ABC):
    """Receives the outcome of renewal runs.

    ``log_lines`` are the most recent formatted log lines of the run.
    """

    @abc.abstractmethod
    def send_success(self, renewal: Renewal, log_lines: list[str]) -> None: ...

    @abc.abstractmethod
    def send_failure(self, renewal: Renewal, log_lines: list[str], errors: list[str]) -> None: ...

    @abc.abstractmethod
    def send_created(self, renewal: Renewal, log_lines: list[str]) -> None: ...

    @abc.abstractmethod
    def send_cancel(self, renewal: Renewal) -> None: ...


class RenewalRunner:
    """Runs a renewal, records its result and notifies about it.

    Parameters
    ----------
    executor:
        Executor doing the work.
    history:
        History store for results.
    notification:
        Optional notification target.
    memory:
        Handler collecting the run's log lines for notifications.

    """

    def __init__(
        self,
        executor: RenewalExecutor,
        history: RenewalHistory,
        *,
        notification: NotificationTarget | None = None,
        memory: MemoryLogHandler | None = None,
    ) -> None:
        self._executor = executor
        self._history = history
        self._notification = notification
        self._memory = memory

    def due(self, renewal: Renewal, schedule: ScheduleSettings) -> bool:
        return is_due(self._history.load(renewal), schedule)

    def run(
        self,
        renewal: Renewal,
        *,
        force: bool = False,
        no_cache: bool = False,
        created: bool = False,
    ) -> RenewResult:
        """Execute *renewal* and handle its result.

        Parameters
        ----------
        created:
            The renewal was just defined; success is reported with
            :meth:`NotificationTarget.send_created`.

        """
        if self._memory is not None:
            self._memory.clear()
        previous = self._history.last_success(renewal)
        try:
            result = self._executor.execute(
                renewal,
                force=force,
                no_cache=no_cache,
                previous=previous,
            )
        except Exception as exc:
            log.exception("Renewal %s raised", renewal.label)
            result = RenewResult.from_error(str(exc) or type(exc).__name__)

        if result.order_results:
            self._history.append(renewal, result)
        self._notify(renewal, result, created=created)
        return result

    def _notify(self, renewal: Renewal, result: RenewResult, *, created: bool) -> None:
        if self._notification is None:
            return
        lines = self._memory.lines() if self._memory is not None else []
        try:
            if result.abort:
                self._notification.send_cancel(renewal)
            elif result.success and created:
                self._notification.send_created(renewal, lines)
            elif result.success:
                self._notification.send_success(renewal, lines)
            else:
                self._notification.send_failure(renewal, lines, list(result.error_messages))
        except Exception:
            log.exception("Unable to send notification for %s", renewal.label)
