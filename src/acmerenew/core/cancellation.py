"""Cooperative cancellation for a renewal run."""

from __future__ import annotations

import threading

from acmerenew.core.errors import RenewalCancelled


class CancellationToken:
    """Thread-safe cancellation flag shared by every stage of one run.

    Stages call :meth:`raise_if_cancelled` between suspension points and
    use :meth:`wait` instead of ``time.sleep`` so a cancel request wakes
    them immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; return ``True`` if cancelled."""
        return self._event.wait(timeout=timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RenewalCancelled


NEVER_CANCELLED = CancellationToken()
"""Shared token for callers that do not support cancellation.

Nothing in the package ever cancels it.
"""
