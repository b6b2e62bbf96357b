"""Bounded polling with fixed or exponential backoff.

Used wherever the pipeline waits on the certificate authority:
authorization status after a challenge is answered, and certificate
availability after the CSR is submitted.  Each wait is bounded per
step (attempts and an overall timeout) so one slow authorization cannot
stall sibling orders indefinitely.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from acmerenew.core.cancellation import NEVER_CANCELLED, CancellationToken
from acmerenew.core.errors import TransientProtocolError

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    """How long and how often to poll.

    Attributes
    ----------
    attempts:
        Maximum number of calls to the fetch function.
    interval_seconds:
        Delay before the second attempt.
    backoff:
        Multiplier applied to the delay after each attempt (``1.0`` gives
        a fixed interval).
    max_interval_seconds:
        Upper bound for a single delay.
    timeout_seconds:
        Overall bound for the whole wait, ``0`` for none.

    """

    attempts: int = 10
    interval_seconds: float = 2.0
    backoff: float = 1.0
    max_interval_seconds: float = 60.0
    timeout_seconds: float = 0.0

    def delay(self, attempt: int) -> float:
        """Delay after the *attempt*-th (zero based) call."""
        return min(
            self.interval_seconds * (self.backoff**attempt),
            self.max_interval_seconds,
        )


class PollExhausted(Exception):
    """Raised by :func:`poll_until` when the fetched value never settled."""

    def __init__(self, attempts: int, last: object = None) -> None:
        self.attempts = attempts
        self.last = last
        super().__init__(f"Gave up after {attempts} attempt(s)")


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    policy: PollPolicy,
    *,
    cancel: CancellationToken = NEVER_CANCELLED,
    description: str = "operation",
) -> T:
    """Call *fetch* until *done* accepts its result.

    :class:`TransientProtocolError` raised by *fetch* counts as an
    unsettled attempt and is retried; any other exception propagates.

    Returns
    -------
    The first result accepted by *done*.

    Raises
    ------
    PollExhausted
        When attempts or the overall timeout run out.
    RenewalCancelled
        When *cancel* fires while waiting.

    """
    started = time.monotonic()
    last: object = None
    attempts = max(policy.attempts, 1)
    for attempt in range(attempts):
        cancel.raise_if_cancelled()
        try:
            result = fetch()
        except TransientProtocolError as exc:
            log.warning(
                "Transient error while waiting for %s (attempt %d/%d): %s",
                description,
                attempt + 1,
                attempts,
                exc.detail,
            )
            last = exc
        else:
            if done(result):
                return result
            last = result
        if attempt + 1 >= attempts:
            break
        delay = policy.delay(attempt)
        if policy.timeout_seconds > 0:
            remaining = policy.timeout_seconds - (time.monotonic() - started)
            if remaining <= 0:
                log.debug("Timeout waiting for %s after %d attempt(s)", description, attempt + 1)
                break
            delay = min(delay, remaining)
        log.debug("Waiting %.1fs for %s", delay, description)
        if cancel.wait(delay):
            cancel.raise_if_cancelled()
    raise PollExhausted(attempts, last)
