"""Challenge validation scheduler.

Drives pending authorizations through the four validation phases,
grouped by the validator instance answering them:

* **prepare** -- concurrently when the validator declares
  ``ParallelOperations.PREPARE``, strictly one at a time otherwise;
* **commit** -- exactly once per validator instance;
* **answer** -- tell the authority to verify, then poll the
  authorization until it settles; concurrently when the validator
  declares ``ParallelOperations.ANSWER``;
* **cleanup** -- exactly once per validator instance, always.

A preparation failure invalidates only its own authorization; a commit
failure invalidates the prepared authorizations of that validator
instance.  All concurrent work shares one global bound
(``validation.max_parallel``).

Usage::

    scheduler = ValidationScheduler(ca_client, settings.validation, cancel)
    outcomes = scheduler.run([ValidationItem(authz, validator, "main"), ...])
"""

from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmerenew.core.cancellation import NEVER_CANCELLED, CancellationToken
from acmerenew.core.errors import RenewalCancelled, RenewalError
from acmerenew.core.retry import PollExhausted, PollPolicy, poll_until
from acmerenew.core.types import AuthorizationStatus, ParallelOperations
from acmerenew.logging.setup import log_context
from acmerenew.validation.base import ValidationContext

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmerenew.ca.base import Authorization, CertificateAuthorityClient, ChallengeDetails
    from acmerenew.config.settings import ValidationSettings
    from acmerenew.validation.base import Validator

log = logging.getLogger(__name__)

_UNSETTLED = frozenset({AuthorizationStatus.PENDING, AuthorizationStatus.PROCESSING})


@dataclass(frozen=True)
class ValidationItem:
    """One authorization and the validator instance that answers it."""

    authorization: Authorization
    validator: Validator
    order_name: str = "main"


@dataclass(frozen=True)
class ValidationOutcome:
    """Final verdict for one authorization."""

    authorization: Authorization
    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls, authorization: Authorization) -> ValidationOutcome:
        return cls(authorization=authorization, valid=True)

    @classmethod
    def invalid(cls, authorization: Authorization, reason: str) -> ValidationOutcome:
        return cls(authorization=authorization, valid=False, reason=reason)


@dataclass
class _Group:
    validator: Validator
    indexes: list[int]


def _describe(exc: BaseException) -> str:
    if isinstance(exc, RenewalError):
        return exc.detail
    return f"{type(exc).__name__}: {exc}"


class ValidationScheduler:
    """Runs one validation pass over a set of authorizations.

    Parameters
    ----------
    ca:
        Certificate authority client used to answer and poll.
    settings:
        The ``validation`` section from :class:`RenewSettings`.
    cancel:
        Cancellation token checked between phases and while polling.

    """

    def __init__(
        self,
        ca: CertificateAuthorityClient,
        settings: ValidationSettings,
        cancel: CancellationToken = NEVER_CANCELLED,
    ) -> None:
        self._ca = ca
        self._settings = settings
        self._cancel = cancel
        self._max_parallel = max(int(getattr(settings, "max_parallel", 4)), 1)
        self._slots = threading.BoundedSemaphore(self._max_parallel)
        self._policy = PollPolicy(
            attempts=settings.poll_attempts,
            interval_seconds=settings.poll_interval_seconds,
            backoff=settings.poll_backoff,
            max_interval_seconds=settings.poll_max_interval_seconds,
            timeout_seconds=settings.timeout_seconds,
        )

    # -- public -------------------------------------------------------------

    def run(self, items: list[ValidationItem]) -> list[ValidationOutcome]:
        """Validate *items*; outcomes are returned in input order.

        Raises
        ------
        RenewalCancelled
            If the run was cancelled.  Cleanup has run for every
            validator instance by then.

        """
        outcomes: list[ValidationOutcome | None] = [None] * len(items)
        groups = self._group(items)
        if not groups:
            return []
        log.info(
            "Validating %d authorization(s) with %d validator instance(s)",
            len(items),
            len(groups),
        )

        with (
            ThreadPoolExecutor(
                max_workers=len(groups),
                thread_name_prefix="acmerenew-validation",
            ) as group_pool,
            ThreadPoolExecutor(
                max_workers=self._max_parallel,
                thread_name_prefix="acmerenew-challenge",
            ) as item_pool,
        ):
            futures = [
                group_pool.submit(
                    contextvars.copy_context().run,
                    self._run_group,
                    group,
                    items,
                    outcomes,
                    item_pool,
                )
                for group in groups
            ]
            cancelled: RenewalCancelled | None = None
            for future in futures:
                try:
                    future.result()
                except RenewalCancelled as exc:
                    cancelled = exc
        if cancelled is not None:
            raise cancelled

        return [
            outcome
            if outcome is not None
            else ValidationOutcome.invalid(items[i].authorization, "Validation did not complete")
            for i, outcome in enumerate(outcomes)
        ]

    # -- grouping -----------------------------------------------------------

    @staticmethod
    def _group(items: list[ValidationItem]) -> list[_Group]:
        groups: dict[int, _Group] = {}
        for idx, item in enumerate(items):
            key = id(item.validator)
            if key not in groups:
                groups[key] = _Group(validator=item.validator, indexes=[])
            groups[key].indexes.append(idx)
        return list(groups.values())

    # -- per validator instance ---------------------------------------------

    def _run_group(
        self,
        group: _Group,
        items: list[ValidationItem],
        outcomes: list[ValidationOutcome | None],
        pool: ThreadPoolExecutor,
    ) -> None:
        validator = group.validator
        try:
            prepared = self._prepare_all(group, items, outcomes, pool)
            if not prepared:
                return
            self._cancel.raise_if_cancelled()

            try:
                validator.commit()
            except RenewalCancelled:
                raise
            except Exception as exc:
                log.exception("Commit failed for %r", validator)
                reason = f"Unable to activate validation: {_describe(exc)}"
                for idx in prepared:
                    outcomes[idx] = ValidationOutcome.invalid(items[idx].authorization, reason)
                return
            self._cancel.raise_if_cancelled()

            self._for_each(
                validator,
                ParallelOperations.ANSWER,
                prepared,
                lambda idx: self._answer(items[idx], outcomes, idx),
                pool,
            )
        finally:
            try:
                validator.cleanup()
            except Exception:
                log.warning("Cleanup failed for %r", validator, exc_info=True)

    def _prepare_all(
        self,
        group: _Group,
        items: list[ValidationItem],
        outcomes: list[ValidationOutcome | None],
        pool: ThreadPoolExecutor,
    ) -> list[int]:
        """Prepare every item of *group*; return the prepared indexes.

        A failure invalidates only the authorization it belongs to.
        """
        validator = group.validator
        challenges: dict[int, ChallengeDetails] = {}
        failures: dict[int, str] = {}
        for idx in group.indexes:
            authz = items[idx].authorization
            if authz.status == AuthorizationStatus.VALID:
                outcomes[idx] = ValidationOutcome.ok(authz)
                continue
            challenge = authz.challenge(validator.challenge_type)
            if challenge is None:
                failures[idx] = f"No {validator.challenge_type} challenge offered"
            elif not validator.supports_identifier(authz.identifier):
                failures[idx] = (
                    f"{type(validator).__name__} cannot validate "
                    f"{authz.identifier.type} identifiers"
                )
            else:
                challenges[idx] = challenge

        def prepare(idx: int) -> None:
            item = items[idx]
            ctx = ValidationContext(
                identifier=item.authorization.identifier,
                authorization=item.authorization,
                order_name=item.order_name,
            )
            try:
                with log_context(order_name=item.order_name):
                    validator.prepare_challenge(ctx, challenges[idx])
            except RenewalCancelled:
                raise
            except Exception as exc:
                log.exception(
                    "Unable to prepare challenge for %s",
                    item.authorization.identifier.value,
                )
                failures[idx] = f"Unable to prepare challenge: {_describe(exc)}"

        self._for_each(
            validator,
            ParallelOperations.PREPARE,
            list(challenges),
            prepare,
            pool,
        )

        for idx, reason in failures.items():
            log.warning(
                "Authorization of %s is invalid: %s",
                items[idx].authorization.identifier.value,
                reason,
            )
            outcomes[idx] = ValidationOutcome.invalid(items[idx].authorization, reason)
        return [idx for idx in challenges if idx not in failures]

    def _for_each(
        self,
        validator: Validator,
        flag: ParallelOperations,
        indexes: list[int],
        work: Callable[[int], None],
        pool: ThreadPoolExecutor,
    ) -> None:
        """Run *work* for each index, concurrently if *validator* allows it."""

        def bounded(idx: int) -> None:
            self._cancel.raise_if_cancelled()
            with self._slots:
                work(idx)

        if flag in validator.parallelism and len(indexes) > 1:
            futures = [pool.submit(contextvars.copy_context().run, bounded, idx) for idx in indexes]
            cancelled: RenewalCancelled | None = None
            for future in futures:
                try:
                    future.result()
                except RenewalCancelled as exc:
                    cancelled = exc
            if cancelled is not None:
                raise cancelled
        else:
            for idx in indexes:
                bounded(idx)

    # -- answering ----------------------------------------------------------

    def _answer(
        self,
        item: ValidationItem,
        outcomes: list[ValidationOutcome | None],
        idx: int,
    ) -> None:
        authz = item.authorization
        identifier = authz.identifier.value
        challenge = authz.challenge(item.validator.challenge_type)
        with log_context(order_name=item.order_name):
            try:
                self._ca.answer_challenge(authz, challenge)
                final = poll_until(
                    lambda: self._ca.poll_authorization(authz),
                    lambda a: a.status not in _UNSETTLED,
                    self._policy,
                    cancel=self._cancel,
                    description=f"authorization of {identifier}",
                )
            except RenewalCancelled:
                raise
            except PollExhausted:
                log.warning("Authorization of %s did not settle in time", identifier)
                outcomes[idx] = ValidationOutcome.invalid(
                    authz,
                    f"Timed out waiting for validation of {identifier}",
                )
                return
            except Exception as exc:
                log.warning("Validation of %s failed: %s", identifier, _describe(exc))
                outcomes[idx] = ValidationOutcome.invalid(authz, _describe(exc))
                return

        if final.status == AuthorizationStatus.VALID:
            log.info("Authorization of %s is valid", identifier)
            outcomes[idx] = ValidationOutcome.ok(final)
        else:
            reason = final.error or f"Authorization status is {final.status}"
            log.warning("Authorization of %s is %s: %s", identifier, final.status, reason)
            outcomes[idx] = ValidationOutcome.invalid(final, reason)
