"""Order coordinator.

Splits a target into orders, creates them at the authority, runs every
pending authorization of every order through a single validation pass,
then submits the CSRs and collects the issued certificates.

Within one order the CSR is never submitted before all of its
authorizations are valid.  Orders are otherwise independent: a failure
is recorded on the failing order only, unless ``order.strict`` is set,
in which case the first failure fails every sibling order that has not
been issued yet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from acmerenew.certificates.chain import assemble
from acmerenew.certificates.pfx import PfxBundle
from acmerenew.core.cancellation import NEVER_CANCELLED, CancellationToken
from acmerenew.core.errors import (
    AuthorizationInvalid,
    BundleUnreadable,
    ConfigurationError,
    IssuanceTimeout,
    RenewalCancelled,
    RenewalError,
    Unrecoverable,
)
from acmerenew.core.retry import PollExhausted, PollPolicy, poll_until
from acmerenew.core.types import AuthorizationStatus, OrderMode, ProtectionMode, RenewalState
from acmerenew.logging.setup import log_context
from acmerenew.models.order import MAIN_ORDER, OrderOutcome, OrderPlan
from acmerenew.validation.scheduler import ValidationItem, ValidationScheduler

if TYPE_CHECKING:
    from collections.abc import Callable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from acmerenew.ca.base import Authorization, CertificateAuthorityClient, OrderHandle
    from acmerenew.config.settings import OrderSettings, ValidationSettings
    from acmerenew.csr.processor import CsrProcessor
    from acmerenew.models.target import Target
    from acmerenew.validation.base import Validator

log = logging.getLogger(__name__)


def plan_orders(target: Target, mode: OrderMode | str = OrderMode.SINGLE) -> list[OrderPlan]:
    """Split *target* into order plans.

    ``single`` merges every part into one order named ``main``;
    ``site`` places one order per part (``site-<site id>``, or
    ``site-<n>`` counting from 1 when the part has no id); ``host``
    places one order per distinct identifier (``host-<identifier>``).
    """
    mode = OrderMode(mode)
    if mode == OrderMode.SINGLE:
        return [
            OrderPlan(
                name=MAIN_ORDER,
                identifiers=target.identifiers,
                common_name=target.common_name,
                parts=target.parts,
            ),
        ]
    if mode == OrderMode.SITE:
        plans = []
        for index, part in enumerate(target.parts, start=1):
            suffix = part.site_id if part.site_id is not None else index
            identifiers = tuple(dict.fromkeys(part.identifiers))
            cn = target.common_name if target.common_name in identifiers else None
            plans.append(
                OrderPlan(
                    name=f"site-{suffix}",
                    identifiers=identifiers,
                    common_name=cn,
                    parts=(part,),
                ),
            )
        return plans
    plans = []
    for identifier in target.identifiers:
        parts = tuple(p for p in target.parts if identifier in p.identifiers)
        plans.append(
            OrderPlan(
                name=f"host-{identifier.value}",
                identifiers=(identifier,),
                common_name=identifier,
                parts=parts,
            ),
        )
    return plans


@dataclass
class _OrderRun:
    """Mutable per-order state while the coordinator works."""

    plan: OrderPlan
    handle: OrderHandle | None = None
    authorizations: list[Authorization] = field(default_factory=list)
    outcome: OrderOutcome | None = None

    @property
    def active(self) -> bool:
        return self.outcome is None


def _order_failure(exc: BaseException) -> bool:
    """Whether *exc* is contained to its order."""
    return isinstance(exc, RenewalError) and not isinstance(
        exc,
        (ConfigurationError, RenewalCancelled, Unrecoverable),
    )


class OrderCoordinator:
    """Places orders and drives them to issued certificates.

    Parameters
    ----------
    ca:
        Certificate authority client.
    validator:
        Validator instance answering every authorization of this run.
    csr_processor:
        Produces keys and CSRs.
    order_settings / validation_settings:
        The ``order`` and ``validation`` sections of the settings.
    protection_mode / bundle_password:
        Protection applied to issued bundles.
    cancel:
        Cancellation token.
    on_state:
        Called with each :class:`RenewalState` the run enters.
    on_issued:
        Called with each successful :class:`OrderOutcome` as soon as its
        certificate is assembled.

    """

    def __init__(
        self,
        ca: CertificateAuthorityClient,
        validator: Validator,
        csr_processor: CsrProcessor,
        order_settings: OrderSettings,
        validation_settings: ValidationSettings,
        *,
        protection_mode: ProtectionMode = ProtectionMode.DEFAULT,
        bundle_password: str | None = None,
        cancel: CancellationToken = NEVER_CANCELLED,
        on_state: Callable[[RenewalState], None] | None = None,
        on_issued: Callable[[OrderOutcome], None] | None = None,
    ) -> None:
        self._ca = ca
        self._validator = validator
        self._csr = csr_processor
        self._settings = order_settings
        self._validation_settings = validation_settings
        self._protection_mode = protection_mode
        self._password = bundle_password
        self._cancel = cancel
        self._on_state = on_state or (lambda _state: None)
        self._on_issued = on_issued or (lambda _outcome: None)

    # -- public -------------------------------------------------------------

    def execute(
        self,
        plans: list[OrderPlan],
        *,
        user_csr: bytes | None = None,
        reuse_keys: dict[str, PrivateKeyTypes] | None = None,
        friendly_name: str | None = None,
    ) -> list[OrderOutcome]:
        """Drive every plan to an :class:`OrderOutcome`, in plan order."""
        runs = [_OrderRun(plan=p) for p in plans]
        reuse_keys = reuse_keys or {}

        self._on_state(RenewalState.ORDERING)
        for run in runs:
            self._cancel.raise_if_cancelled()
            self._guard(run, self._create, run)
        self._apply_strict(runs)

        if any(r.active for r in runs):
            self._on_state(RenewalState.VALIDATING)
            self._validate(runs)
            self._apply_strict(runs)

        if any(r.active for r in runs):
            self._on_state(RenewalState.ISSUING)
            for run in runs:
                if not run.active:
                    continue
                self._cancel.raise_if_cancelled()
                self._guard(
                    run,
                    self._issue,
                    run,
                    user_csr,
                    reuse_keys.get(run.plan.name),
                    friendly_name,
                )
                self._apply_strict(runs)

        return [r.outcome or OrderOutcome(plan=r.plan, error="Order did not complete") for r in runs]

    # -- phases -------------------------------------------------------------

    def _guard(self, run: _OrderRun, step: Callable, *args: object) -> None:
        with log_context(order_name=run.plan.name):
            try:
                step(*args)
            except Exception as exc:
                if not _order_failure(exc):
                    raise
                detail = exc.detail if isinstance(exc, RenewalError) else str(exc)
                log.error("Order %s failed: %s", run.plan.name, detail)
                run.outcome = OrderOutcome(plan=run.plan, error=detail)

    def _create(self, run: _OrderRun) -> None:
        log.info(
            "Creating order %s for %s",
            run.plan.name,
            ", ".join(i.value for i in run.plan.identifiers),
        )
        run.handle = self._ca.create_order(run.plan.identifiers)
        run.authorizations = list(self._ca.get_authorizations(run.handle))
        for authz in run.authorizations:
            if authz.status not in (
                AuthorizationStatus.PENDING,
                AuthorizationStatus.PROCESSING,
                AuthorizationStatus.VALID,
            ):
                raise AuthorizationInvalid(
                    authz.identifier,
                    authz.error or f"status is {authz.status}",
                )

    def _validate(self, runs: list[_OrderRun]) -> None:
        items: list[ValidationItem] = []
        owners: list[_OrderRun] = []
        for run in runs:
            if not run.active:
                continue
            for authz in run.authorizations:
                if authz.status == AuthorizationStatus.VALID:
                    log.debug("Authorization of %s is already valid", authz.identifier.value)
                    continue
                items.append(ValidationItem(authz, self._validator, run.plan.name))
                owners.append(run)
        if not items:
            return

        scheduler = ValidationScheduler(self._ca, self._validation_settings, self._cancel)
        outcomes = scheduler.run(items)
        for run, outcome in zip(owners, outcomes, strict=True):
            if outcome.valid or not run.active:
                continue
            exc = AuthorizationInvalid(outcome.authorization.identifier, outcome.reason or "invalid")
            with log_context(order_name=run.plan.name):
                log.error("Order %s failed: %s", run.plan.name, exc.detail)
            run.outcome = OrderOutcome(plan=run.plan, error=exc.detail)

    def _issue(
        self,
        run: _OrderRun,
        user_csr: bytes | None,
        reuse_key: PrivateKeyTypes | None,
        friendly_name: str | None,
    ) -> None:
        plan = run.plan
        csr = self._csr.process(
            plan.identifiers,
            plan.common_name,
            user_csr=user_csr,
            reuse_key=reuse_key,
        )
        log.info("Submitting CSR for order %s", plan.name)
        pending = self._ca.submit_csr(run.handle, csr.csr_der)
        policy = PollPolicy(
            attempts=self._settings.issuance_poll_attempts,
            interval_seconds=self._settings.issuance_poll_interval_seconds,
        )
        try:
            raw = poll_until(
                lambda: self._ca.poll_for_certificate(pending),
                lambda r: r is not None,
                policy,
                cancel=self._cancel,
                description=f"certificate of order {plan.name}",
            )
        except PollExhausted as exc:
            msg = f"Certificate for order {plan.name} was not issued after {exc.attempts} attempt(s)"
            raise IssuanceTimeout(msg) from exc

        label = friendly_name or (plan.common_name or plan.identifiers[0]).value
        try:
            bundle = PfxBundle.from_pem(
                raw,
                csr.private_key,
                protection_mode=self._protection_mode,
                password=self._password,
                friendly_name=f"{label} @ {datetime.now(UTC):%Y/%m/%d}",
            )
            info = assemble(bundle)
        except (ValueError, TypeError) as exc:
            msg = f"Unable to read the certificate issued for order {plan.name}: {exc}"
            raise BundleUnreadable(msg) from exc
        log.info("Issued certificate %s for order %s", info.thumbprint, plan.name)
        run.outcome = OrderOutcome(plan=plan, certificate=info)
        self._on_issued(run.outcome)

    def _apply_strict(self, runs: list[_OrderRun]) -> None:
        if not self._settings.strict:
            return
        failed = [r for r in runs if r.outcome is not None and not r.outcome.success]
        if not failed:
            return
        reason = f"Aborted because order {failed[0].plan.name} failed (strict mode)"
        for run in runs:
            if run.active:
                log.warning("Order %s: %s", run.plan.name, reason)
                run.outcome = OrderOutcome(plan=run.plan, error=reason)
