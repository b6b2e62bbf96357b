"""Renewal executor: the top-level state machine for one renewal run.

::

    IDLE -> CACHE_CHECK -+-> INSTALLING                              (all cached)
                         +-> ORDERING -> VALIDATING -> ISSUING -> INSTALLING
                                                   -> COMPLETED | FAILED | ABORTED

Every call of :meth:`RenewalExecutor.execute` returns exactly one
:class:`RenewResult`, whatever happens: order-level failures are kept in
their :class:`OrderResult`, cancellation yields an aborted result and
any other exception becomes an error result that still carries the
:class:`OrderResult` of every order completed before it was raised.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from acmerenew.cache.policy import CertificateCache
from acmerenew.core.cancellation import NEVER_CANCELLED, CancellationToken
from acmerenew.core.context import PluginContext
from acmerenew.core.errors import ConfigurationError, RenewalCancelled, RenewalError
from acmerenew.core.registry import default_registries
from acmerenew.core.secrets import SecretService
from acmerenew.core.types import TERMINAL_STATES, RenewalState
from acmerenew.csr.processor import CsrProcessor
from acmerenew.logging.setup import log_context
from acmerenew.models.order import OrderOutcome
from acmerenew.models.result import OrderResult, RenewResult
from acmerenew.ordering.coordinator import OrderCoordinator, plan_orders
from acmerenew.store.engine import StoreInstallEngine

if TYPE_CHECKING:
    from acmerenew.ca.base import CertificateAuthorityClient
    from acmerenew.config.settings import RenewSettings
    from acmerenew.core.registry import Registries
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.order import OrderPlan
    from acmerenew.models.renewal import Renewal
    from acmerenew.models.target import Target

log = logging.getLogger(__name__)


class RenewalExecutor:
    """Runs renewals against one certificate authority.

    Parameters
    ----------
    settings:
        Full settings tree.
    ca:
        Certificate authority client.
    registries:
        Plugin registries; defaults to the built-in plugins.
    secrets:
        Secret reference resolver; defaults to one backed by
        ``secrets.vault_file``.
    cache:
        Certificate cache; defaults to one built from ``settings.cache``.
    cancel:
        Cancellation token observed between and within phases.

    """

    def __init__(
        self,
        settings: RenewSettings,
        ca: CertificateAuthorityClient,
        *,
        registries: Registries | None = None,
        secrets: SecretService | None = None,
        cache: CertificateCache | None = None,
        cancel: CancellationToken = NEVER_CANCELLED,
    ) -> None:
        self._settings = settings
        self._ca = ca
        self._registries = registries or default_registries()
        self._secrets = secrets or SecretService(settings.secrets.vault_file)
        self._cache = cache or CertificateCache(settings.cache, self._secrets)
        self._cancel = cancel
        self._lock = threading.Lock()
        self._state = RenewalState.IDLE
        self.transitions: list[RenewalState] = [RenewalState.IDLE]
        self._completed: dict[str, OrderOutcome] = {}
        self._results: dict[str, OrderResult] = {}

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> RenewalState:
        return self._state

    def _enter(self, state: RenewalState) -> None:
        with self._lock:
            if self._state == state:
                return
            log.debug("State %s -> %s", self._state, state)
            self._state = state
            self.transitions.append(state)

    # -- public -------------------------------------------------------------

    def execute(
        self,
        renewal: Renewal,
        *,
        force: bool = False,
        no_cache: bool = False,
        previous: RenewResult | None = None,
    ) -> RenewResult:
        """Run *renewal* once and return its result.

        Parameters
        ----------
        renewal:
            The renewal definition.
        force:
            Ignore cached certificates.
        no_cache:
            Ignore and delete cached certificates.
        previous:
            Last successful result, used to find the certificates this
            run replaces.

        """
        with self._lock:
            self._state = RenewalState.IDLE
            self.transitions = [RenewalState.IDLE]
            self._completed = {}
            self._results = {}
        with log_context(renewal_id=renewal.id):
            log.info("Renewing %s", renewal.label)
            try:
                result = self._execute(renewal, force=force, no_cache=no_cache, previous=previous)
            except RenewalCancelled:
                log.warning("Renewal %s was cancelled", renewal.label)
                self._enter(RenewalState.ABORTED)
                return RenewResult.aborted()
            except RenewalError as exc:
                log.error("Renewal %s failed: %s", renewal.label, exc.detail)
                self._enter(RenewalState.FAILED)
                return RenewResult.from_error(exc.detail, self._partial_results(exc.detail))
            except Exception as exc:
                log.exception("Unexpected error renewing %s", renewal.label)
                self._enter(RenewalState.FAILED)
                detail = str(exc) or type(exc).__name__
                return RenewResult.from_error(detail, self._partial_results(detail))

            self._enter(RenewalState.COMPLETED if result.success else RenewalState.FAILED)
            log.info("%s", result)
            return result

    # -- phases -------------------------------------------------------------

    def _execute(
        self,
        renewal: Renewal,
        *,
        force: bool,
        no_cache: bool,
        previous: RenewResult | None,
    ) -> RenewResult:
        context = PluginContext(
            settings=self._settings,
            secrets=self._secrets,
            renewal=renewal,
            cancel=self._cancel,
        )
        target = self._generate_target(renewal, context)
        plans = plan_orders(target, renewal.order_mode or self._settings.order.mode)

        self._enter(RenewalState.CACHE_CHECK)
        outcomes: dict[str, OrderOutcome] = {}
        for plan in plans:
            cached = self._cache.lookup(
                renewal,
                plan.name,
                plan.identifiers,
                force=force,
                no_cache=no_cache,
            )
            if cached is not None:
                outcomes[plan.name] = OrderOutcome(plan=plan, certificate=cached, from_cache=True)
                self._completed[plan.name] = outcomes[plan.name]

        misses = [p for p in plans if p.name not in outcomes]
        if misses:
            self._cancel.raise_if_cancelled()
            for outcome in self._order(renewal, context, target, misses):
                outcomes[outcome.plan.name] = outcome

        self._cancel.raise_if_cancelled()
        order_results = self._install(renewal, context, plans, outcomes, previous)
        return RenewResult.from_orders(order_results)

    def _generate_target(self, renewal: Renewal, context: PluginContext) -> Target:
        factory = self._registries.target.get(renewal.target.plugin)
        target = factory(renewal.target, context).generate()
        if target is None:
            msg = f"Target plugin '{renewal.target.plugin}' produced no target"
            raise ConfigurationError(msg)
        log.info("Target: %s", target)
        return target

    def _order(
        self,
        renewal: Renewal,
        context: PluginContext,
        target: Target,
        plans: list[OrderPlan],
    ) -> list[OrderOutcome]:
        validator = self._registries.validation.get(renewal.validation.plugin)(
            renewal.validation,
            context,
        )
        reuse_keys = {}
        if self._settings.csr.reuse_private_key:
            for plan in plans:
                key = self._cache.private_key(renewal, plan.name)
                if key is not None:
                    reuse_keys[plan.name] = key

        coordinator = OrderCoordinator(
            self._ca,
            validator,
            CsrProcessor(self._settings.csr),
            self._settings.order,
            self._settings.validation,
            protection_mode=self._settings.cache.protection_mode,
            bundle_password=self._cache.password(renewal),
            cancel=self._cancel,
            on_state=self._enter,
            on_issued=lambda outcome: self._issued(renewal, outcome),
        )
        return coordinator.execute(
            plans,
            user_csr=target.user_csr,
            reuse_keys=reuse_keys,
            friendly_name=renewal.friendly_name or target.friendly_name,
        )

    def _issued(self, renewal: Renewal, outcome: OrderOutcome) -> None:
        self._completed[outcome.plan.name] = outcome
        try:
            self._cache.store(renewal, outcome.plan.name, outcome.certificate)
        except (OSError, RenewalError) as exc:
            log.warning("Unable to cache certificate for order %s: %s", outcome.plan.name, exc)

    def _partial_results(self, detail: str) -> list[OrderResult]:
        """Results of the orders that completed before the run failed."""
        results = list(self._results.values())
        for name, outcome in self._completed.items():
            if name in self._results:
                continue
            cert = outcome.certificate
            results.append(
                OrderResult(
                    name=name,
                    thumbprint=cert.thumbprint,
                    expire_date=cert.expire_date,
                    success=False,
                    error=f"Not installed: {detail}",
                ),
            )
        return results

    def _previous_certificates(
        self,
        renewal: Renewal,
        previous: RenewResult | None,
    ) -> dict[str, CertificateInfo]:
        found: dict[str, CertificateInfo] = {}
        if previous is None:
            return found
        for order in previous.order_results:
            if not order.thumbprint:
                continue
            cert = self._cache.find_by_thumbprint(renewal, order.thumbprint)
            if cert is not None:
                found[order.name] = cert
        return found

    def _install(
        self,
        renewal: Renewal,
        context: PluginContext,
        plans: list[OrderPlan],
        outcomes: dict[str, OrderOutcome],
        previous: RenewResult | None,
    ) -> list[OrderResult]:
        issued = [outcomes[p.name] for p in plans if outcomes[p.name].success]
        engine = None
        replaced: dict[str, CertificateInfo] = {}
        if issued:
            self._enter(RenewalState.INSTALLING)
            stores = [
                self._registries.store.get(p.plugin)(p, context) for p in renewal.stores
            ]
            installers = [
                self._registries.installation.get(p.plugin)(p, context)
                for p in renewal.installations
            ]
            engine = StoreInstallEngine(
                stores,
                installers,
                keep_existing=self._settings.store.keep_existing,
            )
            replaced = self._previous_certificates(renewal, previous)

        for plan in plans:
            outcome = outcomes[plan.name]
            if not outcome.success:
                self._results[plan.name] = OrderResult(
                    name=plan.name,
                    success=False,
                    error=outcome.error,
                )
                continue
            cert = outcome.certificate
            error = None
            with log_context(order_name=plan.name):
                self._cancel.raise_if_cancelled()
                try:
                    engine.run(cert, replaced.get(plan.name))
                except (RenewalCancelled, ConfigurationError):
                    raise
                except RenewalError as exc:
                    error = exc.detail
                    log.error("Installing order %s failed: %s", plan.name, error)
                except Exception as exc:
                    error = str(exc) or type(exc).__name__
                    log.exception("Installing order %s failed", plan.name)
            self._results[plan.name] = OrderResult(
                name=plan.name,
                thumbprint=cert.thumbprint,
                expire_date=cert.expire_date,
                success=error is None,
                error=error,
            )
        return list(self._results.values())

    @property
    def finished(self) -> bool:
        return self._state in TERMINAL_STATES
