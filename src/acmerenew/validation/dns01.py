"""Script driven dns-01 validator.

TXT records are created and deleted by user supplied executables::

    <create_script> create <identifier> <record name> <record value>
    <delete_script> delete <identifier> <record name> <record value>

Before the challenge is answered the validator optionally checks that
every record is visible through DNS, so the authority does not query
a zone that has not propagated yet.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import dns.exception
import dns.resolver

from acmerenew.ca.base import dns_record_name
from acmerenew.core.cancellation import NEVER_CANCELLED
from acmerenew.core.errors import ConfigurationError, ValidationFailure
from acmerenew.core.retry import PollExhausted, PollPolicy, poll_until
from acmerenew.core.types import ChallengeType, ParallelOperations
from acmerenew.logging.sanitize import sanitize_command
from acmerenew.validation.base import ValidationContext, Validator

if TYPE_CHECKING:
    from acmerenew.ca.base import ChallengeDetails
    from acmerenew.core.context import PluginContext
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Record:
    identifier: str
    name: str
    value: str


def lookup_txt(
    name: str,
    *,
    resolvers: tuple[str, ...] = (),
    timeout: float = 10,
) -> list[str]:
    """Return the TXT values at *name*, empty when absent."""
    resolver = dns.resolver.Resolver()
    if resolvers:
        resolver.nameservers = list(resolvers)
    resolver.lifetime = timeout
    try:
        answer = resolver.resolve(name, "TXT")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return []
    except dns.exception.DNSException as exc:
        log.debug("TXT lookup for %s failed: %s", name, exc)
        return []
    # TXT rdata has .strings, a tuple of bytes segments; concatenate them.
    return [b"".join(rdata.strings).decode("ascii", errors="replace") for rdata in answer]


class ScriptDnsValidator(Validator):
    """Answers dns-01 by running external scripts.

    Options
    -------
    create_script / delete_script:
        Override ``validation.dns.create_script`` / ``delete_script``.

    """

    challenge_type = ChallengeType.DNS_01
    parallelism = ParallelOperations.NONE

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        dns_settings = context.settings.validation.dns if context else None
        self._create = (options.get("create_script") if options else None) or getattr(
            dns_settings, "create_script", None
        )
        self._delete = (options.get("delete_script") if options else None) or getattr(
            dns_settings, "delete_script", None
        )
        if not self._create:
            msg = "Script DNS validation requires a create_script"
            raise ConfigurationError(msg)
        self._script_timeout = getattr(dns_settings, "script_timeout_seconds", 60)
        self._preliminary = getattr(dns_settings, "preliminary_validation", True)
        self._resolvers = tuple(getattr(dns_settings, "resolvers", ()))
        self._attempts = getattr(dns_settings, "propagation_attempts", 10)
        self._interval = getattr(dns_settings, "propagation_interval_seconds", 5.0)
        self._dns_timeout = getattr(dns_settings, "timeout_seconds", 10)
        self._records: list[_Record] = []
        self._lock = threading.Lock()

    # -- scripts ------------------------------------------------------------

    def _run(self, script: str, action: str, record: _Record) -> None:
        args = [script, action, record.identifier, record.name, record.value]
        printable = sanitize_command(args, ())
        log.info("Running %s", printable)
        try:
            proc = subprocess.run(  # noqa: S603
                args,
                capture_output=True,
                text=True,
                timeout=self._script_timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            msg = f"DNS script '{script}' could not complete: {exc}"
            raise ValidationFailure(msg) from exc
        if proc.stdout.strip():
            log.debug("Script output: %s", proc.stdout.strip())
        if proc.returncode != 0:
            msg = (
                f"DNS script '{script}' exited with code {proc.returncode}: "
                f"{proc.stderr.strip() or proc.stdout.strip()}"
            )
            raise ValidationFailure(msg)

    # -- lifecycle ----------------------------------------------------------

    def prepare_challenge(
        self,
        context: ValidationContext,
        challenge: ChallengeDetails,
    ) -> None:
        record = _Record(
            identifier=context.identifier.value,
            name=dns_record_name(context.identifier),
            value=challenge.dns_value,
        )
        self._run(self._create, "create", record)
        with self._lock:
            self._records.append(record)

    def commit(self) -> None:
        if not self._preliminary:
            return
        with self._lock:
            records = list(self._records)
        cancel = self.context.cancel if self.context else NEVER_CANCELLED
        policy = PollPolicy(
            attempts=self._attempts,
            interval_seconds=self._interval,
            max_interval_seconds=self._interval,
        )
        for record in records:
            try:
                poll_until(
                    lambda name=record.name: lookup_txt(
                        name,
                        resolvers=self._resolvers,
                        timeout=self._dns_timeout,
                    ),
                    lambda values, value=record.value: value in values,
                    policy,
                    cancel=cancel,
                    description=f"TXT record {record.name}",
                )
            except PollExhausted as exc:
                log.warning(
                    "Record %s not visible after %d attempt(s), answering anyway",
                    record.name,
                    exc.attempts,
                )
            else:
                log.debug("Record %s is visible", record.name)

    def cleanup(self) -> None:
        with self._lock:
            records, self._records = self._records, []
        if not self._delete:
            return
        for record in records:
            try:
                self._run(self._delete, "delete", record)
            except ValidationFailure as exc:
                log.warning("Unable to delete record %s: %s", record.name, exc.detail)
