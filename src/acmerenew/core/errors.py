"""Error taxonomy for the renewal pipeline.

Every error carries a human-readable ``detail`` (what ends up in the
renewal history) and a ``retryable`` flag used by the polling helpers.

Propagation rules:

- :class:`ConfigurationError` and :class:`RenewalCancelled` abort the
  whole run.
- :class:`OrderError` subclasses are contained to a single order.
- :class:`PlatformIncompatibility` triggers the legacy protection-mode
  retry in the store engine.
- :class:`TransientProtocolError` is retried by the wait steps.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmerenew.core.identifiers import Identifier


class RenewalError(Exception):
    """Base class for all pipeline errors.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class ConfigurationError(RenewalError):
    """Malformed target, options or settings. Fatal, never retried."""


class TransientProtocolError(RenewalError):
    """Network or certificate-authority hiccup."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=True)


class ValidationFailure(RenewalError):
    """A challenge could not be prepared, served or was judged invalid."""


class PlatformIncompatibility(RenewalError):
    """The storage platform rejected the bundle's protection mode."""


class Unrecoverable(RenewalError):
    """Anything else that must surface in the renewal result."""


class RenewalCancelled(RenewalError):
    """The caller cancelled the run."""

    def __init__(self, detail: str = "Renewal cancelled") -> None:
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Order-level errors
# ---------------------------------------------------------------------------


class OrderError(RenewalError):
    """Failure contained to a single order."""


class OrderCreationFailed(OrderError):
    pass


class AuthorizationInvalid(OrderError):
    """An authorization for *identifier* did not validate."""

    def __init__(self, identifier: Identifier | str, reason: str) -> None:
        self.identifier = identifier
        self.reason = reason
        value = getattr(identifier, "value", identifier)
        super().__init__(f"Authorization for {value} is invalid: {reason}")


class CsrRejected(OrderError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"CSR rejected: {reason}")


class IssuanceTimeout(OrderError):
    pass


class BundleUnreadable(OrderError):
    """The authority returned a certificate that cannot be parsed."""


# ---------------------------------------------------------------------------
# CSR / certificate errors
# ---------------------------------------------------------------------------


class UnsupportedKeyType(ConfigurationError):
    pass


class CsrIdentifierMismatch(OrderError):
    pass


class EmptyBundle(RenewalError):
    def __init__(self, detail: str = "Certificate bundle contains no certificates") -> None:
        super().__init__(detail)


class InstallationFailed(OrderError):
    """A store or installation step failed for an issued certificate."""
