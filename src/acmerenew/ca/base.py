"""Certificate authority client contract.

The pipeline never speaks the ACME wire protocol itself; it drives an
implementation of :class:`CertificateAuthorityClient` supplied by the
caller.  Implementations raise :class:`TransientProtocolError` for
network hiccups (retried by the polling helpers) and the order-level
errors from :mod:`acmerenew.core.errors` for definitive failures.
"""

from __future__ import annotations

import abc
import base64
import hashlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from acmerenew.core.types import AuthorizationStatus, ChallengeType

if TYPE_CHECKING:
    from acmerenew.core.identifiers import Identifier

log = logging.getLogger(__name__)

HTTP_CHALLENGE_PATH = "/.well-known/acme-challenge/"
DNS_CHALLENGE_PREFIX = "_acme-challenge."


@dataclass(frozen=True)
class ChallengeDetails:
    """One challenge offered for an authorization.

    Attributes
    ----------
    type:
        Challenge mechanism.
    token:
        Token chosen by the authority.
    key_authorization:
        ``token.thumbprint(account key)``, computed by the client.
    url:
        Opaque handle the client uses to answer the challenge.

    """

    type: ChallengeType
    token: str
    key_authorization: str
    url: str = ""

    @property
    def http_path(self) -> str:
        """Request path the authority fetches for ``http-01``."""
        return f"{HTTP_CHALLENGE_PATH}{self.token}"

    @property
    def dns_value(self) -> str:
        """TXT record value for ``dns-01``."""
        digest = hashlib.sha256(self.key_authorization.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def dns_record_name(identifier: Identifier) -> str:
    """TXT record name for a ``dns-01`` challenge on *identifier*."""
    return DNS_CHALLENGE_PREFIX + identifier.value.removeprefix("*.")


@dataclass(frozen=True)
class Authorization:
    """Proof obligation for one identifier of an order."""

    identifier: Identifier
    status: AuthorizationStatus
    challenges: tuple[ChallengeDetails, ...] = ()
    url: str = ""
    error: str | None = None

    def challenge(self, challenge_type: ChallengeType) -> ChallengeDetails | None:
        return next((c for c in self.challenges if c.type == challenge_type), None)


@dataclass(frozen=True)
class OrderHandle:
    """Order as created by the authority."""

    url: str
    identifiers: tuple[Identifier, ...]
    authorization_urls: tuple[str, ...] = ()
    status: str = "pending"


@dataclass(frozen=True)
class PendingIssuance:
    """Order whose CSR was accepted and whose certificate is pending."""

    order: OrderHandle
    location: str = ""
    extra: dict = field(default_factory=dict)


class CertificateAuthorityClient(abc.ABC):
    """Order and authorization primitives of the remote authority."""

    @abc.abstractmethod
    def create_order(self, identifiers: tuple[Identifier, ...]) -> OrderHandle:
        """Create an order covering *identifiers*.

        Raises :class:`OrderCreationFailed` when the authority refuses.
        """

    @abc.abstractmethod
    def get_authorizations(self, order: OrderHandle) -> list[Authorization]:
        """Fetch the current state of every authorization of *order*."""

    @abc.abstractmethod
    def answer_challenge(
        self,
        authorization: Authorization,
        challenge: ChallengeDetails,
    ) -> None:
        """Tell the authority the challenge is ready to be verified."""

    @abc.abstractmethod
    def poll_authorization(self, authorization: Authorization) -> Authorization:
        """Re-fetch *authorization* to observe its status."""

    @abc.abstractmethod
    def submit_csr(self, order: OrderHandle, csr_der: bytes) -> PendingIssuance:
        """Finalize *order* with a DER encoded CSR.

        Raises :class:`CsrRejected` when the authority refuses the CSR.
        """

    @abc.abstractmethod
    def poll_for_certificate(self, pending: PendingIssuance) -> bytes | None:
        """Return the PEM chain once issued, ``None`` while processing."""
