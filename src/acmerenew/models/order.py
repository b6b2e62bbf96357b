"""Order planning and per-order outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmerenew.core.identifiers import Identifier
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.target import TargetPart

MAIN_ORDER = "main"


@dataclass(frozen=True)
class OrderPlan:
    """One certificate request to place.

    Attributes
    ----------
    name:
        ``main``, ``site-<id>`` or ``host-<identifier>``; used for cache
        file names and in the renewal history.
    identifiers:
        Identifiers the certificate must cover.
    common_name:
        Preferred subject CN, if any.
    parts:
        Target parts merged into this order.

    """

    name: str
    identifiers: tuple[Identifier, ...]
    common_name: Identifier | None
    parts: tuple[TargetPart, ...]


@dataclass(frozen=True)
class OrderOutcome:
    """Result of driving one :class:`OrderPlan` to issuance."""

    plan: OrderPlan
    certificate: CertificateInfo | None = None
    error: str | None = None
    from_cache: bool = False

    @property
    def success(self) -> bool:
        return self.certificate is not None and self.error is None
