"""Abstract base class for challenge validators.

All validators (built-in and custom) inherit from :class:`Validator`
and implement :meth:`Validator.prepare_challenge`.  A validation run
drives each validator instance through four phases:

1. ``prepare_challenge`` once per authorization it answers,
2. ``commit`` once, after every preparation succeeded,
3. the authority verifies out of band,
4. ``cleanup`` once, always, even when an earlier phase failed.

:attr:`Validator.parallelism` declares which of these phases may run
concurrently for several authorizations.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from acmerenew.core.types import ChallengeType, IdentifierType, ParallelOperations

if TYPE_CHECKING:
    from acmerenew.ca.base import Authorization, ChallengeDetails
    from acmerenew.core.context import PluginContext
    from acmerenew.core.identifiers import Identifier
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationContext:
    """The authorization a challenge is prepared for."""

    identifier: Identifier
    authorization: Authorization
    order_name: str = "main"


class Validator(abc.ABC):
    """Base class for all challenge validators.

    Parameters
    ----------
    options:
        Plugin options from the renewal definition.
    context:
        Shared services (settings, secrets, cancellation).

    """

    challenge_type: ClassVar[ChallengeType]
    """The challenge type this validator answers."""

    parallelism: ClassVar[ParallelOperations] = ParallelOperations.NONE
    """Phases that may run concurrently for several authorizations."""

    supported_identifier_types: ClassVar[frozenset[IdentifierType]] = frozenset(
        {IdentifierType.DNS},
    )

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        self.options = options
        self.context = context

    def supports_identifier(self, identifier: Identifier) -> bool:
        return identifier.type in self.supported_identifier_types

    @abc.abstractmethod
    def prepare_challenge(
        self,
        context: ValidationContext,
        challenge: ChallengeDetails,
    ) -> None:
        """Provision whatever the authority needs to verify *challenge*.

        Raise :class:`ValidationFailure` when provisioning fails.
        """

    def commit(self) -> None:  # noqa: B027
        """Activate prepared state (e.g. start a listener).

        Called once per validator instance after all preparations.
        Must be idempotent.  Default implementation is a no-op.
        """

    def cleanup(self) -> None:  # noqa: B027
        """Remove provisioned state.

        Called once per validator instance, even if :meth:`commit` was
        never reached or failed part way.  Default implementation is a
        no-op.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.challenge_type}>"
