"""Services handed to plugin factories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmerenew.config.settings import RenewSettings
    from acmerenew.core.cancellation import CancellationToken
    from acmerenew.core.secrets import SecretService
    from acmerenew.models.renewal import Renewal


@dataclass(frozen=True)
class PluginContext:
    """Everything a plugin may depend on, passed explicitly.

    Plugin factories are called as ``factory(options, context)``.
    """

    settings: RenewSettings
    secrets: SecretService
    renewal: Renewal
    cancel: CancellationToken
