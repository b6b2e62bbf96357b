"""Renewal definition: which plugins produce, validate, store and
install the certificate for one configured renewal."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from acmerenew.core.errors import ConfigurationError


@dataclass(frozen=True)
class PluginOptions:
    """Reference to a registered plugin plus its options.

    ``plugin`` is either the plugin's UUID or its trigger name.
    """

    plugin: str
    options: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        return self.options.get(key, default)


def _build_plugin_options(data: dict | str | None, label: str) -> PluginOptions:
    if isinstance(data, str):
        return PluginOptions(plugin=data)
    d = data or {}
    plugin = d.get("plugin")
    if not plugin:
        msg = f"Renewal {label} is missing the 'plugin' key"
        raise ConfigurationError(msg)
    options = {k: v for k, v in d.items() if k != "plugin"}
    return PluginOptions(plugin=str(plugin), options=options)


@dataclass(frozen=True)
class Renewal:
    """One renewal definition.

    Attributes
    ----------
    id:
        Stable identifier, used for cache and history file names.
    friendly_name:
        Label used in logs and notifications (defaults to the id).
    target:
        Target plugin that generates the :class:`Target`.
    validation:
        Validation plugin answering the challenges.
    stores:
        Store plugins, applied in order.
    installations:
        Installation plugins, applied in order after all stores.
    password:
        Secret reference protecting cached bundles.  Falls back to
        ``cache.password`` from settings.
    order_mode:
        Overrides ``order.mode`` from settings for this renewal.

    """

    id: str
    target: PluginOptions
    validation: PluginOptions
    stores: tuple[PluginOptions, ...] = ()
    installations: tuple[PluginOptions, ...] = ()
    friendly_name: str | None = None
    password: str | None = None
    order_mode: str | None = None

    @property
    def label(self) -> str:
        return self.friendly_name or self.id

    def __str__(self) -> str:
        return self.label


def renewal_from_dict(data: dict) -> Renewal:
    """Build a :class:`Renewal` from its YAML/JSON mapping."""
    renewal_id = data.get("id")
    if not renewal_id:
        msg = "Renewal definition is missing 'id'"
        raise ConfigurationError(msg)
    return Renewal(
        id=str(renewal_id),
        friendly_name=data.get("friendly_name"),
        target=_build_plugin_options(data.get("target"), "target"),
        validation=_build_plugin_options(data.get("validation"), "validation"),
        stores=tuple(
            _build_plugin_options(s, f"stores[{i}]") for i, s in enumerate(data.get("stores", []))
        ),
        installations=tuple(
            _build_plugin_options(s, f"installations[{i}]")
            for i, s in enumerate(data.get("installations", []))
        ),
        password=data.get("password"),
        order_mode=data.get("order_mode"),
    )
