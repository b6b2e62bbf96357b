"""Explicit plugin registry.

Each capability variant (target, validation, store, installation) is
registered under a stable UUID and a short trigger name and resolved to
a factory callable.  Renewal definitions reference plugins by either.
The built-in plugins are listed in ``_BUILTIN_*`` tables and loaded by
:func:`default_registries`; extensions call :meth:`PluginRegistry.register`
at startup.

Usage::

    registries = default_registries()
    factory = registries.validation.get("selfhosting")
    validator = factory(options, context)
"""

from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from acmerenew.core.errors import ConfigurationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginEntry:
    """One registered plugin."""

    id: UUID
    trigger: str
    description: str
    factory: Any


class PluginRegistry:
    """Maps plugin ids and trigger names to factories for one capability.

    Parameters
    ----------
    kind:
        Capability name, used in error messages (``"validation"``, ...).

    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._by_id: dict[UUID, PluginEntry] = {}
        self._by_trigger: dict[str, PluginEntry] = {}
        self._lock = threading.Lock()

    def register(
        self,
        plugin_id: UUID | str,
        trigger: str,
        factory: Any,  # noqa: ANN401
        description: str = "",
    ) -> PluginEntry:
        """Register *factory*; duplicates of id or trigger are rejected."""
        entry = PluginEntry(
            id=UUID(str(plugin_id)),
            trigger=trigger.lower(),
            description=description,
            factory=factory,
        )
        with self._lock:
            if entry.id in self._by_id:
                msg = f"Duplicate {self.kind} plugin id {entry.id}"
                raise ConfigurationError(msg)
            if entry.trigger in self._by_trigger:
                msg = f"Duplicate {self.kind} plugin trigger '{entry.trigger}'"
                raise ConfigurationError(msg)
            self._by_id[entry.id] = entry
            self._by_trigger[entry.trigger] = entry
        log.debug("Registered %s plugin %s (%s)", self.kind, entry.trigger, entry.id)
        return entry

    def resolve(self, key: UUID | str) -> PluginEntry:
        """Look up a plugin by UUID (or its string form) or trigger name.

        Raises
        ------
        ConfigurationError
            If nothing is registered under *key*.

        """
        entry: PluginEntry | None = None
        if isinstance(key, UUID):
            entry = self._by_id.get(key)
        else:
            entry = self._by_trigger.get(key.lower())
            if entry is None:
                try:
                    entry = self._by_id.get(UUID(key))
                except ValueError:
                    entry = None
        if entry is None:
            msg = f"No {self.kind} plugin registered for '{key}'"
            raise ConfigurationError(msg)
        return entry

    def get(self, key: UUID | str) -> Any:  # noqa: ANN401
        """Return the factory registered under *key*."""
        return self.resolve(key).factory

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (UUID, str)):
            return False
        try:
            self.resolve(key)
        except ConfigurationError:
            return False
        return True

    def __iter__(self):
        with self._lock:
            return iter(list(self._by_id.values()))

    def __len__(self) -> int:
        return len(self._by_id)


# ---------------------------------------------------------------------------
# Built-in plugins
# ---------------------------------------------------------------------------

# kind -> [(uuid, trigger, module path, factory name, description)]
_BUILTIN_PLUGINS: dict[str, list[tuple[str, str, str, str, str]]] = {
    "target": [
        (
            "e239db3b-b42f-48aa-b64f-46d4f3e9941b",
            "manual",
            "acmerenew.targets.manual",
            "ManualTarget",
            "Manually entered host names",
        ),
    ],
    "validation": [
        (
            "1c77b3a4-5310-4c46-92c6-00d866e84d6b",
            "filesystem",
            "acmerenew.validation.filesystem",
            "FileSystemValidator",
            "Save verification files on (network) path",
        ),
        (
            "4c9a4c3f-9eb1-4a9a-a7d2-2c7ea9e5a82e",
            "selfhosting",
            "acmerenew.validation.selfhosting",
            "SelfHostingValidator",
            "Serve verification files from memory",
        ),
        (
            "8f1da72e-f727-49f0-8615-1f42b8d0f2e5",
            "script-dns",
            "acmerenew.validation.dns01",
            "ScriptDnsValidator",
            "Create verification records with your own script",
        ),
    ],
    "store": [
        (
            "e57c70e4-cd60-4ba6-80f6-a41703e21031",
            "pemfiles",
            "acmerenew.store.pemfiles",
            "PemFilesStore",
            "PEM encoded files",
        ),
        (
            "2a2c576f-7637-4ade-b8db-e8613f5db1ba",
            "pfxfile",
            "acmerenew.store.pfxfile",
            "PfxFileStore",
            "PFX archive per host name",
        ),
        (
            "b5b9f2d8-2b2c-4fb1-8e77-8c1a8a4df8a1",
            "keystore",
            "acmerenew.store.keystore",
            "KeyStore",
            "Platform key store",
        ),
    ],
    "installation": [
        (
            "3bb22c70-358d-4251-86bd-11858363d913",
            "script",
            "acmerenew.store.script",
            "ScriptInstaller",
            "Start external script or program",
        ),
    ],
}


@dataclass(frozen=True)
class Registries:
    """The four capability registries passed down the call chain."""

    target: PluginRegistry
    validation: PluginRegistry
    store: PluginRegistry
    installation: PluginRegistry


def default_registries() -> Registries:
    """Build fresh registries pre-populated with the built-in plugins."""
    registries = Registries(
        target=PluginRegistry("target"),
        validation=PluginRegistry("validation"),
        store=PluginRegistry("store"),
        installation=PluginRegistry("installation"),
    )
    for kind, entries in _BUILTIN_PLUGINS.items():
        registry: PluginRegistry = getattr(registries, kind)
        for plugin_id, trigger, mod_path, name, description in entries:
            module = importlib.import_module(mod_path)
            registry.register(plugin_id, trigger, getattr(module, name), description)
    return registries
