"""Secret reference evaluation.

Configured passwords may be literal values or references:

- ``env://NAME`` reads an environment variable,
- ``file://path`` reads the (stripped) content of a file,
- ``vault://json/<key>`` reads a key from the JSON vault file.

Anything else is returned unchanged.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from acmerenew.core.errors import ConfigurationError

log = logging.getLogger(__name__)

_ENV_PREFIX = "env://"
_FILE_PREFIX = "file://"
_VAULT_PREFIX = "vault://json/"


class SecretService:
    """Resolves secret references to plaintext.

    Parameters
    ----------
    vault_file:
        Path of the JSON vault backing ``vault://json/`` references.
        ``None`` disables the vault.

    """

    def __init__(self, vault_file: str | Path | None = None) -> None:
        self._vault_file = Path(vault_file) if vault_file else None
        self._vault: dict[str, str] | None = None
        self._lock = threading.Lock()

    def evaluate(self, reference: str | None) -> str | None:
        """Resolve *reference*; ``None`` and ``""`` pass through."""
        if not reference:
            return reference
        if reference.startswith(_ENV_PREFIX):
            name = reference[len(_ENV_PREFIX) :]
            value = os.environ.get(name)
            if value is None:
                msg = f"Environment variable '{name}' referenced by secret is not set"
                raise ConfigurationError(msg)
            return value
        if reference.startswith(_FILE_PREFIX):
            path = Path(reference[len(_FILE_PREFIX) :])
            try:
                return path.read_text(encoding="utf-8").strip()
            except OSError as exc:
                msg = f"Unable to read secret file {path}: {exc}"
                raise ConfigurationError(msg) from exc
        if reference.startswith(_VAULT_PREFIX):
            key = reference[len(_VAULT_PREFIX) :]
            vault = self._load_vault()
            if key not in vault:
                msg = f"Secret '{key}' not found in vault"
                raise ConfigurationError(msg)
            return vault[key]
        return reference

    def _load_vault(self) -> dict[str, str]:
        with self._lock:
            if self._vault is not None:
                return self._vault
            if self._vault_file is None:
                msg = "vault:// secret referenced but secrets.vault_file is not configured"
                raise ConfigurationError(msg)
            try:
                with self._vault_file.open(encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as exc:
                msg = f"Unable to load secret vault {self._vault_file}: {exc}"
                raise ConfigurationError(msg) from exc
            if not isinstance(data, dict):
                msg = f"Secret vault {self._vault_file} must contain a JSON object"
                raise ConfigurationError(msg)
            self._vault = {str(k): str(v) for k, v in data.items()}
            log.debug("Loaded %d secret(s) from vault", len(self._vault))
            return self._vault
