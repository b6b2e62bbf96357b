"""Configuration loader.

Lifecycle::

    # 1. The entry point creates the singleton (once, at startup)
    RenewConfig(config_file="/etc/acmerenew/config.yaml")

    # 2. Any module retrieves it afterwards
    from acmerenew.config import get_config
    cfg = get_config()
    cfg.settings.cache.reuse_days  # typed access

    # 3. Dynamic access
    cfg.get("validation.dns.resolvers", default=[])
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from acmerenew.config.settings import RenewSettings, build_settings
from acmerenew.core.errors import ConfigurationError

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_MIN_RSA_KEY_BITS = 2048

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: RenewConfig | None = None


def get_config() -> RenewConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`RenewConfig` has not been
    created yet.
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "RenewConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(ConfigurationError):
    """Raised when schema or cross-field validation finds problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _read_file(path: Path) -> dict:
    try:
        with path.open(encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as exc:
        msg = f"Unable to read configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    except (yaml.YAMLError, ValueError) as exc:
        msg = f"Unable to parse configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Configuration file {path} must contain a mapping at the top level"
        raise ConfigurationError(msg)
    return data


def _schema_errors(data: dict) -> list[str]:
    with _SCHEMA_PATH.open(encoding="utf-8") as f:
        schema = json.load(f)
    validator = jsonschema.Draft202012Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        location = ".".join(str(p) for p in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class RenewConfig:
    """Central configuration.

    The JSON schema is bundled at ``config/schema.json``.  Construction
    reads the file, resolves environment references, validates against
    the schema, runs :meth:`additional_checks` and materialises the
    typed settings tree, then registers itself as the singleton.

    Parameters
    ----------
    config_file:
        Path to the YAML/JSON configuration file.
    data:
        Raw configuration mapping, used instead of a file.

    """

    def __init__(
        self,
        *,
        config_file: str | Path | None = None,
        data: dict | None = None,
    ) -> None:
        global _instance  # noqa: PLW0603

        if config_file is not None:
            self._data = _read_file(Path(config_file))
            self._data["_source"] = str(config_file)
        else:
            self._data = copy.deepcopy(data or {})

        _resolve_env_vars(self._data)

        errors = _schema_errors({k: v for k, v in self._data.items() if k != "_source"})
        if errors:
            raise ConfigValidationError(errors)
        self.additional_checks()

        self._settings: RenewSettings = build_settings(self._data)
        _instance = self

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> RenewSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict:
        return self._data

    def get(self, path: str, default: Any = None) -> Any:  # noqa: ANN401
        """Dot-path lookup into the raw data."""
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:
        """Semantic & cross-field validation.

        Collects every problem, logs warnings and raises one
        :class:`ConfigValidationError` for the errors.
        """
        errors: list[str] = []
        warnings: list[str] = []

        cache = self._data.get("cache") or {}
        csr = self._data.get("csr") or {}
        validation = self._data.get("validation") or {}
        dns_cfg = validation.get("dns") or {}
        schedule = self._data.get("schedule") or {}
        store = self._data.get("store") or {}

        # -- CSR --
        if csr.get("key_type", "rsa") == "rsa":
            bits = csr.get("rsa_key_bits", 3072)
            if bits < _MIN_RSA_KEY_BITS:
                errors.append(
                    f"csr.rsa_key_bits ({bits}) must be >= {_MIN_RSA_KEY_BITS}",
                )

        # -- Validation --
        interval = validation.get("poll_interval_seconds", 2.0)
        max_interval = validation.get("poll_max_interval_seconds", 30.0)
        if interval > max_interval:
            errors.append(
                f"validation.poll_interval_seconds ({interval}) must be <= "
                f"validation.poll_max_interval_seconds ({max_interval})",
            )
        if dns_cfg.get("create_script") and not dns_cfg.get("delete_script"):
            warnings.append(
                "validation.dns.create_script is set but validation.dns.delete_script "
                "is not; TXT records will not be cleaned up",
            )
        selfhosting = validation.get("selfhosting") or {}
        if bool(selfhosting.get("certificate_file")) != bool(selfhosting.get("key_file")):
            errors.append(
                "validation.selfhosting.certificate_file and key_file must be set together",
            )

        # -- Schedule --
        renewal_days = schedule.get("renewal_days", 55)

        # -- Cache --
        if cache.get("reuse_days", 1) > renewal_days:
            warnings.append(
                f"cache.reuse_days ({cache.get('reuse_days')}) exceeds "
                f"schedule.renewal_days ({renewal_days}); a due renewal may "
                "reinstall its previous certificate",
            )

        # -- Store --
        keystore = store.get("keystore") or {}
        if "accepted_modes" in keystore and not keystore["accepted_modes"]:
            errors.append("store.keystore.accepted_modes must not be empty")

        # -- Renewals --
        seen: set[str] = set()
        for idx, renewal in enumerate(self._data.get("renewals", [])):
            rid = str(renewal.get("id", ""))
            if rid in seen:
                errors.append(f"renewals[{idx}].id '{rid}' is not unique")
            seen.add(rid)

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        source = self._data.get("_source", "?")
        return f"<RenewConfig config_file={source}>"


def load_settings(data: dict | None = None) -> RenewSettings:
    """Build validated settings from a mapping without touching the singleton."""
    raw = copy.deepcopy(data or {})
    _resolve_env_vars(raw)
    errors = _schema_errors(raw)
    if errors:
        raise ConfigValidationError(errors)
    return build_settings(raw)
