"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders are
what the pipeline actually reads.

Access pattern::

    from acmerenew.config import get_config

    cache = get_config().settings.cache
    print(cache.path, cache.reuse_days)
"""

from __future__ import annotations

from dataclasses import dataclass

from acmerenew.core.types import KeyType, OrderMode, ProtectionMode
from acmerenew.models.renewal import Renewal, renewal_from_dict

# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheSettings:
    """Certificate cache (path, reuse window, bundle protection)."""

    path: str
    reuse_days: int
    password: str | None
    protection_mode: ProtectionMode


def _build_cache(data: dict | None) -> CacheSettings:
    d = data or {}
    return CacheSettings(
        path=d.get("path", "cache"),
        reuse_days=d.get("reuse_days", 1),
        password=d.get("password"),
        protection_mode=ProtectionMode(d.get("protection_mode", "default")),
    )


# ---------------------------------------------------------------------------
# CSR
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CsrSettings:
    """Key type and size for generated CSRs."""

    key_type: KeyType
    rsa_key_bits: int
    ec_curve: str
    reuse_private_key: bool


def _build_csr(data: dict | None) -> CsrSettings:
    d = data or {}
    return CsrSettings(
        key_type=KeyType(d.get("key_type", "rsa")),
        rsa_key_bits=d.get("rsa_key_bits", 3072),
        ec_curve=d.get("ec_curve", "secp384r1"),
        reuse_private_key=d.get("reuse_private_key", False),
    )


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderSettings:
    """How targets are split into orders and how issuance is awaited.

    ``strict`` fails every sibling order as soon as one order fails;
    otherwise orders succeed or fail independently.
    """

    mode: OrderMode
    strict: bool
    issuance_poll_attempts: int
    issuance_poll_interval_seconds: float


def _build_order(data: dict | None) -> OrderSettings:
    d = data or {}
    return OrderSettings(
        mode=OrderMode(d.get("mode", "single")),
        strict=d.get("strict", False),
        issuance_poll_attempts=d.get("issuance_poll_attempts", 10),
        issuance_poll_interval_seconds=d.get("issuance_poll_interval_seconds", 2.0),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpValidationSettings:
    """File-system validation (webroot path, preflight check)."""

    path: str | None
    preflight: bool
    preflight_timeout_seconds: int


@dataclass(frozen=True)
class SelfHostingSettings:
    """In-process HTTP(S) listener answering http-01 challenges.

    ``port`` of ``None`` means 443 with ``https`` and 80 without.  Without
    ``certificate_file``/``key_file`` an HTTPS listener presents an
    ephemeral self-signed certificate.
    """

    bind: str
    port: int | None
    https: bool = False
    certificate_file: str | None = None
    key_file: str | None = None


@dataclass(frozen=True)
class DnsValidationSettings:
    """Script driven dns-01 validation and propagation check."""

    create_script: str | None
    delete_script: str | None
    script_timeout_seconds: int
    preliminary_validation: bool
    resolvers: tuple[str, ...]
    propagation_attempts: int
    propagation_interval_seconds: float
    timeout_seconds: int


@dataclass(frozen=True)
class ValidationSettings:
    max_parallel: int
    poll_attempts: int
    poll_interval_seconds: float
    poll_backoff: float
    poll_max_interval_seconds: float
    timeout_seconds: float
    http: HttpValidationSettings
    selfhosting: SelfHostingSettings
    dns: DnsValidationSettings


def _build_validation(data: dict | None) -> ValidationSettings:
    d = data or {}
    http = d.get("http") or {}
    selfhosting = d.get("selfhosting") or {}
    dns_cfg = d.get("dns") or {}
    return ValidationSettings(
        max_parallel=d.get("max_parallel", 4),
        poll_attempts=d.get("poll_attempts", 12),
        poll_interval_seconds=d.get("poll_interval_seconds", 2.0),
        poll_backoff=d.get("poll_backoff", 1.5),
        poll_max_interval_seconds=d.get("poll_max_interval_seconds", 30.0),
        timeout_seconds=d.get("timeout_seconds", 300.0),
        http=HttpValidationSettings(
            path=http.get("path"),
            preflight=http.get("preflight", True),
            preflight_timeout_seconds=http.get("preflight_timeout_seconds", 10),
        ),
        selfhosting=SelfHostingSettings(
            bind=selfhosting.get("bind", ""),
            port=selfhosting.get("port"),
            https=selfhosting.get("https", False),
            certificate_file=selfhosting.get("certificate_file"),
            key_file=selfhosting.get("key_file"),
        ),
        dns=DnsValidationSettings(
            create_script=dns_cfg.get("create_script"),
            delete_script=dns_cfg.get("delete_script"),
            script_timeout_seconds=dns_cfg.get("script_timeout_seconds", 60),
            preliminary_validation=dns_cfg.get("preliminary_validation", True),
            resolvers=tuple(dns_cfg.get("resolvers", [])),
            propagation_attempts=dns_cfg.get("propagation_attempts", 10),
            propagation_interval_seconds=dns_cfg.get("propagation_interval_seconds", 5.0),
            timeout_seconds=dns_cfg.get("timeout_seconds", 10),
        ),
    )


# ---------------------------------------------------------------------------
# Store / installation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PemFilesSettings:
    path: str | None
    password: str | None


@dataclass(frozen=True)
class PfxFileSettings:
    path: str | None
    password: str | None
    protection_mode: ProtectionMode


@dataclass(frozen=True)
class KeyStoreSettings:
    """Directory backed platform key store.

    ``accepted_modes`` lists the protection modes the store can import;
    anything else is rejected as platform-incompatible.
    """

    path: str | None
    accepted_modes: tuple[ProtectionMode, ...]
    convert_legacy_key: bool
    install_chain: bool


@dataclass(frozen=True)
class StoreSettings:
    pem_files: PemFilesSettings
    pfx_file: PfxFileSettings
    keystore: KeyStoreSettings
    keep_existing: bool


def _build_store(data: dict | None) -> StoreSettings:
    d = data or {}
    pem = d.get("pem_files") or {}
    pfx = d.get("pfx_file") or {}
    keystore = d.get("keystore") or {}
    return StoreSettings(
        pem_files=PemFilesSettings(
            path=pem.get("path"),
            password=pem.get("password"),
        ),
        pfx_file=PfxFileSettings(
            path=pfx.get("path"),
            password=pfx.get("password"),
            protection_mode=ProtectionMode(pfx.get("protection_mode", "default")),
        ),
        keystore=KeyStoreSettings(
            path=keystore.get("path"),
            accepted_modes=tuple(
                ProtectionMode(m)
                for m in keystore.get("accepted_modes", ["default", "aes256", "legacy"])
            ),
            convert_legacy_key=keystore.get("convert_legacy_key", True),
            install_chain=keystore.get("install_chain", True),
        ),
        keep_existing=d.get("keep_existing", False),
    )


@dataclass(frozen=True)
class InstallationSettings:
    script_timeout_seconds: int


def _build_installation(data: dict | None) -> InstallationSettings:
    d = data or {}
    return InstallationSettings(
        script_timeout_seconds=d.get("script_timeout_seconds", 600),
    )


# ---------------------------------------------------------------------------
# Schedule / history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduleSettings:
    """Due-date computation.

    A renewal is due ``renewal_days`` after its last success, or
    ``min_valid_days`` before its soonest certificate expires,
    whichever comes first.
    """

    renewal_days: int
    min_valid_days: int


def _build_schedule(data: dict | None) -> ScheduleSettings:
    d = data or {}
    return ScheduleSettings(
        renewal_days=d.get("renewal_days", 55),
        min_valid_days=d.get("min_valid_days", 7),
    )


@dataclass(frozen=True)
class HistorySettings:
    path: str
    max_entries: int
    write_legacy_fields: bool


def _build_history(data: dict | None) -> HistorySettings:
    d = data or {}
    return HistorySettings(
        path=d.get("path", "history"),
        max_entries=d.get("max_entries", 100),
        write_legacy_fields=d.get("write_legacy_fields", False),
    )


# ---------------------------------------------------------------------------
# Secrets / logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretsSettings:
    vault_file: str | None


def _build_secrets(data: dict | None) -> SecretsSettings:
    d = data or {}
    return SecretsSettings(vault_file=d.get("vault_file"))


@dataclass(frozen=True)
class LoggingSettings:
    """Log level, output format (``text`` or ``json``) and how many
    recent lines are kept in memory for notifications."""

    level: str
    format: str
    memory_lines: int


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        memory_lines=d.get("memory_lines", 200),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewSettings:
    cache: CacheSettings
    csr: CsrSettings
    order: OrderSettings
    validation: ValidationSettings
    store: StoreSettings
    installation: InstallationSettings
    schedule: ScheduleSettings
    history: HistorySettings
    secrets: SecretsSettings
    logging: LoggingSettings
    renewals: tuple[Renewal, ...]


def build_settings(data: dict) -> RenewSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`RenewConfig` initialization after
    environment-variable resolution and schema validation.
    """
    return RenewSettings(
        cache=_build_cache(data.get("cache")),
        csr=_build_csr(data.get("csr")),
        order=_build_order(data.get("order")),
        validation=_build_validation(data.get("validation")),
        store=_build_store(data.get("store")),
        installation=_build_installation(data.get("installation")),
        schedule=_build_schedule(data.get("schedule")),
        history=_build_history(data.get("history")),
        secrets=_build_secrets(data.get("secrets")),
        logging=_build_logging(data.get("logging")),
        renewals=tuple(renewal_from_dict(r) for r in data.get("renewals", [])),
    )
