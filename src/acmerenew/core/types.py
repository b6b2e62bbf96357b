"""Enumerated types shared across the renewal pipeline.

String enums serialise naturally to JSON (history files) and YAML
(configuration).
"""

from __future__ import annotations

from enum import Flag, StrEnum

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class IdentifierType(StrEnum):
    DNS = "dns"
    IP = "ip"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Authorization / challenge
# ---------------------------------------------------------------------------


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"


class ParallelOperations(Flag):
    """Concurrency a validator allows within one validation run."""

    NONE = 0
    PREPARE = 1
    ANSWER = 2
    BOTH = PREPARE | ANSWER


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class ProtectionMode(StrEnum):
    """Encryption scheme protecting the private key inside a PKCS#12 bundle."""

    DEFAULT = "default"
    AES256 = "aes256"
    LEGACY = "legacy"


class KeyType(StrEnum):
    RSA = "rsa"
    EC = "ec"


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderMode(StrEnum):
    SINGLE = "single"
    SITE = "site"
    HOST = "host"


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


class RenewalState(StrEnum):
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    ORDERING = "ordering"
    VALIDATING = "validating"
    ISSUING = "issuing"
    INSTALLING = "installing"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        RenewalState.COMPLETED,
        RenewalState.ABORTED,
        RenewalState.FAILED,
    }
)
