"""Sensitive data sanitization for log output.

Redacts PEM bodies and known secret values (passwords, script
arguments) before they are written to logs.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

REDACTED = "[REDACTED]"

# Regex matching the base64 body inside PEM blocks
_PEM_BODY_RE = re.compile(
    r"(-----BEGIN [A-Z0-9 ]+-----)"
    r"([\s\S]*?)"
    r"(-----END [A-Z0-9 ]+-----)",
)


def sanitize_pem(pem: str) -> str:
    """Replace the base64 body of PEM blocks with ``[REDACTED]``.

    Preserves BEGIN/END markers so the type of object is still visible.
    """

    def _redact(m: re.Match) -> str:
        return f"{m.group(1)}\n{REDACTED}\n{m.group(3)}"

    return _PEM_BODY_RE.sub(_redact, pem)


def redact_secrets(text: str, secrets: Iterable[str | None]) -> str:
    """Replace every occurrence of each non-empty secret in *text*."""
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


def sanitize_command(args: list[str], secrets: Iterable[str | None]) -> str:
    """Render a command line for logging with secrets redacted."""
    secrets = list(secrets)
    return " ".join(redact_secrets(sanitize_pem(a), secrets) for a in args)
