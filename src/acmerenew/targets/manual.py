"""Manual target plugin: host names typed in by the user.

A ``csr`` option points at a request prepared elsewhere; it is submitted
as-is and supplies the host names when none are configured.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from acmerenew.core.errors import ConfigurationError, CsrIdentifierMismatch
from acmerenew.core.identifiers import MAX_COMMON_NAME, parse_identifier
from acmerenew.csr.processor import csr_identifiers, load_csr
from acmerenew.models.target import Target, TargetPart

if TYPE_CHECKING:
    from acmerenew.core.context import PluginContext
    from acmerenew.core.identifiers import Identifier
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


def _split_names(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return [i.strip() for i in items if i and i.strip()]


class ManualTarget:
    """Builds a single-part :class:`Target` from configured names.

    Options
    -------
    common_name:
        Name placed in the certificate subject (optional; defaults to
        the first alternative name short enough to qualify).
    alternative_names:
        List, or comma separated string, of host names and IP addresses.
    csr:
        Path to a PEM or DER certificate signing request to submit instead
        of a generated one.  Its names are used when neither of the
        options above is given.

    """

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        self.options = options
        self.context = context

    def generate(self) -> Target:
        options = self.options
        names = _split_names(options.get("alternative_names") if options else None)
        cn_text = (options.get("common_name") if options else None) or None
        common_name: Identifier | None = parse_identifier(cn_text) if cn_text else None

        identifiers: list[Identifier] = []
        if common_name is not None:
            identifiers.append(common_name)
        identifiers.extend(parse_identifier(n) for n in names)
        user_csr = self._read_csr(options.get("csr") if options else None)
        if user_csr is not None and not identifiers:
            identifiers.extend(sorted(csr_identifiers(load_csr(user_csr)), key=lambda i: i.value))
        identifiers = list(dict.fromkeys(identifiers))
        if not identifiers:
            msg = "Manual target requires a common_name, alternative_names or a csr"
            raise ConfigurationError(msg)

        if common_name is None:
            common_name = next(
                (i for i in identifiers if len(i.value) <= MAX_COMMON_NAME),
                None,
            )
        label = (common_name or identifiers[0]).value
        log.debug("Manual target %s with %d identifier(s)", label, len(identifiers))
        return Target(
            friendly_name=f"[Manual] {label}",
            common_name=common_name,
            parts=(TargetPart(tuple(identifiers)),),
            user_csr=user_csr,
        )

    @staticmethod
    def _read_csr(path: str | None) -> bytes | None:
        if not path:
            return None
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            msg = f"Unable to read CSR file {path}: {exc}"
            raise ConfigurationError(msg) from exc
        try:
            load_csr(data)
        except CsrIdentifierMismatch as exc:
            msg = f"CSR file {path} is not a certificate signing request"
            raise ConfigurationError(msg) from exc
        return data
