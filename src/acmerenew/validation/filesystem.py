"""File-system http-01 validator.

Writes the key authorization to
``{path}/.well-known/acme-challenge/{token}`` below a web root served
by an existing web server, optionally fetching it back over HTTP
(preflight) to catch misconfiguration before the authority tries.
"""

from __future__ import annotations

import logging
import threading
import urllib.error
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING

from acmerenew.core.errors import ConfigurationError, ValidationFailure
from acmerenew.core.types import ChallengeType, ParallelOperations
from acmerenew.validation.base import ValidationContext, Validator

if TYPE_CHECKING:
    from acmerenew.ca.base import ChallengeDetails
    from acmerenew.core.context import PluginContext
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)

_MAX_PREFLIGHT_BYTES = 65536


class FileSystemValidator(Validator):
    """Answers http-01 by writing files below a web root.

    Options
    -------
    path:
        Web root; falls back to ``validation.http.path``.
    preflight:
        Fetch each file back over HTTP after writing it.

    """

    challenge_type = ChallengeType.HTTP_01
    parallelism = ParallelOperations.BOTH

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        http = context.settings.validation.http if context else None
        root = (options.get("path") if options else None) or getattr(http, "path", None)
        if not root:
            msg = "File system validation requires a path (option 'path' or validation.http.path)"
            raise ConfigurationError(msg)
        self._root = Path(root)
        default_preflight = getattr(http, "preflight", True)
        self._preflight = options.get("preflight", default_preflight) if options else default_preflight
        self._timeout = getattr(http, "preflight_timeout_seconds", 10)
        self._written: list[Path] = []
        self._lock = threading.Lock()

    def _file_for(self, challenge: ChallengeDetails) -> Path:
        return self._root.joinpath(*challenge.http_path.strip("/").split("/"))

    def prepare_challenge(
        self,
        context: ValidationContext,
        challenge: ChallengeDetails,
    ) -> None:
        target = self._file_for(challenge)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(challenge.key_authorization, encoding="ascii")
        except OSError as exc:
            msg = f"Unable to write validation file {target}: {exc}"
            raise ValidationFailure(msg) from exc
        with self._lock:
            self._written.append(target)
        log.debug("Wrote validation file %s for %s", target, context.identifier.value)
        if self._preflight:
            self._preflight_check(context, challenge)

    def _preflight_check(self, context: ValidationContext, challenge: ChallengeDetails) -> None:
        """Fetch the file over HTTP; a mismatch is only a warning."""
        url = f"http://{context.identifier.value}{challenge.http_path}"
        try:
            req = urllib.request.Request(url, method="GET")
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                body = resp.read(_MAX_PREFLIGHT_BYTES).decode("utf-8", errors="replace").strip()
        except urllib.error.HTTPError as exc:
            log.warning("Preflight check for %s returned HTTP %s", url, exc.code)
            return
        except (urllib.error.URLError, OSError) as exc:
            log.warning("Preflight check for %s failed: %s", url, exc)
            return
        if body != challenge.key_authorization:
            log.warning("Preflight check for %s returned unexpected content", url)
        else:
            log.debug("Preflight check for %s passed", url)

    def cleanup(self) -> None:
        with self._lock:
            written, self._written = self._written, []
        for path in written:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                log.warning("Unable to delete validation file %s: %s", path, exc)
