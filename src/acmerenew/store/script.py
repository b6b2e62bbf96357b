"""Script installation plugin.

Runs a user supplied command after the certificate has been stored.
The ``parameters`` option is a template split like a shell command line;
the following placeholders are substituted in each argument:

``{Thumbprint}``, ``{OldThumbprint}``, ``{CommonName}``,
``{StorePath}``, ``{StoreType}``, ``{CachePassword}``, ``{RenewalId}``.

The cache password never appears in the log output.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import TYPE_CHECKING

from acmerenew.core.errors import ConfigurationError, InstallationFailed
from acmerenew.logging.sanitize import sanitize_command
from acmerenew.store.base import Installer, StoreInfo

if TYPE_CHECKING:
    from acmerenew.core.context import PluginContext
    from acmerenew.models.certificate import CertificateInfo
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


class ScriptInstaller(Installer):
    """Installs a certificate by running an external script.

    Options
    -------
    script:
        Executable to run (required).
    parameters:
        Argument template, see the module docstring.
    timeout_seconds:
        Overrides ``installation.script_timeout_seconds``.

    """

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        self._script = options.get("script") if options else None
        if not self._script:
            msg = "Script installation requires a 'script' option"
            raise ConfigurationError(msg)
        self._template = (options.get("parameters") if options else None) or ""
        default_timeout = (
            context.settings.installation.script_timeout_seconds if context else 600
        )
        self._timeout = (options.get("timeout_seconds") if options else None) or default_timeout

    def _cache_password(self) -> str | None:
        if self.context is None:
            return None
        reference = self.context.renewal.password or self.context.settings.cache.password
        return self.context.secrets.evaluate(reference)

    def arguments(
        self,
        stores: list[StoreInfo],
        new_certificate: CertificateInfo,
        old_certificate: CertificateInfo | None,
        password: str | None = None,
    ) -> list[str]:
        """Expand the parameter template into an argument list."""
        store = stores[0] if stores else StoreInfo(store_type="", path="")
        values = {
            "{Thumbprint}": new_certificate.thumbprint,
            "{OldThumbprint}": old_certificate.thumbprint if old_certificate else "",
            "{CommonName}": new_certificate.common_name.value
            if new_certificate.common_name
            else "",
            "{StorePath}": store.path,
            "{StoreType}": store.store_type,
            "{CachePassword}": password or "",
            "{RenewalId}": self.context.renewal.id if self.context else "",
        }
        args = []
        for arg in shlex.split(str(self._template)):
            for placeholder, value in values.items():
                arg = arg.replace(placeholder, value)
            args.append(arg)
        return [str(self._script), *args]

    def install(
        self,
        stores: list[StoreInfo],
        new_certificate: CertificateInfo,
        old_certificate: CertificateInfo | None,
    ) -> None:
        password = self._cache_password()
        args = self.arguments(stores, new_certificate, old_certificate, password)
        log.info("Running installation script %s", sanitize_command(args, [password]))
        try:
            proc = subprocess.run(  # noqa: S603
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            msg = f"Installation script '{self._script}' could not complete: {exc}"
            raise InstallationFailed(msg) from exc
        if proc.stdout.strip():
            log.debug("Script output: %s", proc.stdout.strip())
        if proc.returncode != 0:
            msg = (
                f"Installation script '{self._script}' exited with code "
                f"{proc.returncode}: {proc.stderr.strip() or proc.stdout.strip()}"
            )
            raise InstallationFailed(msg)
        log.info("Installation script finished for %s", new_certificate.thumbprint)
