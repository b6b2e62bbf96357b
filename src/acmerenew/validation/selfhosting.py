"""Self-hosted http-01 validator.

Challenge files are kept in memory and served by an in-process HTTP
listener.  The listener for a given bind address and port is a shared,
reference-counted resource: the first :meth:`SharedListener.acquire`
starts it, the last :meth:`SharedListener.release` stops it, so many
validator instances (and many authorizations) can be answered by one
socket concurrently.  With ``https`` the listener speaks TLS, presenting
the configured certificate or an ephemeral self-signed one.
"""

from __future__ import annotations

import logging
import ssl
import tempfile
import threading
from datetime import UTC, datetime, timedelta
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from acmerenew.core.errors import ConfigurationError, ValidationFailure
from acmerenew.core.types import ChallengeType, IdentifierType, ParallelOperations
from acmerenew.validation.base import ValidationContext, Validator

if TYPE_CHECKING:
    from acmerenew.ca.base import ChallengeDetails
    from acmerenew.core.context import PluginContext
    from acmerenew.models.renewal import PluginOptions

log = logging.getLogger(__name__)


DEFAULT_HTTP_PORT = 80
DEFAULT_HTTPS_PORT = 443


def _ephemeral_tls_context() -> ssl.SSLContext:
    """Server context presenting a throw-away self-signed certificate.

    The authority does not verify the certificate of a validation
    endpoint, so any certificate completes the handshake.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "acmerenew self-hosting")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    with tempfile.TemporaryDirectory(prefix="acmerenew-tls-") as tmp:
        cert_path = Path(tmp) / "listener.crt"
        key_path = Path(tmp) / "listener.key"
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        key_path.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        )
        return _tls_context(str(cert_path), str(key_path))


def _tls_context(certificate_file: str, key_file: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certificate_file, key_file)
    return context


class _ChallengeHandler(BaseHTTPRequestHandler):
    server: _ChallengeServer

    def do_GET(self) -> None:  # noqa: N802
        path = self.path.split("?", 1)[0]
        body = self.server.owner.lookup(path)
        if body is None:
            log.warning("Self-hosted listener couldn't serve %s", path)
            self.send_error(404)
            return
        log.debug("Self-hosted listener serving %s", path)
        data = body.encode("ascii")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        log.debug("%s - %s", self.address_string(), format % args)


class _ChallengeServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], owner: SharedListener) -> None:
        self.owner = owner
        super().__init__(address, _ChallengeHandler)


class SharedListener:
    """Reference-counted HTTP(S) listener for one ``(bind, port, https)``.

    Use :meth:`for_address` to obtain the process-wide instance.
    """

    _registry: ClassVar[dict[tuple[str, int, bool], SharedListener]] = {}
    _registry_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        bind: str,
        port: int,
        *,
        https: bool = False,
        certificate_file: str | None = None,
        key_file: str | None = None,
    ) -> None:
        self.bind = bind
        self.port = port
        self.https = https
        self._certificate_file = certificate_file
        self._key_file = key_file
        self._files: dict[str, str] = {}
        self._files_lock = threading.Lock()
        self._lock = threading.Lock()
        self._refs = 0
        self._server: _ChallengeServer | None = None
        self._thread: threading.Thread | None = None

    @classmethod
    def for_address(
        cls,
        bind: str,
        port: int,
        *,
        https: bool = False,
        certificate_file: str | None = None,
        key_file: str | None = None,
    ) -> SharedListener:
        with cls._registry_lock:
            listener = cls._registry.get((bind, port, https))
            if listener is None:
                listener = cls(
                    bind,
                    port,
                    https=https,
                    certificate_file=certificate_file,
                    key_file=key_file,
                )
                cls._registry[(bind, port, https)] = listener
            return listener

    # -- files --------------------------------------------------------------

    def add_file(self, path: str, content: str) -> None:
        with self._files_lock:
            self._files.setdefault(path, content)

    def remove_file(self, path: str) -> None:
        with self._files_lock:
            self._files.pop(path, None)

    def lookup(self, path: str) -> str | None:
        with self._files_lock:
            return self._files.get(path)

    # -- lifecycle ----------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._server is not None

    @property
    def server_port(self) -> int:
        """Actual port (differs from :attr:`port` when binding port 0)."""
        if self._server is None:
            return self.port
        return self._server.server_address[1]

    @property
    def refs(self) -> int:
        return self._refs

    def acquire(self) -> None:
        """Take a reference, starting the listener on the first one."""
        with self._lock:
            if self._server is None:
                try:
                    server = _ChallengeServer((self.bind, self.port), self)
                except OSError as exc:
                    log.exception("Unable to activate listener on port %d", self.port)
                    msg = f"Unable to activate listener on port {self.port}: {exc}"
                    raise ValidationFailure(msg) from exc
                if self.https:
                    self._enable_tls(server)
                thread = threading.Thread(
                    target=server.serve_forever,
                    name=f"acmerenew-selfhosting-{self.port}",
                    daemon=True,
                )
                thread.start()
                self._server = server
                self._thread = thread
                log.info("Self-hosted listener started on port %d", server.server_address[1])
            self._refs += 1

    def _enable_tls(self, server: _ChallengeServer) -> None:
        try:
            if self._certificate_file and self._key_file:
                context = _tls_context(self._certificate_file, self._key_file)
            else:
                context = _ephemeral_tls_context()
        except OSError as exc:
            server.server_close()
            msg = f"Unable to load the listener certificate for port {self.port}: {exc}"
            raise ValidationFailure(msg) from exc
        # The handshake runs in the request thread, not in the accept loop.
        server.socket = context.wrap_socket(
            server.socket,
            server_side=True,
            do_handshake_on_connect=False,
        )

    def release(self) -> None:
        """Drop a reference, stopping the listener on the last one."""
        with self._lock:
            if self._refs == 0:
                return
            self._refs -= 1
            if self._refs > 0 or self._server is None:
                return
            server, self._server = self._server, None
            thread, self._thread = self._thread, None
            try:
                server.shutdown()
                server.server_close()
            finally:
                if thread is not None:
                    thread.join(timeout=5)
            log.info("Self-hosted listener on port %d stopped", self.port)


class SelfHostingValidator(Validator):
    """Answers http-01 from memory through a :class:`SharedListener`.

    Options
    -------
    bind:
        Listening address; falls back to ``validation.selfhosting.bind``.
    port:
        Listening port; falls back to ``validation.selfhosting.port``,
        then to 443 with https and 80 without.
    https:
        Serve the challenge files over TLS.
    certificate_file, key_file:
        PEM certificate and key presented over https.  Without them an
        ephemeral self-signed certificate is used.

    """

    challenge_type = ChallengeType.HTTP_01
    parallelism = ParallelOperations.BOTH
    supported_identifier_types = frozenset({IdentifierType.DNS, IdentifierType.IP})

    def __init__(
        self,
        options: PluginOptions | None = None,
        context: PluginContext | None = None,
    ) -> None:
        super().__init__(options, context)
        selfhosting = context.settings.validation.selfhosting if context else None
        bind = getattr(selfhosting, "bind", "")
        port = getattr(selfhosting, "port", None)
        https = getattr(selfhosting, "https", False)
        certificate_file = getattr(selfhosting, "certificate_file", None)
        key_file = getattr(selfhosting, "key_file", None)
        if options is not None:
            bind = options.get("bind", bind)
            port = options.get("port", port)
            https = bool(options.get("https", https))
            certificate_file = options.get("certificate_file", certificate_file)
            key_file = options.get("key_file", key_file)
        if bool(certificate_file) != bool(key_file):
            msg = "Self-hosting certificate_file and key_file must be set together"
            raise ConfigurationError(msg)
        if port is None:
            port = DEFAULT_HTTPS_PORT if https else DEFAULT_HTTP_PORT
        self.listener = SharedListener.for_address(
            bind,
            int(port),
            https=https,
            certificate_file=certificate_file,
            key_file=key_file,
        )
        self._paths: set[str] = set()
        self._paths_lock = threading.Lock()
        self._acquired = False
        self._commit_lock = threading.Lock()

    def prepare_challenge(
        self,
        context: ValidationContext,
        challenge: ChallengeDetails,
    ) -> None:
        self.listener.add_file(challenge.http_path, challenge.key_authorization)
        with self._paths_lock:
            self._paths.add(challenge.http_path)
        log.debug("Prepared %s for %s", challenge.http_path, context.identifier.value)

    def commit(self) -> None:
        with self._commit_lock:
            if self._acquired:
                return
            self.listener.acquire()
            self._acquired = True

    def cleanup(self) -> None:
        with self._paths_lock:
            paths, self._paths = self._paths, set()
        for path in paths:
            self.listener.remove_file(path)
        with self._commit_lock:
            if self._acquired:
                self._acquired = False
                self.listener.release()
