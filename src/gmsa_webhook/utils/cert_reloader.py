"""
Hot-reloading of the webhook's TLS serving certificate.

The reloader keeps the currently active certificate in a single slot that is
only ever replaced, never modified: `load()` builds a complete new
`Certificate` and publishes it with one reference assignment, so a handshake
reading the slot concurrently sees either the old or the new certificate in
full. Loads are serialized with a lock so overlapping reload triggers can't
interleave.

The TLS listener uses `server_context()`, whose SNI callback hands every new
handshake the certificate that is active at that moment.
"""

import asyncio
import hashlib
import logging
import os
import ssl
import threading
import time
from dataclasses import dataclass

from watchfiles import Change, awatch

from gmsa_webhook.constants import SECRET_VOLUME_DATA_PREFIX
from gmsa_webhook.errors import CertificateLoadError, CertificateWatchError
from gmsa_webhook.observability.metrics import record_certificate_reload

logger = logging.getLogger(__name__)

PEM_CERTIFICATE_END = "-----END CERTIFICATE-----"


@dataclass(frozen=True)
class Certificate:
    """An immutable, fully validated TLS identity."""

    context: ssl.SSLContext
    fingerprint: str
    cert_path: str
    key_path: str
    loaded_at: float


def _build_context(cert_path: str, key_path: str) -> ssl.SSLContext:
    """Create a server context holding the given key pair."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    # Fails if either file is missing or unreadable, or if the key doesn't match
    context.load_cert_chain(certfile=cert_path, keyfile=key_path)
    return context


def leaf_fingerprint(cert_pem: str) -> str:
    """SHA-256 fingerprint of the first certificate in a PEM bundle."""
    end = cert_pem.find(PEM_CERTIFICATE_END)
    if end == -1:
        raise ValueError("no PEM certificate found")
    leaf = cert_pem[: end + len(PEM_CERTIFICATE_END)].strip() + "\n"
    der = ssl.PEM_cert_to_DER_cert(leaf)
    return hashlib.sha256(der).hexdigest()


class CertReloader:
    """Owns the serving certificate and reloads it from disk."""

    def __init__(self, cert_path: str, key_path: str):
        """
        Initialize the reloader. No certificate is active until `load()`.

        Args:
            cert_path: Path to the PEM-encoded certificate (chain)
            key_path: Path to the PEM-encoded private key
        """
        self.cert_path = cert_path
        self.key_path = key_path
        self._lock = threading.Lock()
        self._certificate: Certificate | None = None

    def load(self) -> Certificate:
        """
        Load or reload the certificate from disk and make it active.

        Returns:
            The newly active certificate

        Raises:
            CertificateLoadError: If the files are missing, unreadable or
                don't form a valid key pair. The previous certificate stays
                active.
        """
        with self._lock:
            try:
                cert_pem = self._read_certificate()
                fingerprint = leaf_fingerprint(cert_pem)
                context = _build_context(self.cert_path, self.key_path)
                # the fingerprint must describe the certificate that was loaded
                if self._read_certificate() != cert_pem:
                    raise ValueError("certificate file changed while loading")
            except (OSError, ValueError) as e:
                record_certificate_reload(success=False)
                raise CertificateLoadError(self.cert_path, self.key_path, e) from e

            certificate = Certificate(
                context=context,
                fingerprint=fingerprint,
                cert_path=self.cert_path,
                key_path=self.key_path,
                loaded_at=time.time(),
            )
            self._certificate = certificate

        record_certificate_reload(success=True)
        logger.info(f"Loaded certificate {self.cert_path} (sha256 {fingerprint})")
        return certificate

    def _read_certificate(self) -> str:
        with open(self.cert_path, encoding="utf-8") as cert_file:
            return cert_file.read()

    def select_certificate(self) -> Certificate | None:
        """Return the currently active certificate, or None before the first load."""
        return self._certificate

    def _select_for_handshake(
        self,
        ssl_object: ssl.SSLObject,
        server_name: str | None,
        initial_context: ssl.SSLContext,
    ) -> None:
        certificate = self.select_certificate()
        if certificate is not None:
            ssl_object.context = certificate.context

    def server_context(self) -> ssl.SSLContext:
        """
        Build the context for the TLS listener.

        The context carries the current key pair as a fallback, and selects
        the active certificate on every handshake.

        Raises:
            CertificateLoadError: If the certificate files can't be loaded
        """
        if self.select_certificate() is None:
            self.load()
        try:
            context = _build_context(self.cert_path, self.key_path)
        except OSError as e:
            raise CertificateLoadError(self.cert_path, self.key_path, e) from e
        context.sni_callback = self._select_for_handshake
        return context

    def _watched_paths(self) -> set[str]:
        return {os.path.abspath(self.cert_path), os.path.abspath(self.key_path)}

    def _is_relevant_change(self, change: Change, path: str) -> bool:
        """Filter file events down to writes and renames of the key pair."""
        if change == Change.deleted:
            return False
        if os.path.abspath(path) in self._watched_paths():
            return True
        # Secret volume updates swap a "..data" symlink instead of the files
        return os.path.basename(path).startswith(SECRET_VOLUME_DATA_PREFIX)

    def watch_directories(self) -> list[str]:
        """
        Directories to watch for changes of the certificate and key.

        Parent directories are watched rather than the files, since files
        replaced by a rename would otherwise drop out of the watch.

        Raises:
            CertificateWatchError: If either file doesn't exist
        """
        for path in (self.cert_path, self.key_path):
            if not os.path.exists(path):
                raise CertificateWatchError(path, FileNotFoundError(path))
        return sorted({os.path.dirname(path) for path in self._watched_paths()})

    async def watch_and_reload(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Reload the certificate whenever the certificate or key file changes.

        Runs until `stop_event` is set or the task is cancelled. Failed
        reloads are logged and the previous certificate keeps serving.

        Raises:
            CertificateWatchError: If the files can't be watched
        """
        directories = self.watch_directories()
        logger.info(
            f"Starting certificate watcher on {self.cert_path} and {self.key_path}"
        )

        try:
            async for changes in awatch(
                *directories,
                watch_filter=self._is_relevant_change,
                stop_event=stop_event,
                recursive=False,
            ):
                changed = ", ".join(sorted(path for _, path in changes))
                logger.info(f"Detected change in certificate files: {changed}")
                try:
                    await asyncio.to_thread(self.load)
                except CertificateLoadError as e:
                    logger.error(f"Error reloading certificate: {e}")
                else:
                    logger.info("Successfully reloaded certificate")
        except FileNotFoundError as e:
            raise CertificateWatchError(str(e.filename or directories), e) from e

        logger.info("Certificate watcher stopped")
