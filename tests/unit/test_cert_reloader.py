"""
Unit tests for TLS certificate hot-reloading.

Certificates are generated on the fly into a temporary directory; the file
watcher itself is replaced by a fake event stream.
"""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest
from watchfiles import Change

from gmsa_webhook.errors import CertificateLoadError, CertificateWatchError
from gmsa_webhook.utils import cert_reloader
from gmsa_webhook.utils.cert_reloader import CertReloader, leaf_fingerprint
from tests.fixtures.gmsa_resources import generate_key_pair


def write_key_pair(directory, cert_pem: bytes, key_pem: bytes):
    cert_path = directory / "tls.crt"
    key_path = directory / "tls.key"
    cert_path.write_bytes(cert_pem)
    key_path.write_bytes(key_pem)
    return str(cert_path), str(key_path)


@pytest.fixture
def key_pair():
    return generate_key_pair()


@pytest.fixture
def reloader(tmp_path, key_pair):
    cert_pem, key_pem, _ = key_pair
    cert_path, key_path = write_key_pair(tmp_path, cert_pem, key_pem)
    return CertReloader(cert_path, key_path)


class TestLoad:
    """Tests for loading certificates from disk."""

    def test_nothing_selected_before_load(self, reloader):
        assert reloader.select_certificate() is None

    def test_load_activates_certificate(self, reloader, key_pair):
        certificate = reloader.load()

        assert reloader.select_certificate() is certificate
        assert certificate.fingerprint == key_pair[2]
        assert certificate.cert_path == reloader.cert_path

    def test_reload_replaces_certificate(self, tmp_path, reloader):
        first = reloader.load()
        cert_pem, key_pem, fingerprint = generate_key_pair("rotated.test")
        write_key_pair(tmp_path, cert_pem, key_pem)

        second = reloader.load()

        assert second is not first
        assert reloader.select_certificate() is second
        assert second.fingerprint == fingerprint

    def test_missing_key_keeps_previous_certificate(self, tmp_path, reloader):
        previous = reloader.load()
        (tmp_path / "tls.key").unlink()

        with pytest.raises(CertificateLoadError) as exc_info:
            reloader.load()

        assert reloader.select_certificate() is previous
        assert exc_info.value.key_path == reloader.key_path

    def test_mismatched_key_pair_is_rejected(self, tmp_path, reloader):
        previous = reloader.load()
        _, other_key, _ = generate_key_pair("other.test")
        (tmp_path / "tls.key").write_bytes(other_key)

        with pytest.raises(CertificateLoadError):
            reloader.load()

        assert reloader.select_certificate() is previous

    def test_garbage_certificate_is_rejected(self, tmp_path, reloader):
        (tmp_path / "tls.crt").write_text("not a certificate")

        with pytest.raises(CertificateLoadError):
            reloader.load()

        assert reloader.select_certificate() is None

    def test_rotation_during_load_is_rejected(self, tmp_path, reloader):
        previous = reloader.load()
        cert_pem, key_pem, _ = generate_key_pair("rotated.test")
        build_context = cert_reloader._build_context

        def rotate_then_build(cert_path, key_path):
            context = build_context(cert_path, key_path)
            write_key_pair(tmp_path, cert_pem, key_pem)
            return context

        with patch.object(cert_reloader, "_build_context", rotate_then_build):
            with pytest.raises(CertificateLoadError) as exc_info:
                reloader.load()

        assert "changed while loading" in str(exc_info.value)
        assert reloader.select_certificate() is previous

    def test_fingerprint_uses_leaf_of_chain(self, key_pair):
        cert_pem, _, fingerprint = key_pair
        other_pem, _, _ = generate_key_pair("intermediate.test")
        chain = (cert_pem + other_pem).decode()

        assert leaf_fingerprint(chain) == fingerprint


class TestServerContext:
    """Tests for the handshake-time certificate selection."""

    def test_server_context_selects_active_certificate(self, reloader):
        context = reloader.server_context()

        assert context.sni_callback is not None
        assert reloader.select_certificate() is not None

    def test_handshake_gets_current_context(self, tmp_path, reloader):
        context = reloader.server_context()
        cert_pem, key_pem, _ = generate_key_pair("rotated.test")
        write_key_pair(tmp_path, cert_pem, key_pem)
        rotated = reloader.load()
        ssl_object = MagicMock()

        context.sni_callback(ssl_object, "gmsa-webhook.test", context)

        assert ssl_object.context is rotated.context

    def test_server_context_fails_without_files(self, tmp_path):
        reloader = CertReloader(str(tmp_path / "missing.crt"), str(tmp_path / "missing.key"))

        with pytest.raises(CertificateLoadError):
            reloader.server_context()


class TestWatching:
    """Tests for watching certificate files."""

    def test_watch_directories_are_parents(self, tmp_path, reloader):
        assert reloader.watch_directories() == [str(tmp_path)]

    def test_watch_fails_on_missing_files(self, tmp_path):
        reloader = CertReloader(str(tmp_path / "tls.crt"), str(tmp_path / "tls.key"))

        with pytest.raises(CertificateWatchError) as exc_info:
            reloader.watch_directories()

        assert exc_info.value.path == str(tmp_path / "tls.crt")

    def test_change_filter(self, tmp_path, reloader):
        assert reloader._is_relevant_change(Change.modified, reloader.cert_path)
        assert reloader._is_relevant_change(Change.added, reloader.key_path)
        assert reloader._is_relevant_change(Change.added, str(tmp_path / "..data"))
        assert not reloader._is_relevant_change(Change.deleted, reloader.cert_path)
        assert not reloader._is_relevant_change(
            Change.modified, str(tmp_path / "unrelated.txt")
        )

    @pytest.mark.asyncio
    async def test_changes_trigger_reload(self, tmp_path, reloader):
        reloader.load()
        cert_pem, key_pem, fingerprint = generate_key_pair("rotated.test")

        async def fake_awatch(*paths, **kwargs):
            write_key_pair(tmp_path, cert_pem, key_pem)
            yield {(Change.modified, reloader.cert_path)}

        with patch("gmsa_webhook.utils.cert_reloader.awatch", fake_awatch):
            await reloader.watch_and_reload(asyncio.Event())

        assert reloader.select_certificate().fingerprint == fingerprint

    @pytest.mark.asyncio
    async def test_reload_runs_off_the_event_loop(self, reloader):
        load = reloader.load
        load_threads = []

        def recording_load():
            load_threads.append(threading.current_thread())
            return load()

        reloader.load = recording_load

        async def fake_awatch(*paths, **kwargs):
            yield {(Change.modified, reloader.cert_path)}

        with patch("gmsa_webhook.utils.cert_reloader.awatch", fake_awatch):
            await reloader.watch_and_reload()

        assert len(load_threads) == 1
        assert load_threads[0] is not threading.current_thread()

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_watching(self, tmp_path, reloader, caplog):
        previous = reloader.load()
        cert_pem, key_pem, fingerprint = generate_key_pair("rotated.test")

        async def fake_awatch(*paths, **kwargs):
            (tmp_path / "tls.key").write_text("half written")
            yield {(Change.modified, reloader.key_path)}
            assert reloader.select_certificate() is previous
            write_key_pair(tmp_path, cert_pem, key_pem)
            yield {(Change.modified, reloader.key_path)}

        with patch("gmsa_webhook.utils.cert_reloader.awatch", fake_awatch):
            await reloader.watch_and_reload()

        assert "Error reloading certificate" in caplog.text
        assert reloader.select_certificate().fingerprint == fingerprint

    @pytest.mark.asyncio
    async def test_vanished_directory_is_watch_error(self, reloader):
        async def fake_awatch(*paths, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", paths[0])
            yield  # pragma: no cover

        with patch("gmsa_webhook.utils.cert_reloader.awatch", fake_awatch):
            with pytest.raises(CertificateWatchError):
                await reloader.watch_and_reload()
