"""
Unit tests for settings and the process entry point.

Startup is exercised up to the point where it would talk to the cluster;
the Kubernetes client and servers are mocked.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gmsa_webhook.errors import CertificateLoadError, ConfigurationError
from gmsa_webhook.main import build_cert_reloader, configure_logging, main, parse_args
from gmsa_webhook.settings import Settings
from tests.fixtures.gmsa_resources import generate_key_pair


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "TLS_CRT",
        "TLS_KEY",
        "HTTPS_PORT",
        "CERT_RELOAD",
        "RANDOM_HOSTNAME",
        "LOG_LEVEL",
        "QPS",
        "BURST",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def tls_files(tmp_path):
    cert_pem, key_pem, _ = generate_key_pair()
    cert_path = tmp_path / "tls.crt"
    key_path = tmp_path / "tls.key"
    cert_path.write_bytes(cert_pem)
    key_path.write_bytes(key_pem)
    return str(cert_path), str(key_path)


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.https_port == 443
        assert settings.cert_reload is False
        assert settings.random_hostname is False
        assert settings.qps == 5.0
        assert settings.burst == 10
        assert settings.effective_log_level == "INFO"

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("TLS_CRT", "/certs/tls.crt")
        clean_env.setenv("TLS_KEY", "/certs/tls.key")
        clean_env.setenv("HTTPS_PORT", "8443")
        clean_env.setenv("CERT_RELOAD", "true")
        clean_env.setenv("RANDOM_HOSTNAME", "1")
        clean_env.setenv("LOG_LEVEL", "debug")
        clean_env.setenv("QPS", "20.5")
        clean_env.setenv("BURST", "40")

        settings = Settings(_env_file=None)

        assert settings.tls_crt == "/certs/tls.crt"
        assert settings.tls_key == "/certs/tls.key"
        assert settings.https_port == 8443
        assert settings.cert_reload is True
        assert settings.random_hostname is True
        assert settings.effective_log_level == "DEBUG"
        assert settings.qps == 20.5
        assert settings.burst == 40

    def test_unknown_log_level_falls_back_to_info(self, clean_env):
        clean_env.setenv("LOG_LEVEL", "chatty")

        assert Settings(_env_file=None).effective_log_level == "INFO"

    def test_unknown_log_level_warns(self, clean_env, caplog):
        clean_env.setenv("LOG_LEVEL", "chatty")
        settings = Settings(_env_file=None)

        with patch("gmsa_webhook.main.setup_structured_logging") as mock_setup:
            with caplog.at_level(logging.WARNING):
                configure_logging(settings)

        assert mock_setup.call_args.kwargs["log_level"] == "INFO"
        assert "Unknown log level chatty" in caplog.text

    @pytest.mark.parametrize(
        ("name", "value", "field", "default"),
        [
            ("QPS", "fast", "qps", 5.0),
            ("QPS", "0", "qps", 5.0),
            ("BURST", "lots", "burst", 10),
            ("BURST", "0", "burst", 10),
        ],
    )
    def test_unparseable_throttling_falls_back_to_default(
        self, clean_env, caplog, name, value, field, default
    ):
        clean_env.setenv(name, value)

        with caplog.at_level(logging.WARNING, logger="gmsa_webhook.settings"):
            settings = Settings(_env_file=None)

        assert getattr(settings, field) == default
        assert f"unable to parse environment variable {name}" in caplog.text
        assert f"using default value {default}" in caplog.text


class TestStartup:
    def test_cert_reload_flag(self):
        assert parse_args(["--cert-reload"]).cert_reload is True
        assert parse_args([]).cert_reload is None

    def test_missing_certificate_paths(self, clean_env):
        with pytest.raises(ConfigurationError):
            build_cert_reloader(Settings(_env_file=None))

    def test_unreadable_certificate_is_fatal(self, clean_env, tmp_path):
        clean_env.setenv("TLS_CRT", str(tmp_path / "missing.crt"))
        clean_env.setenv("TLS_KEY", str(tmp_path / "missing.key"))

        with pytest.raises(CertificateLoadError):
            build_cert_reloader(Settings(_env_file=None))

    def test_initial_certificate_is_loaded(self, clean_env, tls_files):
        clean_env.setenv("TLS_CRT", tls_files[0])
        clean_env.setenv("TLS_KEY", tls_files[1])

        reloader = build_cert_reloader(Settings(_env_file=None))

        assert reloader.select_certificate() is not None

    def test_startup_failure_exits_non_zero(self):
        with (
            patch("gmsa_webhook.main.configure_logging"),
            patch(
                "gmsa_webhook.main.run",
                new=AsyncMock(side_effect=ConfigurationError("TLS_CRT missing")),
            ),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main([])

        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_run_serves_until_stopped(self, clean_env, tls_files):
        from gmsa_webhook import main as main_module

        clean_env.setenv("TLS_CRT", tls_files[0])
        clean_env.setenv("TLS_KEY", tls_files[1])
        clean_env.setenv("ENABLE_METRICS", "false")
        settings = Settings(_env_file=None)

        api_client = MagicMock()
        server = MagicMock()
        server.__aenter__ = AsyncMock(return_value=server)
        server.__aexit__ = AsyncMock(return_value=None)
        loop = asyncio.get_running_loop()

        # deliver the shutdown signal as soon as its handler is installed
        with (
            patch.object(main_module, "get_kubernetes_client", return_value=api_client),
            patch.object(
                main_module,
                "AdmissionDecisionEngine",
                wraps=main_module.AdmissionDecisionEngine,
            ) as engine_cls,
            patch.object(main_module, "WebhookServer", return_value=server) as server_cls,
            patch.object(
                loop, "add_signal_handler", side_effect=lambda sig, callback: callback()
            ),
        ):
            await main_module.run(settings, cert_reload=False)

        assert server_cls.call_args.kwargs["ssl_context"].sni_callback is not None
        server.__aenter__.assert_awaited_once()
        server.__aexit__.assert_awaited_once()
        api_client.close.assert_called_once()
        rate_limiter = engine_cls.call_args.args[0].rate_limiter
        assert (rate_limiter.rate, rate_limiter.capacity) == (5.0, 10)
