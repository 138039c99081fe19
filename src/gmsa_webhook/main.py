#!/usr/bin/env python3
"""
GMSA Webhook - Main entry point for the GMSA admission webhook server.

Usage:
    python -m gmsa_webhook [--cert-reload]
    # Or through the installed script:
    gmsa-webhook [--cert-reload]

Environment Variables:
    TLS_CRT: Path to the PEM-encoded serving certificate (required)
    TLS_KEY: Path to the PEM-encoded serving private key (required)
    HTTPS_PORT: Port to serve the webhook on (default: 443)
    CERT_RELOAD: Set to 'true' to reload the certificate when its files change
    RANDOM_HOSTNAME: Set to 'true' to give GMSA pods a random hostname
    QPS: Sustained rate of Kubernetes API calls (default: 5)
    BURST: Burst of Kubernetes API calls allowed above QPS (default: 10)
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import argparse
import asyncio
import logging
import signal
import sys

from gmsa_webhook.errors import ConfigurationError, WebhookError
from gmsa_webhook.observability.logging import setup_structured_logging
from gmsa_webhook.observability.metrics import MetricsServer
from gmsa_webhook.settings import VALID_LOG_LEVELS, Settings
from gmsa_webhook.settings import settings as webhook_settings
from gmsa_webhook.utils.cert_reloader import CertReloader
from gmsa_webhook.utils.credspec_store import KubernetesCredSpecStore
from gmsa_webhook.utils.kubernetes import get_kubernetes_client
from gmsa_webhook.utils.rate_limiter import TokenBucket
from gmsa_webhook.webhooks import AdmissionDecisionEngine, WebhookServer

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gmsa-webhook", description="GMSA credential spec admission webhook"
    )
    parser.add_argument(
        "--cert-reload",
        action="store_true",
        default=None,
        help="enable certificate reload (overrides CERT_RELOAD)",
    )
    return parser.parse_args(argv)


def configure_logging(settings: Settings) -> None:
    """Configure structured logging based on settings."""
    setup_structured_logging(
        log_level=settings.effective_log_level,
        enable_json_formatting=settings.json_logs,
        correlation_id_enabled=settings.correlation_ids,
        log_health_probes=settings.log_health_probes,
    )
    if settings.log_level.upper() not in VALID_LOG_LEVELS:
        logger.warning(
            f"Unknown log level {settings.log_level}, valid log levels are: "
            f"{', '.join(VALID_LOG_LEVELS)}"
        )


def build_cert_reloader(settings: Settings) -> CertReloader:
    """
    Create the certificate reloader and load the initial certificate.

    Raises:
        ConfigurationError: If the certificate paths are not configured
        CertificateLoadError: If the initial certificate can't be loaded
    """
    if not settings.tls_crt or not settings.tls_key:
        raise ConfigurationError(
            "TLS_CRT and TLS_KEY must both be set",
            user_action="Point TLS_CRT and TLS_KEY to the serving certificate and key",
        )
    cert_reloader = CertReloader(settings.tls_crt, settings.tls_key)
    cert_reloader.load()
    return cert_reloader


def _stop_on_watcher_failure(stop_event: asyncio.Event):
    def callback(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Certificate watcher failed: {error}")
            stop_event.set()

    return callback


async def run(settings: Settings, cert_reload: bool) -> None:
    """
    Run the webhook until SIGINT or SIGTERM.

    Raises:
        WebhookError: On startup failures (configuration, certificate, watcher)
    """
    cert_reloader = build_cert_reloader(settings)

    api_client = get_kubernetes_client()
    rate_limiter = TokenBucket(rate=settings.qps, capacity=settings.burst)
    logger.info(
        f"Kubernetes API client throttling: QPS {settings.qps}, burst {settings.burst}"
    )
    engine = AdmissionDecisionEngine(
        KubernetesCredSpecStore(api_client, rate_limiter=rate_limiter),
        random_hostname=settings.random_hostname,
    )
    server = WebhookServer(
        engine,
        port=settings.https_port,
        host=settings.https_host,
        ssl_context=cert_reloader.server_context(),
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    watch_task: asyncio.Task | None = None
    if cert_reload:
        # fail startup rather than claim reload support we can't provide
        cert_reloader.watch_directories()
        watch_task = asyncio.create_task(cert_reloader.watch_and_reload(stop_event))
        watch_task.add_done_callback(_stop_on_watcher_failure(stop_event))

    metrics_server: MetricsServer | None = None
    if settings.enable_metrics:
        metrics_server = MetricsServer(
            port=settings.metrics_port, host=settings.metrics_host
        )

    try:
        if metrics_server is not None:
            await metrics_server.start()
        async with server:
            await stop_event.wait()
        if watch_task is not None and watch_task.done() and not watch_task.cancelled():
            error = watch_task.exception()
            if error is not None:
                raise error
        logger.info("Received shutdown signal")
    finally:
        if watch_task is not None and not watch_task.done():
            watch_task.cancel()
            try:
                await watch_task
            except asyncio.CancelledError:
                pass
        if metrics_server is not None:
            await metrics_server.stop()
        api_client.close()


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the webhook.

    This function:
    1. Configures logging
    2. Loads the serving certificate
    3. Serves admission requests until shutdown
    """
    args = parse_args(argv)
    configure_logging(webhook_settings)

    cert_reload = (
        args.cert_reload if args.cert_reload is not None else webhook_settings.cert_reload
    )
    logger.info(f"Starting GMSA webhook (cert reload: {cert_reload})")

    try:
        asyncio.run(run(webhook_settings, cert_reload))
    except WebhookError as e:
        logger.error(f"GMSA webhook failed to start: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"GMSA webhook failed with error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
