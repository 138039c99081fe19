"""
Prometheus metrics for the GMSA webhook.

This module provides metrics for admission decisions and certificate
reloads, and a small plain-HTTP server exposing them for scraping.
"""

import logging
import time
from contextlib import contextmanager

# aiohttp also serves the admission webhook itself; the metrics server
# reuses it to keep a single HTTP stack.
from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

# Metrics definitions
ADMISSION_REQUESTS_TOTAL = Counter(
    "gmsa_webhook_admission_requests_total",
    "Total number of admission requests answered",
    ["operation", "result", "code"],
    registry=None,  # Will be set during initialization
)

ADMISSION_DURATION = Histogram(
    "gmsa_webhook_admission_duration_seconds",
    "Time spent evaluating admission requests",
    ["operation"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=None,
)

CERTIFICATE_RELOADS_TOTAL = Counter(
    "gmsa_webhook_certificate_reloads_total",
    "Total number of serving certificate loads",
    ["result"],
    registry=None,
)

KUBERNETES_API_RATE_LIMIT_WAIT_SECONDS = Histogram(
    "gmsa_webhook_kubernetes_api_rate_limit_wait_seconds",
    "Time spent waiting for the client-side Kubernetes API rate limit",
    buckets=[0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()

        for metric in [
            ADMISSION_REQUESTS_TOTAL,
            ADMISSION_DURATION,
            CERTIFICATE_RELOADS_TOTAL,
            KUBERNETES_API_RATE_LIMIT_WAIT_SECONDS,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


@contextmanager
def track_admission(operation: str):
    """
    Context manager timing one admission evaluation.

    Args:
        operation: Webhook operation (validate or mutate)
    """
    start_time = time.time()
    try:
        yield
    finally:
        ADMISSION_DURATION.labels(operation=operation).observe(
            time.time() - start_time
        )


def record_admission(operation: str, allowed: bool, code: int) -> None:
    """Count an answered admission request."""
    ADMISSION_REQUESTS_TOTAL.labels(
        operation=operation,
        result="allowed" if allowed else "denied",
        code=str(code),
    ).inc()


def record_certificate_reload(success: bool) -> None:
    """Count a certificate load attempt."""
    CERTIFICATE_RELOADS_TOTAL.labels(result="success" if success else "error").inc()


def record_rate_limit_wait(duration: float) -> None:
    """Record how long an API call waited for a rate limit token."""
    KUBERNETES_API_RATE_LIMIT_WAIT_SECONDS.observe(duration)


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes for the metrics server."""
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            registry = get_metrics_registry()
            metrics_data = generate_latest(registry)
            return Response(
                body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST}
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        """Handle /healthz endpoint, returning 200 while the server runs."""
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
