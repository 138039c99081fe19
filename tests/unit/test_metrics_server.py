"""
Unit tests for MetricsServer HTTP endpoints.

Uses ``aiohttp.test_utils`` to drive the server's aiohttp application
without binding the configured port.
"""

from unittest.mock import patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from gmsa_webhook.observability.metrics import (
    MetricsServer,
    get_metrics_registry,
    record_admission,
    record_certificate_reload,
    record_rate_limit_wait,
)


# ---------------------------------------------------------------------------
# Helper to build a test-client from the MetricsServer app
# ---------------------------------------------------------------------------
@pytest.fixture
def metrics_server():
    """Create a fresh MetricsServer instance per test."""
    return MetricsServer(port=0)  # port doesn't matter for test_utils


@pytest.fixture
async def client(metrics_server):
    """Create an aiohttp TestClient from the MetricsServer app."""
    server = TestServer(metrics_server.app)
    async with TestClient(server) as cli:
        yield cli


# ---------------------------------------------------------------------------
# /metrics endpoint
# ---------------------------------------------------------------------------
class TestMetricsEndpoint:
    """Tests for ``GET /metrics``."""

    @pytest.mark.asyncio
    async def test_metrics_returns_200(self, client):
        """Prometheus scrape endpoint returns 200 with the webhook metrics."""
        record_admission("validate", allowed=False, code=403)
        record_certificate_reload(success=True)

        resp = await client.get("/metrics")

        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/plain")
        body = await resp.text()
        assert "gmsa_webhook_admission_requests_total" in body
        assert 'result="denied"' in body
        assert "gmsa_webhook_certificate_reloads_total" in body

    @pytest.mark.asyncio
    async def test_metrics_include_rate_limit_waits(self, client):
        record_rate_limit_wait(0.2)

        resp = await client.get("/metrics")

        body = await resp.text()
        assert "gmsa_webhook_kubernetes_api_rate_limit_wait_seconds_count" in body

    @pytest.mark.asyncio
    async def test_metrics_error_returns_500(self, client):
        """When generate_latest raises, the handler returns 500."""
        with patch(
            "gmsa_webhook.observability.metrics.generate_latest",
            side_effect=RuntimeError("boom"),
        ):
            resp = await client.get("/metrics")

        assert resp.status == 500
        assert "RuntimeError" in await resp.text()


# ---------------------------------------------------------------------------
# /healthz endpoint
# ---------------------------------------------------------------------------
class TestHealthzEndpoint:
    @pytest.mark.asyncio
    async def test_healthz_returns_ok(self, client):
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.text() == "ok"


def test_registry_is_shared():
    assert get_metrics_registry() is get_metrics_registry()
