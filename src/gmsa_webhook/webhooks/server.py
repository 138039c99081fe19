"""
HTTPS server for the GMSA admission webhook.

Handles the HTTP side of admission: routing, methods and content types,
and the AdmissionReview envelope. The admission decisions themselves are
delegated to `AdmissionDecisionEngine`.

Routing, method and content-type violations, and bodies that aren't an
admission review at all, are answered with a bare HTTP error status. Any
other failure is reported inside a 200 admission review response, so that
the API server always gets a structured verdict.
"""

import json
import logging
import ssl

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from pydantic import ValidationError

from gmsa_webhook import __version__
from gmsa_webhook.constants import JSON_CONTENT_TYPE
from gmsa_webhook.errors import AdmissionError
from gmsa_webhook.models.admission import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
)
from gmsa_webhook.observability.logging import (
    generate_correlation_id,
    set_correlation_id,
)
from gmsa_webhook.observability.metrics import record_admission, track_admission

from .engine import AdmissionDecisionEngine, WebhookOperation

logger = logging.getLogger(__name__)


def denied_admission_response(
    error: AdmissionError, request: AdmissionRequest | None = None
) -> AdmissionResponse:
    """Build a denying admission response, logging why."""
    log_msg = "Refusing to admit"
    extra = {"http_status": error.code, "error_type": error.kind.name}
    if error.pod is not None:
        log_msg += f" pod {error.pod.display_name!r}"
        extra["pod_name"] = error.pod.display_name
    if request is not None:
        extra["namespace"] = request.namespace
        extra["operation"] = request.operation
    logger.info(f"{log_msg} with code {error.code}: {error.message}", extra=extra)

    return AdmissionResponse.denied(error.code, error.message)


class WebhookServer:
    """aiohttp server exposing the validating and mutating webhooks."""

    def __init__(
        self,
        engine: AdmissionDecisionEngine,
        port: int = 443,
        host: str = "0.0.0.0",
        ssl_context: ssl.SSLContext | None = None,
    ):
        """
        Initialize the webhook server.

        Args:
            engine: Decision engine evaluating admission requests
            port: Port to serve on
            host: Host interface to bind to
            ssl_context: TLS context; the server runs plain HTTP if None
        """
        self.engine = engine
        self.port = port
        self.host = host
        self.ssl_context = ssl_context
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes; unknown paths get aiohttp's 404."""
        self.app.router.add_route("*", "/validate", self._validate_handler)
        self.app.router.add_route("*", "/mutate", self._mutate_handler)
        self.app.router.add_route("*", "/info", self._info_handler)
        self.app.router.add_route("*", "/health", self._health_handler)

    async def _validate_handler(self, request: Request) -> Response:
        return await self._handle_admission(request, WebhookOperation.VALIDATE)

    async def _mutate_handler(self, request: Request) -> Response:
        return await self._handle_admission(request, WebhookOperation.MUTATE)

    async def _info_handler(self, request: Request) -> Response:
        return json_response({"version": __version__})

    async def _health_handler(self, request: Request) -> Response:
        return Response(status=204)

    async def _handle_admission(
        self, request: Request, operation: WebhookOperation
    ) -> Response:
        if request.method != "POST":
            logger.info(
                f"Expected POST HTTP request, got a {request.method} "
                f"{operation.value} request"
            )
            return Response(status=405)

        if request.content_type != JSON_CONTENT_TYPE:
            logger.info(
                f"Expected JSON content-type header for {operation.value} request, "
                f"got {request.content_type!r}"
            )
            return Response(status=415)

        body = await request.read()
        logger.debug(f"Handling {operation.value} request: {body!r}")
        try:
            review = AdmissionReview.model_validate(json.loads(body))
        except (ValueError, RecursionError, ValidationError) as e:
            logger.info(f"Unable to unmarshall JSON body as an admission review: {e}")
            return Response(status=400)

        admission_response = await self.review_to_response(review, operation)
        response_review = AdmissionReview(response=admission_response)
        return json_response(response_review.to_wire())

    async def review_to_response(
        self, review: AdmissionReview, operation: WebhookOperation
    ) -> AdmissionResponse:
        """Evaluate the request of an admission review into its response."""
        if review.request is None:
            return denied_admission_response(
                AdmissionError.bad_request("no 'request' field in JSON body")
            )

        admission_request = review.request
        set_correlation_id(admission_request.uid or generate_correlation_id())

        with track_admission(operation.value):
            result = await self.engine.validate_or_mutate(admission_request, operation)

        if isinstance(result, AdmissionError):
            response = denied_admission_response(result, admission_request)
        else:
            response = AdmissionResponse.from_decision(result)

        # the API server matches responses to requests by UID
        response.uid = admission_request.uid

        code = response.status.code if response.status else 200
        record_admission(operation.value, response.allowed, code)
        return response

    async def start(self) -> None:
        """Start serving."""
        # cancel in-flight evaluations when the API server hangs up
        self.runner = AppRunner(self.app, handler_cancellation=True)
        await self.runner.setup()

        self.site = TCPSite(
            self.runner, self.host, self.port, ssl_context=self.ssl_context
        )
        await self.site.start()

        scheme = "https" if self.ssl_context is not None else "http"
        logger.info(f"Webhook server started at {scheme}://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop serving."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Webhook server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
