"""
Admission webhooks for GMSA credential specs.

This module provides the validating and mutating admission webhooks for
pods. The decision engine holds the admission rules; the server speaks the
AdmissionReview protocol over HTTPS.
"""

from .engine import AdmissionDecisionEngine, WebhookOperation
from .server import WebhookServer

__all__ = [
    "AdmissionDecisionEngine",
    "WebhookOperation",
    "WebhookServer",
]
