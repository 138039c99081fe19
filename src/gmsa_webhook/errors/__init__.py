"""
Error handling module for the GMSA webhook.

Admission failures are values (`AdmissionError`) returned by the decision
engine; process-level failures are exceptions rooted at `WebhookError`.
"""

from .admission_errors import AdmissionError, ErrorKind
from .webhook_errors import (
    CertificateLoadError,
    CertificateWatchError,
    ConfigurationError,
    WebhookError,
)

__all__ = [
    "AdmissionError",
    "ErrorKind",
    "WebhookError",
    "ConfigurationError",
    "CertificateLoadError",
    "CertificateWatchError",
]
