"""
Utils package - Utility modules for the GMSA webhook.

Contains helper modules for:
- Kubernetes client configuration
- Cred spec lookups and usage authorization checks
- TLS certificate hot-reloading
- Client-side rate limiting of Kubernetes API calls
"""

from gmsa_webhook.utils.cert_reloader import Certificate, CertReloader
from gmsa_webhook.utils.credspec_store import CredSpecStore, KubernetesCredSpecStore
from gmsa_webhook.utils.rate_limiter import TokenBucket

__all__ = [
    "Certificate",
    "CertReloader",
    "CredSpecStore",
    "KubernetesCredSpecStore",
    "TokenBucket",
]
