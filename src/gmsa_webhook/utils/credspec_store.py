"""
Access to GMSA credential spec resources stored in the cluster.

This module provides:
- The `CredSpecStore` protocol the decision engine depends on
- `KubernetesCredSpecStore`, backed by the Kubernetes API: a
  LocalSubjectAccessReview to check `use` permission on a cred spec, and a
  custom object lookup to fetch its contents

The Kubernetes client is synchronous, so every API call runs in a worker
thread. This keeps the event loop free and lets a cancelled admission
request stop waiting on the API server right away. API calls are throttled
client-side when the store is given a token bucket.
"""

import asyncio
import json
import logging
from http import HTTPStatus
from typing import Any, Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException

from gmsa_webhook.constants import (
    CRD_API_GROUP,
    CRD_API_VERSION,
    CRD_CONTENTS_FIELD,
    CRD_RESOURCE_NAME,
    CRD_USE_VERB,
)
from gmsa_webhook.errors import AdmissionError
from gmsa_webhook.utils.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


class CredSpecStore(Protocol):
    """Read-only access to credential specs and their usage authorization."""

    async def is_authorized(
        self, service_account_name: str, namespace: str, cred_spec_name: str
    ) -> tuple[bool, str]:
        """
        Check whether a service account may `use` a cred spec.

        Ordinary denials and API failures alike return (False, reason).
        """
        ...

    async def fetch_contents(
        self, cred_spec_name: str
    ) -> tuple[str | None, AdmissionError | None]:
        """
        Fetch the canonical JSON contents of a cred spec.

        Returns (contents, None) on success, or (None, error) where the
        error is NOT_FOUND when the cred spec doesn't exist and
        INTERNAL_ERROR for any other failure.
        """
        ...


def service_account_user(namespace: str, service_account_name: str) -> str:
    """Username the API server assigns to a service account."""
    return f"system:serviceaccount:{namespace}:{service_account_name}"


def service_account_groups(namespace: str) -> list[str]:
    """Groups the API server assigns to every service account of a namespace."""
    return [
        "system:serviceaccounts",
        f"system:serviceaccounts:{namespace}",
    ]


class KubernetesCredSpecStore:
    """Cred spec store backed by the Kubernetes API."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        rate_limiter: TokenBucket | None = None,
    ):
        """
        Initialize the store.

        Args:
            api_client: Configured API client; the default client is used if None
            rate_limiter: Token bucket every API call must acquire a token
                from; calls are not throttled if None
        """
        self.api_client = api_client
        self.rate_limiter = rate_limiter

    async def _throttle(self) -> None:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

    def _sync_create_access_review(
        self, service_account_name: str, namespace: str, cred_spec_name: str
    ) -> Any:
        """Synchronous helper to create the access review (runs in thread pool)."""
        auth_api = client.AuthorizationV1Api(self.api_client)
        review = client.V1LocalSubjectAccessReview(
            metadata=client.V1ObjectMeta(namespace=namespace),
            spec=client.V1SubjectAccessReviewSpec(
                resource_attributes=client.V1ResourceAttributes(
                    namespace=namespace,
                    verb=CRD_USE_VERB,
                    group=CRD_API_GROUP,
                    version=CRD_API_VERSION,
                    resource=CRD_RESOURCE_NAME,
                    name=cred_spec_name,
                ),
                user=service_account_user(namespace, service_account_name),
                groups=service_account_groups(namespace),
            ),
        )
        return auth_api.create_namespaced_local_subject_access_review(
            namespace=namespace, body=review
        )

    def _sync_get_cred_spec(self, cred_spec_name: str) -> dict[str, Any]:
        """Synchronous helper to read the cred spec (runs in thread pool)."""
        api = client.CustomObjectsApi(self.api_client)
        return api.get_cluster_custom_object(
            group=CRD_API_GROUP,
            version=CRD_API_VERSION,
            plural=CRD_RESOURCE_NAME,
            name=cred_spec_name,
        )

    async def is_authorized(
        self, service_account_name: str, namespace: str, cred_spec_name: str
    ) -> tuple[bool, str]:
        await self._throttle()
        try:
            result = await asyncio.to_thread(
                self._sync_create_access_review,
                service_account_name,
                namespace,
                cred_spec_name,
            )
        except ApiException as e:
            logger.error(
                f"API error checking access to cred spec {cred_spec_name} "
                f"for service account {namespace}/{service_account_name}: {e}"
            )
            return False, f"error when checking authz access: {e}"
        except Exception as e:
            logger.error(
                f"Unexpected error checking access to cred spec {cred_spec_name}: {e}"
            )
            return False, f"error when checking authz access: {e}"

        status = result.status
        allowed = bool(status.allowed) and not bool(status.denied)
        reason = status.reason or ""
        logger.debug(
            f"Access review for service account {namespace}/{service_account_name} "
            f"on cred spec {cred_spec_name}: allowed={allowed} reason={reason!r}"
        )
        return allowed, reason

    async def fetch_contents(
        self, cred_spec_name: str
    ) -> tuple[str | None, AdmissionError | None]:
        await self._throttle()
        try:
            cred_spec = await asyncio.to_thread(self._sync_get_cred_spec, cred_spec_name)
        except ApiException as e:
            if e.status == HTTPStatus.NOT_FOUND:
                return None, AdmissionError.not_found(
                    f"cred spec {cred_spec_name} does not exist"
                )
            logger.error(f"API error retrieving cred spec {cred_spec_name}: {e}")
            return None, AdmissionError.internal_error(
                f"unable to retrieve the contents of cred spec {cred_spec_name}: {e}"
            )
        except Exception as e:
            logger.error(f"Unexpected error retrieving cred spec {cred_spec_name}: {e}")
            return None, AdmissionError.internal_error(
                f"unable to retrieve the contents of cred spec {cred_spec_name}: {e}"
            )

        contents = cred_spec.get(CRD_CONTENTS_FIELD)
        if contents is None or contents == "":
            return None, AdmissionError.internal_error(
                f"cred spec {cred_spec_name} does not have a {CRD_CONTENTS_FIELD} key",
                code=int(HTTPStatus.EXPECTATION_FAILED),
            )

        try:
            return json.dumps(contents, separators=(",", ":"), sort_keys=True), None
        except (TypeError, ValueError) as e:
            return None, AdmissionError.internal_error(
                f"unable to marshall cred spec {cred_spec_name} into a JSON: {e}"
            )
