"""
Admission decisions for GMSA credential spec assignments on pods.

The engine enforces that:
- a GMSA cred spec's contents are never set without its name
- the pod's service account is authorized to `use` every cred spec it names
- inlined cred spec contents match the contents of the named resource
- GMSA settings can't be changed on pod updates

and, when mutating, inlines the contents of named cred specs into the pod.

Resources are evaluated in a fixed order, the pod first and then its
containers in spec order, and evaluation stops at the first failure.
Failures are returned as `AdmissionError` values.
"""

import json
import logging
import secrets
import string
from enum import Enum
from typing import Any

from pydantic import ValidationError

from gmsa_webhook.constants import (
    DEFAULT_SERVICE_ACCOUNT,
    GMSA_CONTENTS_FIELD,
    HOSTNAME_PATCH_PATH,
    OPERATION_CREATE,
    OPERATION_UPDATE,
    POD_KIND,
    RANDOM_HOSTNAME_LENGTH,
)
from gmsa_webhook.errors import AdmissionError
from gmsa_webhook.models.admission import AdmissionRequest
from gmsa_webhook.models.decision import Decision, PatchOp
from gmsa_webhook.models.pod import (
    Pod,
    ResourceKind,
    ResourceRef,
    WindowsSecurityContextOptions,
)
from gmsa_webhook.utils.credspec_store import CredSpecStore

logger = logging.getLogger(__name__)

AdmissionResult = Decision | AdmissionError

HOSTNAME_ALPHABET = string.ascii_lowercase + string.digits

PARSE_ERROR_EXCERPT_LENGTH = 128


class WebhookOperation(Enum):
    """Which webhook endpoint a request came in on."""

    VALIDATE = "validate"
    MUTATE = "mutate"


def json_values_equal(left: Any, right: Any) -> bool:
    """
    Compare two decoded JSON values structurally.

    Object key order is irrelevant; booleans never equal numbers, and
    integers equal floats of the same value. Nested values are walked with
    an explicit stack, so nesting depth is not bounded by the recursion limit.
    """
    pending = [(left, right)]
    while pending:
        left, right = pending.pop()
        if isinstance(left, bool) or isinstance(right, bool):
            if not (isinstance(left, bool) and isinstance(right, bool)):
                return False
            if left != right:
                return False
        elif isinstance(left, int | float) and isinstance(right, int | float):
            if left != right:
                return False
        elif isinstance(left, dict) and isinstance(right, dict):
            if left.keys() != right.keys():
                return False
            pending.extend((value, right[key]) for key, value in left.items())
        elif isinstance(left, list) and isinstance(right, list):
            if len(left) != len(right):
                return False
            pending.extend(zip(left, right, strict=True))
        elif type(left) is not type(right) or left != right:
            return False
    return True


def _excerpt(value: str, limit: int = PARSE_ERROR_EXCERPT_LENGTH) -> str:
    if len(value) <= limit:
        return repr(value)
    return f"{value[:limit]!r}... ({len(value)} characters)"


def compare_cred_spec_contents(
    from_resource: str, from_crd: str
) -> tuple[bool, str | None]:
    """
    Check whether two strings hold the same cred spec contents.

    Returns:
        Tuple of (equal, error) where error explains a parsing failure
    """
    # This is the common case: contents inlined by the mutating webhook
    if from_resource == from_crd:
        return True, None

    try:
        resource_value = json.loads(from_resource)
    except (ValueError, RecursionError) as e:
        return False, f"unable to parse {_excerpt(from_resource)} as JSON: {e}"
    try:
        crd_value = json.loads(from_crd)
    except (ValueError, RecursionError) as e:
        return False, f"unable to parse CRD {_excerpt(from_crd)} as JSON: {e}"

    return json_values_equal(resource_value, crd_value), None


def generate_random_hostname(length: int = RANDOM_HOSTNAME_LENGTH) -> str:
    return "".join(secrets.choice(HOSTNAME_ALPHABET) for _ in range(length))


def decode_pod(raw: dict[str, Any] | None) -> tuple[Pod | None, AdmissionError | None]:
    """Decode a pod from its raw JSON object."""
    if raw is None:
        return None, AdmissionError.bad_request(
            "unable to unmarshall pod JSON object: no object in request"
        )
    try:
        return Pod.model_validate(raw), None
    except ValidationError as e:
        return None, AdmissionError.bad_request(
            f"unable to unmarshall pod JSON object: {e}"
        )


class AdmissionDecisionEngine:
    """Evaluates pod admission requests against GMSA assignment rules."""

    def __init__(self, store: CredSpecStore, random_hostname: bool = False):
        """
        Initialize the engine.

        Args:
            store: Source of cred spec contents and usage authorization
            random_hostname: Give pods a random hostname when mutation
                inlines a cred spec into them
        """
        self.store = store
        self.random_hostname = random_hostname

    async def validate_or_mutate(
        self, request: AdmissionRequest, operation: WebhookOperation
    ) -> AdmissionResult:
        """Route an admission request to the matching evaluation."""
        if request.kind.kind != POD_KIND:
            return self.evaluate_non_create_or_update(request)

        if request.operation not in (OPERATION_CREATE, OPERATION_UPDATE):
            # the object is only decoded to name the pod in logs
            pod, _ = decode_pod(request.object)
            return self.evaluate_non_create_or_update(request, pod)

        pod, error = decode_pod(request.object)
        if error is not None:
            return error

        if request.operation == OPERATION_CREATE:
            return await self.evaluate_create(pod, request.namespace, operation)

        if operation is not WebhookOperation.VALIDATE:
            # updates are only validated, never mutated
            return Decision()
        old_pod, error = decode_pod(request.old_object)
        if error is not None:
            return error.with_pod(pod)
        return self.evaluate_update(pod, old_pod)

    async def evaluate_create(
        self, pod: Pod, namespace: str, operation: WebhookOperation
    ) -> AdmissionResult:
        """
        Evaluate a pod creation.

        Checks every GMSA assignment in the pod and, when mutating, inlines
        the contents of cred specs referenced by name only.

        Args:
            pod: The pod being created
            namespace: Namespace the pod is created in
            operation: Whether to validate or mutate

        Returns:
            An allowing Decision with the patches to apply, or the first
            AdmissionError encountered
        """
        patches: list[PatchOp] = []
        service_account = pod.spec.service_account_name or DEFAULT_SERVICE_ACCOUNT

        for resource, options in pod.windows_options():
            name = options.gmsa_credential_spec_name
            contents = options.gmsa_credential_spec

            if name is None:
                if contents is not None:
                    return AdmissionError.unprocessable(
                        f"{resource} has a GMSA cred spec set, but does not define "
                        f"the name of the corresponding resource",
                        pod,
                    )
                continue

            error = await self._check_authorized(pod, service_account, namespace, name)
            if error is not None:
                return error

            if contents is not None:
                error = await self._check_contents(pod, resource, name, contents)
                if error is not None:
                    return error
            elif operation is WebhookOperation.MUTATE:
                expected, error = await self.store.fetch_contents(name)
                if error is not None:
                    return error.with_pod(pod)
                patches.append(
                    PatchOp(path=resource.field_path(GMSA_CONTENTS_FIELD), value=expected)
                )

        if patches and self.random_hostname:
            hostname_patch = self._hostname_patch(pod)
            if hostname_patch is not None:
                patches.append(hostname_patch)

        return Decision(patches=patches)

    async def _check_authorized(
        self, pod: Pod, service_account: str, namespace: str, name: str
    ) -> AdmissionError | None:
        authorized, reason = await self.store.is_authorized(
            service_account, namespace, name
        )
        if authorized:
            return None

        message = (
            f'service account "{service_account}" is not authorized to `use` '
            f'GMSA cred spec "{name}"'
        )
        if reason:
            message += f', reason: "{reason}"'
        return AdmissionError.forbidden(message, pod)

    async def _check_contents(
        self, pod: Pod, resource: ResourceRef, name: str, contents: str
    ) -> AdmissionError | None:
        expected, error = await self.store.fetch_contents(name)
        if error is not None:
            return error.with_pod(pod)

        equal, compare_error = compare_cred_spec_contents(contents, expected)
        if equal:
            return None

        message = (
            f"the GMSA cred spec contents for {resource} does not match the "
            f'contents of GMSA resource "{name}"'
        )
        if compare_error:
            message += f": {compare_error}"
        return AdmissionError.unprocessable(message, pod)

    def _hostname_patch(self, pod: Pod) -> PatchOp | None:
        if pod.spec.host_network or pod.spec.hostname:
            return None
        return PatchOp(path=HOSTNAME_PATCH_PATH, value=generate_random_hostname())

    def evaluate_update(self, pod: Pod, old_pod: Pod) -> AdmissionResult:
        """
        Evaluate a pod update: GMSA names and contents must not change.

        Containers are matched by name; a container missing from the old
        pod counts as having no GMSA settings. Values are compared
        literally, so even re-serialized contents count as a change.
        """
        old_containers: dict[str, WindowsSecurityContextOptions] | None = None

        for resource, options in pod.resources():
            if resource.kind is ResourceKind.POD:
                old_context = old_pod.spec.security_context
                old_options = old_context.windows_options if old_context else None
            else:
                if old_containers is None:
                    old_containers = old_pod.container_windows_options()
                old_options = old_containers.get(resource.name)

            options = options or WindowsSecurityContextOptions()
            old_options = old_options or WindowsSecurityContextOptions()

            modified = []
            if options.gmsa_credential_spec_name != old_options.gmsa_credential_spec_name:
                modified.append("name")
            if options.gmsa_credential_spec != old_options.gmsa_credential_spec:
                modified.append("contents")

            if modified:
                return AdmissionError.forbidden(
                    f"cannot update an existing pod's GMSA settings "
                    f"(GMSA {' and '.join(modified)} modified on {resource})",
                    pod,
                )

        return Decision()

    def evaluate_non_create_or_update(
        self, request: AdmissionRequest, pod: Pod | None = None
    ) -> AdmissionError:
        """Reject objects other than pods, and operations other than create/update."""
        if request.kind.kind != POD_KIND:
            return AdmissionError.bad_request(
                f"expected a {POD_KIND} object, got a {request.kind.kind}"
            )
        return AdmissionError.bad_request(
            f"unexpected operation {request.operation}", pod
        )
