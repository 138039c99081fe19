"""
Pydantic models for the admission.k8s.io/v1 AdmissionReview envelope.

Only the fields the webhook reads or writes are modelled. Embedded objects
are kept as raw dicts and decoded on demand, so that a malformed pod can be
reported inside the admission response rather than failing the envelope.
"""

import base64
import json
from typing import Any

from pydantic import BaseModel, Field

from gmsa_webhook.constants import (
    ADMISSION_API_VERSION,
    ADMISSION_REVIEW_KIND,
    PATCH_TYPE_JSON_PATCH,
)

from .decision import Decision


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str = ""


class AdmissionRequest(BaseModel):
    """The request half of an admission review."""

    model_config = {"populate_by_name": True}

    uid: str = ""
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    operation: str = ""
    namespace: str = ""
    name: str = ""
    object: dict[str, Any] | None = None
    old_object: dict[str, Any] | None = Field(None, alias="oldObject")
    dry_run: bool | None = Field(None, alias="dryRun")


class AdmissionStatus(BaseModel):
    """Result status attached to denied responses."""

    code: int
    message: str


class AdmissionResponse(BaseModel):
    """The response half of an admission review."""

    model_config = {"populate_by_name": True}

    uid: str = ""
    allowed: bool
    status: AdmissionStatus | None = None
    patch: str | None = Field(None, description="Base64-encoded JSON patch array")
    patch_type: str | None = Field(None, alias="patchType")

    @classmethod
    def from_decision(cls, decision: Decision) -> "AdmissionResponse":
        response = cls(allowed=decision.allowed)
        if not decision.allowed:
            response.status = AdmissionStatus(
                code=decision.code, message=decision.message or ""
            )
        if decision.patches:
            patch_json = json.dumps(
                [patch.model_dump() for patch in decision.patches]
            )
            response.patch = base64.b64encode(patch_json.encode("utf-8")).decode(
                "ascii"
            )
            response.patch_type = PATCH_TYPE_JSON_PATCH
        return response

    @classmethod
    def denied(cls, code: int, message: str) -> "AdmissionResponse":
        return cls(allowed=False, status=AdmissionStatus(code=code, message=message))


class AdmissionReview(BaseModel):
    """Admission review envelope, used for both requests and responses."""

    model_config = {"populate_by_name": True}

    api_version: str = Field(ADMISSION_API_VERSION, alias="apiVersion")
    kind: str = ADMISSION_REVIEW_KIND
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with Kubernetes field names, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)
