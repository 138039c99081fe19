"""
Pydantic models for the parts of a Pod the webhook looks at.

Only the fields involved in GMSA credential spec assignment are modelled;
everything else in the pod JSON is ignored on parsing.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from gmsa_webhook.constants import (
    CONTAINER_WINDOWS_OPTIONS_SEGMENTS,
    POD_WINDOWS_OPTIONS_SEGMENTS,
)

from .decision import json_pointer


class WindowsSecurityContextOptions(BaseModel):
    """GMSA credential spec assignment of a pod or a container."""

    model_config = {"populate_by_name": True}

    gmsa_credential_spec_name: str | None = Field(
        None,
        alias="gmsaCredentialSpecName",
        description="Name of the GMSACredentialSpec resource to use",
    )
    gmsa_credential_spec: str | None = Field(
        None,
        alias="gmsaCredentialSpec",
        description="Inlined JSON contents of the credential spec",
    )


class SecurityContext(BaseModel):
    """Pod- or container-level security context."""

    model_config = {"populate_by_name": True}

    windows_options: WindowsSecurityContextOptions | None = Field(
        None, alias="windowsOptions"
    )


class Container(BaseModel):
    model_config = {"populate_by_name": True}

    name: str = ""
    security_context: SecurityContext | None = Field(None, alias="securityContext")


class PodSpec(BaseModel):
    model_config = {"populate_by_name": True}

    service_account_name: str = Field("", alias="serviceAccountName")
    security_context: SecurityContext | None = Field(None, alias="securityContext")
    containers: list[Container] = Field(default_factory=list)
    host_network: bool = Field(False, alias="hostNetwork")
    hostname: str = ""


class ObjectMeta(BaseModel):
    model_config = {"populate_by_name": True}

    name: str = ""
    generate_name: str = Field("", alias="generateName")
    namespace: str = ""


class ResourceKind(Enum):
    """Kind of resource a GMSA assignment is attached to."""

    POD = "pod"
    CONTAINER = "container"


@dataclass(frozen=True)
class ResourceRef:
    """
    Identifies the pod or one of its containers.

    `index` is the container's position in the pod spec, and None for the pod.
    """

    kind: ResourceKind
    name: str
    index: int | None = None

    def __str__(self) -> str:
        return f'{self.kind.value} "{self.name}"'

    def field_path(self, field_name: str) -> str:
        """JSON pointer to a field of this resource's windows options."""
        if self.kind is ResourceKind.POD:
            return json_pointer(*POD_WINDOWS_OPTIONS_SEGMENTS, field_name)
        return json_pointer(
            "spec",
            "containers",
            str(self.index),
            *CONTAINER_WINDOWS_OPTIONS_SEGMENTS,
            field_name,
        )


class Pod(BaseModel):
    """A Kubernetes pod, reduced to what GMSA admission needs."""

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)

    @property
    def display_name(self) -> str:
        """Pod name, or its generateName prefix before the API server assigns one."""
        return self.metadata.name or self.metadata.generate_name

    def resources(
        self,
    ) -> Iterator[tuple[ResourceRef, WindowsSecurityContextOptions | None]]:
        """
        Yield the pod and each of its containers with their windows options.

        The pod comes first, then containers in spec order.
        """
        pod_context = self.spec.security_context
        yield (
            ResourceRef(ResourceKind.POD, self.display_name),
            pod_context.windows_options if pod_context is not None else None,
        )

        for index, container in enumerate(self.spec.containers):
            context = container.security_context
            yield (
                ResourceRef(ResourceKind.CONTAINER, container.name, index),
                context.windows_options if context is not None else None,
            )

    def windows_options(
        self,
    ) -> Iterator[tuple[ResourceRef, WindowsSecurityContextOptions]]:
        """Like `resources()`, skipping resources without windows options."""
        for resource, options in self.resources():
            if options is not None:
                yield resource, options

    def container_windows_options(self) -> dict[str, WindowsSecurityContextOptions]:
        """Map container names to their windows options."""
        return {
            ref.name: options
            for ref, options in self.windows_options()
            if ref.kind is ResourceKind.CONTAINER
        }
