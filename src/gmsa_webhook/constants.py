"""
Constants used throughout the GMSA admission webhook.

This module defines all constant values used by the webhook including:
- Coordinates of the GMSA credential spec custom resource
- Admission review protocol values
- JSON patch paths into pod specs
"""

# Coordinates of the GMSACredentialSpec custom resource definition
CRD_API_GROUP = "windows.k8s.io"
CRD_API_VERSION = "v1"
CRD_RESOURCE_NAME = "gmsacredentialspecs"

# The single field expected on a GMSA resource, holding the cred spec itself
CRD_CONTENTS_FIELD = "credspec"

# Verb checked by the SubjectAccessReview for cred spec usage
CRD_USE_VERB = "use"

# Admission review protocol
ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_REVIEW_KIND = "AdmissionReview"
PATCH_TYPE_JSON_PATCH = "JSONPatch"
POD_KIND = "Pod"

OPERATION_CREATE = "CREATE"
OPERATION_UPDATE = "UPDATE"

# HTTP
JSON_CONTENT_TYPE = "application/json"

# Pod spec locations of the GMSA fields, as JSON pointer segments
POD_WINDOWS_OPTIONS_SEGMENTS = ("spec", "securityContext", "windowsOptions")
CONTAINER_WINDOWS_OPTIONS_SEGMENTS = ("securityContext", "windowsOptions")
GMSA_CONTENTS_FIELD = "gmsaCredentialSpec"
GMSA_NAME_FIELD = "gmsaCredentialSpecName"

# Random hostnames are capped at the NetBIOS computer name length
RANDOM_HOSTNAME_LENGTH = 15
HOSTNAME_PATCH_PATH = "/spec/hostname"

# Service account used by pods that don't name one
DEFAULT_SERVICE_ACCOUNT = "default"

# Kubernetes secret volumes swap their contents through this symlink
SECRET_VOLUME_DATA_PREFIX = ".."
