"""
Admission error values returned by the decision engine.

Admission failures are ordinary outcomes of evaluating a pod, so they are
returned as values rather than raised. Each error carries the HTTP status
code reported back inside the admission review, and optionally the pod
that caused it for logging purposes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gmsa_webhook.models.pod import Pod


class ErrorKind(Enum):
    """Category of an admission failure, with its default HTTP status code."""

    BAD_REQUEST = HTTPStatus.BAD_REQUEST
    FORBIDDEN = HTTPStatus.FORBIDDEN
    UNPROCESSABLE_CONTENT = HTTPStatus.UNPROCESSABLE_ENTITY
    NOT_FOUND = HTTPStatus.NOT_FOUND
    INTERNAL_ERROR = HTTPStatus.INTERNAL_SERVER_ERROR

    @property
    def default_code(self) -> int:
        return int(self.value)


@dataclass(frozen=True)
class AdmissionError:
    """
    A refusal to admit a pod.

    Attributes:
        kind: Failure category
        message: Human-readable reason, sent back to the API server
        code: HTTP status code sent back inside the admission response
        pod: Offending pod, for logging only; never serialized
    """

    kind: ErrorKind
    message: str
    code: int
    pod: Pod | None = field(default=None, compare=False, repr=False)

    def __str__(self) -> str:
        return self.message

    def with_pod(self, pod: Pod | None) -> AdmissionError:
        """Return a copy of this error attached to the given pod."""
        return AdmissionError(
            kind=self.kind, message=self.message, code=self.code, pod=pod
        )

    @classmethod
    def bad_request(cls, message: str, pod: Pod | None = None) -> AdmissionError:
        return cls(ErrorKind.BAD_REQUEST, message, ErrorKind.BAD_REQUEST.default_code, pod)

    @classmethod
    def forbidden(cls, message: str, pod: Pod | None = None) -> AdmissionError:
        return cls(ErrorKind.FORBIDDEN, message, ErrorKind.FORBIDDEN.default_code, pod)

    @classmethod
    def unprocessable(cls, message: str, pod: Pod | None = None) -> AdmissionError:
        return cls(
            ErrorKind.UNPROCESSABLE_CONTENT,
            message,
            ErrorKind.UNPROCESSABLE_CONTENT.default_code,
            pod,
        )

    @classmethod
    def not_found(cls, message: str, pod: Pod | None = None) -> AdmissionError:
        return cls(ErrorKind.NOT_FOUND, message, ErrorKind.NOT_FOUND.default_code, pod)

    @classmethod
    def internal_error(
        cls, message: str, code: int | None = None, pod: Pod | None = None
    ) -> AdmissionError:
        """Internal failure; `code` overrides the default 500 when the cause warrants it."""
        return cls(
            ErrorKind.INTERNAL_ERROR,
            message,
            code or ErrorKind.INTERNAL_ERROR.default_code,
            pod,
        )
