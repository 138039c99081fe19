"""
Admission decision and JSON patch models.

A decision is produced fresh for every admission request and carries the
verdict plus, for mutations, the JSON patch operations to apply.
"""

from typing import Literal

from pydantic import BaseModel, Field


def escape_json_pointer_segment(segment: str) -> str:
    """Escape a JSON pointer reference token (RFC 6901)."""
    return segment.replace("~", "~0").replace("/", "~1")


def json_pointer(*segments: str) -> str:
    """Build a JSON pointer from unescaped segments."""
    return "".join("/" + escape_json_pointer_segment(s) for s in segments)


class PatchOp(BaseModel):
    """A single JSON patch addition."""

    op: Literal["add"] = "add"
    path: str
    value: str


class Decision(BaseModel):
    """Verdict for one admission request."""

    allowed: bool = True
    code: int = 200
    message: str | None = None
    patches: list[PatchOp] = Field(default_factory=list)
