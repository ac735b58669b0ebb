from __future__ import annotations

"""
Artifact key shared by video generation requests and filename correlation.

Design intent:
- One place encodes `(pass_id, step_name)` for the device `save` metadata and
  the coordinator key, and one place decides whether a filename carries it.
"""

from dataclasses import dataclass

from ..internal_core.contracts import Step

_TAG_SEPARATOR = "_"
_REQUEST_SEPARATOR = "-"


@dataclass(frozen=True)
class ArtifactKey:
    pass_id: str
    step_name: str

    def __post_init__(self) -> None:
        if not self.pass_id or not self.step_name:
            raise ValueError("ArtifactKey requires both pass_id and step_name.")

    @classmethod
    def for_step(cls, step: Step) -> "ArtifactKey":
        return cls(pass_id=step.pass_id, step_name=step.name)

    @property
    def request_key(self) -> str:
        return f"{self.pass_id}{_REQUEST_SEPARATOR}{self.step_name}"

    @property
    def metadata_tag(self) -> str:
        return f"{self.pass_id}{_TAG_SEPARATOR}{self.step_name}"

    @classmethod
    def from_metadata_tag(cls, tag: str) -> "ArtifactKey":
        # Step names never contain the separator; pass ids may.
        pass_id, sep, step_name = str(tag or "").rpartition(_TAG_SEPARATOR)
        if not sep or not pass_id or not step_name:
            raise ValueError(f"Malformed artifact metadata tag: {tag!r}")
        return cls(pass_id=pass_id, step_name=step_name)

    def matches_filename(self, filename: str | None) -> bool:
        if not filename:
            return False
        return self.pass_id in filename and self.step_name in filename
