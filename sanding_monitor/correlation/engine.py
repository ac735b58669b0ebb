from __future__ import annotations

"""
Match capture records to passes and steps.

Design intent:
- Stay pure: no I/O, no owned state, deterministic for a fixed input order.
- Treat filenames as authoritative for generated step videos and the pass
  window (closed on both ends) for camera images.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from ..internal_core.contracts import CaptureRecord, Pass, Step
from .artifact_key import ArtifactKey

RecordSource = Union[Iterable[CaptureRecord], Mapping[str, CaptureRecord]]

_CAMERA_RE = re.compile(r"video_([^/]+)")
UNKNOWN_CAMERA = "Unknown Camera"


@dataclass(frozen=True)
class BeforeAfterImages:
    before: Optional[CaptureRecord]
    after: Optional[CaptureRecord]

    @property
    def same_record(self) -> bool:
        return self.before is not None and self.after is not None and self.before.id == self.after.id


def as_record_list(records: RecordSource | None) -> list[CaptureRecord]:
    if not records:
        return []
    if isinstance(records, Mapping):
        return list(records.values())
    return list(records)


def _in_window(record: CaptureRecord, pass_: Pass) -> bool:
    return pass_.start <= record.timestamp_utc <= pass_.end


def match_step_videos(step: Step, records: RecordSource | None) -> list[CaptureRecord]:
    key = ArtifactKey.for_step(step)
    return [record for record in as_record_list(records) if key.matches_filename(record.filename)]


def match_before_after_images(
    pass_: Pass,
    records: RecordSource | None,
    component_name: str,
) -> BeforeAfterImages:
    candidates = [
        record
        for record in as_record_list(records)
        if record.component_name == component_name and _in_window(record, pass_)
    ]
    if not candidates:
        return BeforeAfterImages(before=None, after=None)
    candidates.sort(key=lambda item: item.timestamp_utc)
    return BeforeAfterImages(before=candidates[0], after=candidates[-1])


def match_pass_files(pass_: Pass, records: RecordSource | None) -> list[CaptureRecord]:
    seen: set[str] = set()
    matched: list[CaptureRecord] = []
    for record in as_record_list(records):
        if record.id in seen:
            continue
        named = pass_.pass_id in (record.filename or "").split("/")
        if named or _in_window(record, pass_):
            seen.add(record.id)
            matched.append(record)
    matched.sort(key=lambda item: item.timestamp_utc)
    return matched


def extract_camera_name(filename: str) -> str:
    match = _CAMERA_RE.search(filename or "")
    return match.group(1) if match else UNKNOWN_CAMERA
