"""
Correlation boundary: capture records to passes, steps and artifact keys.

Design intent:
- Keep matching rules pure so the coordinator and the API share them verbatim.
"""
from __future__ import annotations

from .artifact_key import ArtifactKey
from .engine import (
    BeforeAfterImages,
    as_record_list,
    extract_camera_name,
    match_before_after_images,
    match_pass_files,
    match_step_videos,
)

__all__ = [
    "ArtifactKey",
    "BeforeAfterImages",
    "as_record_list",
    "extract_camera_name",
    "match_before_after_images",
    "match_pass_files",
    "match_step_videos",
]
