"""
Generation boundary: device video commands and the shared polling coordinator.

Design intent:
- Keep device command shapes out of API handlers.
- Share one polling loop across every observer waiting on a generated video.
"""
from __future__ import annotations

from .coordinator import (
    CaptureStoreDataSource,
    DataSource,
    GenerationCoordinator,
    PollingRequest,
    PollingResult,
)
from .video_store import VideoStoreClient, decode_video_payload, parse_storage_state

__all__ = [
    "CaptureStoreDataSource",
    "DataSource",
    "GenerationCoordinator",
    "PollingRequest",
    "PollingResult",
    "VideoStoreClient",
    "decode_video_payload",
    "parse_storage_state",
]
