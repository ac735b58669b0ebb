from __future__ import annotations

from .base import (
    CaptureFilter,
    CapturePage,
    CaptureStoreClient,
    CommandTimeoutError,
    DeviceCommandChannel,
    RemoteCallError,
)
from .memory import InMemoryCaptureStore, LoopbackVideoStore

__all__ = [
    "CaptureFilter",
    "CapturePage",
    "CaptureStoreClient",
    "CommandTimeoutError",
    "DeviceCommandChannel",
    "InMemoryCaptureStore",
    "LoopbackVideoStore",
    "RemoteCallError",
]
