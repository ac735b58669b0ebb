from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional, Sequence

from ..internal_core.contracts import CaptureRecord

SortOrder = Literal["ascending", "descending"]


class RemoteCallError(RuntimeError):
    def __init__(self, code: str, message: str, target: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.target = target


class CommandTimeoutError(RemoteCallError):
    """Raised when a device command loses its race against a fixed deadline."""


@dataclass(frozen=True)
class CaptureFilter:
    owner_id: str
    component_name: Optional[str] = None
    component_type: Optional[str] = None
    tags: tuple[str, ...] = ()

    def matches(self, owner_id: str, record: CaptureRecord) -> bool:
        if self.owner_id and owner_id != self.owner_id:
            return False
        if self.component_name is not None and record.component_name != self.component_name:
            return False
        if self.component_type is not None and record.component_type != self.component_type:
            return False
        return all(tag in record.tags for tag in self.tags)


@dataclass(frozen=True)
class CapturePage:
    records: list[CaptureRecord]
    next_page_token: Optional[str] = None


class CaptureStoreClient(ABC):
    """Append-only remote object store holding capture records."""

    @abstractmethod
    async def write(
        self,
        data: bytes,
        *,
        owner_id: str,
        component_type: str,
        component_name: str,
        method: str,
        file_ext: str,
        time_range: tuple[datetime, datetime],
        tags: Sequence[str],
    ) -> str: ...

    @abstractmethod
    async def list_by_filter(
        self,
        capture_filter: CaptureFilter,
        *,
        page_size: int,
        order: SortOrder = "descending",
        page_token: Optional[str] = None,
        include_binary: bool = False,
    ) -> CapturePage: ...

    @abstractmethod
    async def read_by_ids(self, ids: Sequence[str]) -> list[CaptureRecord]: ...

    @abstractmethod
    async def delete_by_ids(self, ids: Sequence[str]) -> int: ...


class DeviceCommandChannel(ABC):
    """Request/response invocation of a device-side service."""

    @abstractmethod
    async def invoke(self, command: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def name(self) -> str: ...
