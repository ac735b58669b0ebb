from __future__ import annotations

"""
In-process stand-ins for the remote capture store and the device video service.

Design intent:
- Behave like the remote collaborators closely enough for local runs and tests:
  append-only writes, paged filtered listing, batch deletes, async invocation.
- Never model transport concerns (auth, retries, latency jitter).
"""

import asyncio
import base64
import logging
import uuid
from datetime import datetime
from threading import RLock
from typing import Any, Optional, Sequence

from ..internal_core.contracts import CaptureRecord, TimeRange
from ..internal_core.timestamps import ensure_utc, format_video_store_time, parse_video_store_time
from .base import (
    CaptureFilter,
    CapturePage,
    CaptureStoreClient,
    DeviceCommandChannel,
    RemoteCallError,
    SortOrder,
)

logger = logging.getLogger(__name__)

SortKey = tuple[datetime, int]


def _encode_cursor(key: SortKey) -> str:
    timestamp, seq = key
    return f"{timestamp.isoformat()}|{seq}"


def _decode_cursor(token: str) -> SortKey:
    try:
        raw_time, _, raw_seq = token.rpartition("|")
        return ensure_utc(datetime.fromisoformat(raw_time)), int(raw_seq)
    except ValueError as exc:
        raise RemoteCallError("bad_page_token", f"Invalid page token: {token}", "capture_store") from exc


class InMemoryCaptureStore(CaptureStoreClient):
    def __init__(self, part_owners: Optional[dict[str, str]] = None) -> None:
        self._lock = RLock()
        self._seq = 0
        # Writes are addressed by part id, listings by machine id.
        self._part_owners: dict[str, str] = dict(part_owners or {})
        # id -> (owner_id, insertion sequence, record)
        self._records: dict[str, tuple[str, int, CaptureRecord]] = {}

    def add_record(self, owner_id: str, record: CaptureRecord) -> str:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Duplicate capture record id: {record.id}")
            self._seq += 1
            self._records[record.id] = (owner_id, self._seq, record)
        return record.id

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
    ) -> str:
        record_id = uuid.uuid4().hex
        requested_at = time_range[1]
        record = CaptureRecord(
            id=record_id,
            timestamp_utc=requested_at,
            filename=f"{component_name}/{format_video_store_time(requested_at)}_{record_id[:8]}{file_ext}",
            uri=f"memory://{owner_id}/{record_id}",
            tags=frozenset(tags),
            component_name=component_name,
            component_type=component_type,
            binary=bytes(data),
        )
        self.add_record(self._part_owners.get(owner_id, owner_id), record)
        logger.debug("capture_write id=%s method=%s tags=%s", record_id, method, sorted(tags))
        return record_id

    async def list_by_filter(
        self,
        capture_filter: CaptureFilter,
        *,
        page_size: int,
        order: SortOrder = "descending",
        page_token: Optional[str] = None,
        include_binary: bool = False,
    ) -> CapturePage:
        if page_size <= 0:
            raise ValueError("page_size must be positive.")
        descending = order == "descending"
        cursor = _decode_cursor(page_token) if page_token else None

        with self._lock:
            matched = [
                ((record.timestamp_utc, seq), record)
                for owner_id, seq, record in self._records.values()
                if capture_filter.matches(owner_id, record)
            ]

        matched.sort(key=lambda item: item[0], reverse=descending)
        # Resume strictly after the last key served; deletes between pages must not shift it.
        if cursor is not None:
            matched = [item for item in matched if (item[0] < cursor if descending else item[0] > cursor)]
        window = matched[:page_size]
        page = [record for _, record in window]
        if not include_binary:
            page = [record.model_copy(update={"binary": None}) for record in page]
        next_token = _encode_cursor(window[-1][0]) if len(matched) > page_size else None
        return CapturePage(records=page, next_page_token=next_token)

    async def read_by_ids(self, ids: Sequence[str]) -> list[CaptureRecord]:
        with self._lock:
            return [self._records[item][2] for item in ids if item in self._records]

    async def delete_by_ids(self, ids: Sequence[str]) -> int:
        deleted = 0
        with self._lock:
            for item in ids:
                if self._records.pop(item, None) is not None:
                    deleted += 1
        return deleted

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class LoopbackVideoStore(DeviceCommandChannel):
    """Device video service that publishes generated clips into a capture store."""

    def __init__(
        self,
        store: InMemoryCaptureStore,
        *,
        owner_id: str,
        camera_name: str = "cam1",
        component_name: str = "video-store",
        delay_seconds: float = 0.0,
        retained: Optional[Sequence[TimeRange]] = None,
        clip_bytes: bytes = b"\x00\x00\x00\x18ftypmp42",
    ) -> None:
        self._store = store
        self._owner_id = owner_id
        self._camera_name = camera_name
        self._component_name = component_name
        self._delay_seconds = max(0.0, float(delay_seconds))
        self._retained = list(retained or [])
        self._clip_bytes = clip_bytes
        self._pending: set[asyncio.Task[None]] = set()
        self.invocations: list[dict[str, Any]] = []

    def name(self) -> str:
        return self._component_name

    async def invoke(self, command: dict[str, Any]) -> dict[str, Any]:
        self.invocations.append(dict(command))
        kind = str(command.get("command", ""))
        if kind == "save":
            return self._save(command)
        if kind == "fetch":
            return self._fetch(command)
        if kind == "get-storage-state":
            return {
                "stored_video": [
                    {"from": format_video_store_time(item.start), "to": format_video_store_time(item.end)}
                    for item in self._retained
                ]
            }
        raise RemoteCallError("unknown_command", f"Unsupported command: {kind!r}", self.name())

    def _save(self, command: dict[str, Any]) -> dict[str, Any]:
        try:
            start = parse_video_store_time(str(command.get("from", "")))
            end = parse_video_store_time(str(command.get("to", "")))
        except ValueError as exc:
            raise RemoteCallError("bad_request", str(exc), self.name()) from exc
        metadata = str(command.get("metadata", "") or "")
        filename = f"video_{self._camera_name}_{metadata}_{format_video_store_time(start)}.mp4"
        task = asyncio.get_running_loop().create_task(self._publish(filename, end))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return {"status": "queued", "filename": filename}

    async def _publish(self, filename: str, captured_at: datetime) -> None:
        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)
        record = CaptureRecord(
            id=uuid.uuid4().hex,
            timestamp_utc=captured_at,
            filename=filename,
            uri=f"memory://{self._owner_id}/{filename}",
            tags=frozenset({"video"}),
            component_name=self._component_name,
            component_type="rdk:component:generic",
            binary=self._clip_bytes,
        )
        self._store.add_record(self._owner_id, record)
        logger.info("loopback_video_published filename=%s", filename)

    def _fetch(self, command: dict[str, Any]) -> dict[str, Any]:
        try:
            parse_video_store_time(str(command.get("from", "")))
            parse_video_store_time(str(command.get("to", "")))
        except ValueError as exc:
            raise RemoteCallError("bad_request", str(exc), self.name()) from exc
        if not self._retained:
            return {}
        return {"video": base64.b64encode(self._clip_bytes).decode("ascii")}

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
