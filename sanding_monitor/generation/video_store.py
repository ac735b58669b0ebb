from __future__ import annotations

"""
Typed wrapper over the device video service commands.

Design intent:
- Build `save` / `fetch` / `get-storage-state` commands in the device's
  timestamp wire format.
- Surface an explicit deadline miss as `CommandTimeoutError`, never as
  "no video".
"""

import asyncio
import base64
import binascii
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..clients.base import CommandTimeoutError, DeviceCommandChannel, RemoteCallError
from ..correlation.artifact_key import ArtifactKey
from ..internal_core.contracts import Pass, Step, TimeRange
from ..internal_core.timestamps import (
    buffered_window,
    format_video_store_time,
    parse_video_store_time,
    utc_now,
)

logger = logging.getLogger(__name__)


def _range_bounds(entry: Any) -> tuple[Any, Any]:
    if not isinstance(entry, dict):
        return None, None
    if entry.get("start") and entry.get("end"):
        return entry["start"], entry["end"]
    if entry.get("from") and entry.get("to"):
        return entry["from"], entry["to"]
    nested = entry.get("time_range")
    if isinstance(nested, dict):
        return nested.get("start") or nested.get("from"), nested.get("end") or nested.get("to")
    return None, None


def parse_storage_state(response: dict[str, Any]) -> list[TimeRange]:
    """Read retained ranges from a `get-storage-state` response.

    `stored_video` entries win over `ranges`; entries whose bounds are missing
    or not in the device timestamp format are skipped.
    """
    payload = response or {}
    entries = payload.get("stored_video") or payload.get("ranges") or []
    ranges: list[TimeRange] = []
    for entry in entries:
        start_raw, end_raw = _range_bounds(entry)
        if not start_raw or not end_raw:
            logger.warning("storage_state_entry_skipped reason=missing_bounds entry=%s", entry)
            continue
        try:
            start = parse_video_store_time(str(start_raw))
            end = parse_video_store_time(str(end_raw))
        except ValueError as exc:
            logger.warning("storage_state_entry_skipped reason=%s", exc)
            continue
        ranges.append(TimeRange(start=start, end=end))
    return ranges


def decode_video_payload(response: dict[str, Any]) -> Optional[bytes]:
    encoded = (response or {}).get("video")
    if not encoded:
        return None
    text = str(encoded)
    if "," in text:
        # data:video/mp4;base64,<payload>
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RemoteCallError("bad_payload", f"Invalid base64 video payload: {exc}", "video_store") from exc


class VideoStoreClient:
    def __init__(
        self,
        channel: DeviceCommandChannel,
        *,
        buffer_seconds: float = 10.0,
        fetch_timeout: float = 30.0,
        fetch_window_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._channel = channel
        self._buffer = timedelta(seconds=max(0.0, float(buffer_seconds)))
        self._fetch_timeout = float(fetch_timeout)
        self._fetch_window = timedelta(seconds=max(1.0, float(fetch_window_seconds)))
        self._clock = clock

    async def _invoke(self, command: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._channel.invoke(command)
        except RemoteCallError:
            raise
        except Exception as exc:
            raise RemoteCallError("invoke_failed", str(exc), self._channel.name()) from exc

    def build_save_command(self, step: Step) -> dict[str, Any]:
        start, end = buffered_window(step.start, step.end, self._buffer, self._clock())
        return {
            "command": "save",
            "from": format_video_store_time(start),
            "to": format_video_store_time(end),
            "metadata": ArtifactKey.for_step(step).metadata_tag,
        }

    async def generate_video(self, step: Step) -> dict[str, Any]:
        command = self.build_save_command(step)
        logger.info(
            "video_generate_requested pass_id=%s step=%s from=%s to=%s",
            step.pass_id,
            step.name,
            command["from"],
            command["to"],
        )
        return await self._invoke(command)

    async def get_storage_state(self) -> list[TimeRange]:
        response = await self._invoke({"command": "get-storage-state"})
        return parse_storage_state(response)

    async def fetch_video(self, start: datetime, end: datetime) -> Optional[bytes]:
        command = {
            "command": "fetch",
            "from": format_video_store_time(start),
            "to": format_video_store_time(end),
        }
        try:
            response = await asyncio.wait_for(self._invoke(command), timeout=self._fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise CommandTimeoutError(
                "timeout",
                f"Fetch command timed out after {self._fetch_timeout:g} seconds",
                self._channel.name(),
            ) from exc
        video = decode_video_payload(response)
        if video is None:
            logger.info("video_fetch_empty from=%s to=%s", command["from"], command["to"])
        return video

    async def fetch_stored_video(self, fallback: Optional[Pass] = None) -> Optional[bytes]:
        ranges = await self.get_storage_state()
        if ranges:
            first = ranges[0]
            end = min(first.end, first.start + self._fetch_window)
            return await self.fetch_video(first.start, end)
        if fallback is not None:
            return await self.fetch_video(fallback.start, fallback.end)
        raise ValueError("No retained video ranges and no pass window to fall back to.")
