from __future__ import annotations

"""
Timestamp helpers shared by the capture store and the device video service.

Design intent:
- Keep every instant timezone-aware and in UTC once it enters the core.
- Own the video-store wire pattern `YYYY-MM-DD_HH-MM-SSZ` and its exact
  conversion to/from the ISO-8601 `YYYY-MM-DDTHH:MM:SS.sssZ` form used elsewhere.
"""

import re
from datetime import datetime, timedelta, timezone

_VIDEO_STORE_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})_(?P<h>\d{2})-(?P<m>\d{2})-(?P<s>\d{2})Z$"
)
_VIDEO_STORE_FORMAT = "%Y-%m-%d_%H-%M-%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso(text: str) -> datetime:
    raw = str(text or "").strip()
    if not raw:
        raise ValueError("Empty ISO-8601 timestamp.")
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(raw))


def format_iso_millis(value: datetime) -> str:
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def format_video_store_time(value: datetime) -> str:
    # Sub-second precision is dropped; the device pattern has none.
    return ensure_utc(value).strftime(_VIDEO_STORE_FORMAT)


def parse_video_store_time(text: str) -> datetime:
    match = _VIDEO_STORE_RE.match(str(text or "").strip())
    if match is None:
        raise ValueError(f"Invalid video store timestamp: {text!r}")
    return datetime.strptime(match.group(0), _VIDEO_STORE_FORMAT).replace(tzinfo=timezone.utc)


def video_store_to_iso(text: str) -> str:
    return format_iso_millis(parse_video_store_time(text))


def iso_to_video_store(text: str) -> str:
    return format_video_store_time(parse_iso(text))


def buffered_window(
    start: datetime,
    end: datetime,
    buffer: timedelta,
    now: datetime,
) -> tuple[datetime, datetime]:
    """Widen `[start, end]` by `buffer` on both sides, never ending after `now`."""
    window_start = ensure_utc(start) - buffer
    window_end = ensure_utc(end) + buffer
    now = ensure_utc(now)
    if window_end > now:
        window_end = now
    return window_start, window_end
