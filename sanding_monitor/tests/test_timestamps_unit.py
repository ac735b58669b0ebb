from datetime import datetime, timedelta, timezone

import pytest

from sanding_monitor.internal_core.timestamps import (
    buffered_window,
    ensure_utc,
    format_iso_millis,
    format_video_store_time,
    iso_to_video_store,
    parse_iso,
    parse_video_store_time,
    video_store_to_iso,
)


def test_format_video_store_time_uses_device_pattern() -> None:
    value = datetime(2025, 8, 15, 11, 31, 26, 987000, tzinfo=timezone.utc)
    assert format_video_store_time(value) == "2025-08-15_11-31-26Z"


def test_format_video_store_time_converts_offsets_to_utc() -> None:
    value = datetime(2025, 8, 15, 13, 31, 26, tzinfo=timezone(timedelta(hours=2)))
    assert format_video_store_time(value) == "2025-08-15_11-31-26Z"


def test_video_store_and_iso_conversions_round_trip() -> None:
    wire = "2025-01-21_21-11-00Z"
    iso = video_store_to_iso(wire)
    assert iso == "2025-01-21T21:11:00.000Z"
    assert iso_to_video_store(iso) == wire
    assert parse_video_store_time(wire) == parse_iso(iso)


def test_iso_to_video_store_accepts_offsets_and_drops_millis() -> None:
    assert iso_to_video_store("2025-01-21T22:11:00.456+01:00") == "2025-01-21_21-11-00Z"


@pytest.mark.parametrize(
    "text",
    ["", "2025-01-21T21:11:00Z", "2025-01-21_21:11:00Z", "2025-01-21_21-11-00", "2025-13-21_21-11-00Z"],
)
def test_parse_video_store_time_rejects_other_formats(text: str) -> None:
    with pytest.raises(ValueError):
        parse_video_store_time(text)


def test_format_iso_millis_and_naive_values_are_utc() -> None:
    naive = datetime(2025, 1, 21, 21, 11, 0, 5000)
    assert ensure_utc(naive).tzinfo == timezone.utc
    assert format_iso_millis(naive) == "2025-01-21T21:11:00.005Z"


def test_buffered_window_widens_and_caps_at_now() -> None:
    start = datetime(2025, 1, 21, 21, 11, 0, tzinfo=timezone.utc)
    end = datetime(2025, 1, 21, 21, 12, 0, tzinfo=timezone.utc)
    buffer = timedelta(seconds=10)

    far_future = end + timedelta(hours=1)
    assert buffered_window(start, end, buffer, far_future) == (
        start - buffer,
        end + buffer,
    )

    just_after = end + timedelta(seconds=3)
    assert buffered_window(start, end, buffer, just_after) == (start - buffer, just_after)
