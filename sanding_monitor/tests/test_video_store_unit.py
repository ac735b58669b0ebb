import asyncio
import base64
from datetime import datetime, timedelta, timezone

import pytest

from sanding_monitor.clients.base import CommandTimeoutError, DeviceCommandChannel, RemoteCallError
from sanding_monitor.clients.memory import InMemoryCaptureStore, LoopbackVideoStore
from sanding_monitor.generation.video_store import (
    VideoStoreClient,
    decode_video_payload,
    parse_storage_state,
)
from sanding_monitor.internal_core.contracts import Pass, Step, TimeRange

T0 = datetime(2025, 8, 15, 11, 31, 26, tzinfo=timezone.utc)


class RecordingChannel(DeviceCommandChannel):
    def __init__(self, response=None, delay: float = 0.0, error: Exception | None = None) -> None:
        self.response = response if response is not None else {}
        self.delay = delay
        self.error = error
        self.commands: list[dict] = []

    async def invoke(self, command):
        self.commands.append(dict(command))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response

    def name(self) -> str:
        return "video-store"


def test_build_save_command_buffers_window_and_encodes_artifact_key() -> None:
    step = Step(name="Execute", start=T0, end=T0 + timedelta(minutes=1), pass_id="p1")
    client = VideoStoreClient(RecordingChannel(), clock=lambda: T0 + timedelta(hours=1))
    assert client.build_save_command(step) == {
        "command": "save",
        "from": "2025-08-15_11-31-16Z",
        "to": "2025-08-15_11-32-36Z",
        "metadata": "p1_Execute",
    }


def test_build_save_command_caps_end_at_now() -> None:
    step = Step(name="Execute", start=T0, end=T0 + timedelta(minutes=1), pass_id="p1")
    now = T0 + timedelta(minutes=1, seconds=4)
    client = VideoStoreClient(RecordingChannel(), clock=lambda: now)
    assert client.build_save_command(step)["to"] == "2025-08-15_11-32-30Z"


def test_generate_video_wraps_unexpected_channel_errors() -> None:
    step = Step(name="Execute", start=T0, end=T0, pass_id="p1")
    client = VideoStoreClient(RecordingChannel(error=ConnectionError("socket closed")))
    with pytest.raises(RemoteCallError) as excinfo:
        asyncio.run(client.generate_video(step))
    assert excinfo.value.code == "invoke_failed"
    assert excinfo.value.target == "video-store"


def test_parse_storage_state_reads_every_range_shape() -> None:
    response = {
        "stored_video": [
            {"start": "2025-08-15_11-31-26Z", "end": "2025-08-15_11-41-26Z"},
            {"from": "2025-08-15_12-00-00Z", "to": "2025-08-15_12-05-00Z"},
            {"time_range": {"from": "2025-08-15_13-00-00Z", "end": "2025-08-15_13-01-00Z"}},
            {"start": "not-a-time", "end": "2025-08-15_13-01-00Z"},
            {"unrelated": True},
        ]
    }
    ranges = parse_storage_state(response)
    assert [item.start for item in ranges] == [
        T0,
        datetime(2025, 8, 15, 12, 0, 0, tzinfo=timezone.utc),
        datetime(2025, 8, 15, 13, 0, 0, tzinfo=timezone.utc),
    ]


def test_parse_storage_state_falls_back_to_ranges() -> None:
    ranges = parse_storage_state({"ranges": [{"from": "2025-08-15_11-31-26Z", "to": "2025-08-15_11-32-26Z"}]})
    assert ranges == [TimeRange(start=T0, end=T0 + timedelta(minutes=1))]
    assert parse_storage_state({}) == []


def test_decode_video_payload_handles_data_urls_and_missing_video() -> None:
    raw = b"\x00\x01mp4"
    encoded = base64.b64encode(raw).decode("ascii")
    assert decode_video_payload({"video": encoded}) == raw
    assert decode_video_payload({"video": f"data:video/mp4;base64,{encoded}"}) == raw
    assert decode_video_payload({}) is None
    with pytest.raises(RemoteCallError):
        decode_video_payload({"video": "***"})


def test_fetch_video_timeout_is_a_typed_failure() -> None:
    client = VideoStoreClient(RecordingChannel(response={"video": ""}, delay=1.0), fetch_timeout=0.01)
    with pytest.raises(CommandTimeoutError):
        asyncio.run(client.fetch_video(T0, T0 + timedelta(minutes=1)))


def test_fetch_video_without_payload_returns_none() -> None:
    channel = RecordingChannel(response={})
    client = VideoStoreClient(channel)
    assert asyncio.run(client.fetch_video(T0, T0 + timedelta(minutes=1))) is None
    assert channel.commands == [
        {"command": "fetch", "from": "2025-08-15_11-31-26Z", "to": "2025-08-15_11-32-26Z"}
    ]


def test_fetch_stored_video_caps_first_retained_range() -> None:
    async def runner() -> tuple[bytes | None, list[dict]]:
        store = InMemoryCaptureStore()
        channel = LoopbackVideoStore(
            store,
            owner_id="machine-1",
            retained=[TimeRange(start=T0, end=T0 + timedelta(hours=2))],
            clip_bytes=b"clip",
        )
        client = VideoStoreClient(channel, fetch_window_seconds=300)
        video = await client.fetch_stored_video()
        return video, channel.invocations

    video, invocations = asyncio.run(runner())
    assert video == b"clip"
    assert invocations[-1] == {"command": "fetch", "from": "2025-08-15_11-31-26Z", "to": "2025-08-15_11-36-26Z"}


def test_fetch_stored_video_uses_pass_window_when_nothing_retained() -> None:
    channel = RecordingChannel(response={})
    client = VideoStoreClient(channel)
    run = Pass(pass_id="p1", start=T0, end=T0 + timedelta(minutes=3))
    assert asyncio.run(client.fetch_stored_video(fallback=run)) is None
    assert channel.commands[-1]["from"] == "2025-08-15_11-31-26Z"
    assert channel.commands[-1]["to"] == "2025-08-15_11-34-26Z"

    with pytest.raises(ValueError):
        asyncio.run(client.fetch_stored_video())
