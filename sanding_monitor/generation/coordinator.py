from __future__ import annotations

"""
Deduplicating coordinator for slow device-side video generation.

Design intent:
- One live request per artifact key, however many observers ask for it.
- One shared polling loop: a single refresh per tick serves every pending key.
- Bounded lifetime: a request that never sees its artifact ends as `timed_out`
  through the same callback used for success.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Literal, Optional

from ..clients.base import CaptureFilter, CaptureStoreClient
from ..correlation.artifact_key import ArtifactKey
from ..correlation.engine import RecordSource, as_record_list, match_step_videos
from ..internal_core.contracts import CaptureRecord, Step
from ..internal_core.timestamps import utc_now
from .video_store import VideoStoreClient

logger = logging.getLogger(__name__)

SubscriberPolicy = Literal["last_wins", "fanout"]
PollingOutcome = Literal["completed", "timed_out"]


@dataclass(frozen=True)
class PollingResult:
    key: str
    pass_id: str
    step_name: str
    outcome: PollingOutcome
    records: tuple[CaptureRecord, ...] = ()


CompletionCallback = Callable[[PollingResult], None]
RefreshFunction = Callable[[], Awaitable[None]]


@dataclass
class PollingRequest:
    key: str
    step: Step
    started_at: datetime
    callbacks: list[CompletionCallback] = field(default_factory=list)


class DataSource(ABC):
    @abstractmethod
    async def list(self) -> list[CaptureRecord]: ...


class CaptureStoreDataSource(DataSource):
    """Pages through a capture store filter and returns every record found."""

    def __init__(
        self,
        store: CaptureStoreClient,
        capture_filter: CaptureFilter,
        *,
        page_size: int = 100,
        max_pages: int = 50,
    ) -> None:
        self._store = store
        self._filter = capture_filter
        self._page_size = max(1, int(page_size))
        self._max_pages = max(1, int(max_pages))

    async def list(self) -> list[CaptureRecord]:
        records: list[CaptureRecord] = []
        token: Optional[str] = None
        for _ in range(self._max_pages):
            page = await self._store.list_by_filter(
                self._filter,
                page_size=self._page_size,
                order="descending",
                page_token=token,
            )
            records.extend(page.records)
            token = page.next_page_token
            if not token:
                break
        return records


class GenerationCoordinator:
    def __init__(
        self,
        data_source: Optional[DataSource] = None,
        video_store: Optional[VideoStoreClient] = None,
        *,
        poll_interval: float = 5.0,
        max_duration: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
        subscriber_policy: SubscriberPolicy = "last_wins",
    ) -> None:
        if subscriber_policy not in ("last_wins", "fanout"):
            raise ValueError(f"Unknown subscriber policy: {subscriber_policy!r}")
        self._data_source = data_source
        self._video_store = video_store
        self._poll_interval = max(0.001, float(poll_interval))
        self._max_duration = float(max_duration)
        self._clock = clock
        self._subscriber_policy = subscriber_policy
        self._active: dict[str, PollingRequest] = {}
        self._current_records: tuple[CaptureRecord, ...] = ()
        self._refresh_fn: Optional[RefreshFunction] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def active_request_count(self) -> int:
        return len(self._active)

    def active_keys(self) -> list[str]:
        return list(self._active)

    @property
    def current_records(self) -> tuple[CaptureRecord, ...]:
        return self._current_records

    def set_refresh_function(self, fn: Optional[RefreshFunction]) -> None:
        self._refresh_fn = fn

    def update_current_records(self, records: RecordSource) -> None:
        self._current_records = tuple(as_record_list(records))

    def add_request(self, step: Step, on_complete: CompletionCallback) -> str:
        key = ArtifactKey.for_step(step).request_key
        existing = self._active.get(key)
        if existing is not None:
            if self._subscriber_policy == "fanout":
                existing.callbacks.append(on_complete)
            else:
                existing.callbacks = [on_complete]
            logger.debug("generation_request_joined key=%s subscribers=%d", key, len(existing.callbacks))
            # The first add may have run without an event loop.
            self._start_polling()
            return key

        self._active[key] = PollingRequest(
            key=key,
            step=step,
            started_at=self._clock(),
            callbacks=[on_complete],
        )
        logger.info("generation_request_added key=%s active=%d", key, len(self._active))
        self._start_polling()
        return key

    def remove_request(self, key: str) -> None:
        self._active.pop(key, None)
        if not self._active:
            self._stop_polling()

    async def ensure_artifact(self, step: Step, on_complete: CompletionCallback) -> str:
        """Trigger generation on the device, then wait for the artifact to show up.

        A failed `save` propagates to the caller and registers nothing.
        """
        if self._video_store is None:
            raise RuntimeError("GenerationCoordinator has no video store configured.")
        await self._video_store.generate_video(step)
        return self.add_request(step, on_complete)

    def force_check(self) -> bool:
        if not self._active:
            return False
        logger.debug(
            "generation_force_check active=%d records=%d",
            len(self._active),
            len(self._current_records),
        )
        results = self._evaluate(self._clock(), self._current_records)
        if not self._active:
            self._stop_polling()
        return bool(results)

    async def poll_once(self) -> list[PollingResult]:
        if not self._active:
            self._stop_polling()
            return []
        await self._refresh()
        results = self._evaluate(self._clock(), self._current_records)
        if not self._active:
            self._stop_polling()
        return results

    async def close(self) -> None:
        self._active.clear()
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _refresh(self) -> None:
        refresh = self._refresh_fn
        try:
            if refresh is not None:
                await refresh()
            elif self._data_source is not None:
                self.update_current_records(await self._data_source.list())
        except Exception:
            logger.exception("generation_refresh_failed active=%d", len(self._active))

    def _evaluate(self, now: datetime, records: tuple[CaptureRecord, ...]) -> list[PollingResult]:
        results: list[PollingResult] = []
        for key, request in list(self._active.items()):
            # A callback earlier in this pass may have removed or replaced it.
            if self._active.get(key) is not request:
                continue
            try:
                elapsed = (now - request.started_at).total_seconds()
                if elapsed >= self._max_duration:
                    result = PollingResult(key, request.step.pass_id, request.step.name, "timed_out")
                    logger.info("generation_request_timed_out key=%s elapsed_sec=%.1f", key, elapsed)
                else:
                    matched = match_step_videos(request.step, records)
                    if not matched:
                        continue
                    result = PollingResult(
                        key, request.step.pass_id, request.step.name, "completed", tuple(matched)
                    )
                    logger.info("generation_request_completed key=%s videos=%d", key, len(matched))
            except Exception:
                logger.exception("generation_request_check_failed key=%s", key)
                continue
            self._active.pop(key, None)
            self._notify(request, result)
            results.append(result)
        return results

    def _notify(self, request: PollingRequest, result: PollingResult) -> None:
        for callback in list(request.callbacks):
            try:
                callback(result)
            except Exception:
                logger.exception("generation_callback_failed key=%s", request.key)

    def _start_polling(self) -> None:
        if self.is_polling:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("generation_polling_deferred reason=no_running_loop")
            return
        self._task = loop.create_task(self._run(), name="generation_coordinator_poll")

    def _stop_polling(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # From inside a tick the loop notices on its own and exits.
        if task is not current:
            task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me and self._active:
            await asyncio.sleep(self._poll_interval)
            if self._task is not me:
                break
            await self.poll_once()
