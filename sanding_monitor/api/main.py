from __future__ import annotations

"""
HTTP surface for the sanding monitor core.

Design intent:
- Keep API orchestration thin and typed; matching, polling and compaction live
  in the domain packages.
- Act as the composition root: one coordinator, one note store and one video
  store client per app, created lazily on `app.state` so tests can inject
  their own collaborators.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from sanding_monitor.clients.base import (
    CaptureFilter,
    CaptureStoreClient,
    CommandTimeoutError,
    DeviceCommandChannel,
    RemoteCallError,
)
from sanding_monitor.clients.memory import InMemoryCaptureStore, LoopbackVideoStore
from sanding_monitor.correlation.engine import (
    extract_camera_name,
    match_before_after_images,
    match_pass_files,
    match_step_videos,
)
from sanding_monitor.generation.coordinator import (
    CaptureStoreDataSource,
    GenerationCoordinator,
    PollingResult,
)
from sanding_monitor.generation.video_store import VideoStoreClient
from sanding_monitor.internal_core import MonitorConfig, configure_logging, load_config
from sanding_monitor.internal_core.contracts import CaptureRecord, Pass, PassNote, Step, TimeRange
from sanding_monitor.notes.store import NoteCompactionStore, current_note


class CaptureRecordView(BaseModel):
    id: str
    timestamp_utc: datetime
    filename: str
    uri: str
    tags: list[str] = Field(default_factory=list)
    component_name: str | None = None
    component_type: str | None = None
    camera_name: str | None = None


class PassNotesResponse(BaseModel):
    pass_id: str
    current: PassNote | None = None
    notes: list[PassNote] = Field(default_factory=list)


class SaveNoteRequest(BaseModel):
    note_text: str = Field(max_length=8000)
    part_id: str | None = Field(default=None, max_length=256)


class CompactResponse(BaseModel):
    pass_id: str
    deleted: int = Field(ge=0)


class NotesBatchRequest(BaseModel):
    pass_ids: list[str] = Field(min_length=1, max_length=500)


class NotesBatchResponse(BaseModel):
    notes: dict[str, list[PassNote]] = Field(default_factory=dict)
    current: dict[str, PassNote | None] = Field(default_factory=dict)


class StepVideosRequest(BaseModel):
    step: Step


class StepVideosResponse(BaseModel):
    videos: list[CaptureRecordView] = Field(default_factory=list)


class BeforeAfterRequest(BaseModel):
    run: Pass
    component_name: str = Field(min_length=1)


class BeforeAfterResponse(BaseModel):
    before: CaptureRecordView | None = None
    after: CaptureRecordView | None = None
    same_record: bool = False


class PassFilesRequest(BaseModel):
    run: Pass


class PassFilesResponse(BaseModel):
    pass_id: str
    files: list[CaptureRecordView] = Field(default_factory=list)


class GenerationRequest(BaseModel):
    step: Step


class GenerationOutcomeView(BaseModel):
    key: str
    pass_id: str
    step_name: str
    outcome: Literal["completed", "timed_out"]
    video_ids: list[str] = Field(default_factory=list)


class GenerationStatusResponse(BaseModel):
    active_keys: list[str] = Field(default_factory=list)
    polling: bool = False
    outcomes: list[GenerationOutcomeView] = Field(default_factory=list)


class GenerationStartResponse(BaseModel):
    key: str
    active_keys: list[str] = Field(default_factory=list)


class ForceCheckResponse(BaseModel):
    completed_any: bool
    active_keys: list[str] = Field(default_factory=list)


class StorageStateResponse(BaseModel):
    ranges: list[TimeRange] = Field(default_factory=list)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(_get_config())
    yield
    coordinator = getattr(app.state, "generation_coordinator", None)
    if isinstance(coordinator, GenerationCoordinator):
        await coordinator.close()
    note_store = getattr(app.state, "note_store", None)
    if isinstance(note_store, NoteCompactionStore):
        await note_store.wait_for_compactions()


app = FastAPI(title="sanding monitor service", lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> MonitorConfig:
    existing = getattr(app.state, "monitor_config", None)
    if isinstance(existing, MonitorConfig):
        return existing
    created = load_config()
    setattr(app.state, "monitor_config", created)
    return created


def _get_capture_store() -> CaptureStoreClient:
    existing = getattr(app.state, "capture_store", None)
    if isinstance(existing, CaptureStoreClient):
        return existing
    cfg = _get_config()
    part_owners = {cfg.SANDING_PART_ID: cfg.SANDING_MACHINE_ID} if cfg.SANDING_PART_ID else {}
    created = InMemoryCaptureStore(part_owners=part_owners)
    setattr(app.state, "capture_store", created)
    return created


def _get_video_channel() -> DeviceCommandChannel:
    existing = getattr(app.state, "video_channel", None)
    if isinstance(existing, DeviceCommandChannel):
        return existing
    store = _get_capture_store()
    if not isinstance(store, InMemoryCaptureStore):
        raise HTTPException(status_code=503, detail="No video store channel configured.")
    cfg = _get_config()
    created = LoopbackVideoStore(
        store,
        owner_id=cfg.SANDING_MACHINE_ID,
        component_name=cfg.SANDING_VIDEO_COMPONENT_NAME,
        delay_seconds=cfg.SANDING_VIDEO_DELAY_SECONDS,
    )
    setattr(app.state, "video_channel", created)
    return created


def _get_video_store_client() -> VideoStoreClient:
    existing = getattr(app.state, "video_store_client", None)
    if isinstance(existing, VideoStoreClient):
        return existing
    cfg = _get_config()
    created = VideoStoreClient(
        _get_video_channel(),
        buffer_seconds=cfg.SANDING_VIDEO_BUFFER_SECONDS,
        fetch_timeout=cfg.SANDING_FETCH_TIMEOUT_SECONDS,
        fetch_window_seconds=cfg.SANDING_FETCH_WINDOW_SECONDS,
    )
    setattr(app.state, "video_store_client", created)
    return created


def _get_note_store() -> NoteCompactionStore:
    existing = getattr(app.state, "note_store", None)
    if isinstance(existing, NoteCompactionStore):
        return existing
    cfg = _get_config()
    created = NoteCompactionStore(
        _get_capture_store(),
        cfg.SANDING_MACHINE_ID,
        page_size=cfg.SANDING_NOTES_PAGE_SIZE,
        created_by=cfg.SANDING_NOTES_CREATED_BY,
        component_name=cfg.SANDING_NOTES_COMPONENT_NAME,
        component_type=cfg.SANDING_NOTES_COMPONENT_TYPE,
    )
    setattr(app.state, "note_store", created)
    return created


def _video_filter() -> CaptureFilter:
    cfg = _get_config()
    return CaptureFilter(owner_id=cfg.SANDING_MACHINE_ID, component_name=cfg.SANDING_VIDEO_COMPONENT_NAME)


def _get_coordinator() -> GenerationCoordinator:
    existing = getattr(app.state, "generation_coordinator", None)
    if isinstance(existing, GenerationCoordinator):
        return existing
    cfg = _get_config()
    created = GenerationCoordinator(
        CaptureStoreDataSource(_get_capture_store(), _video_filter()),
        _get_video_store_client(),
        poll_interval=cfg.SANDING_POLL_INTERVAL_SECONDS,
        max_duration=cfg.SANDING_POLL_MAX_SECONDS,
        subscriber_policy=cfg.SANDING_SUBSCRIBER_POLICY,  # type: ignore[arg-type]
    )
    setattr(app.state, "generation_coordinator", created)
    return created


def _get_generation_outcomes() -> dict[str, PollingResult]:
    existing = getattr(app.state, "generation_outcomes", None)
    if isinstance(existing, dict):
        return existing
    created: dict[str, PollingResult] = {}
    setattr(app.state, "generation_outcomes", created)
    return created


def _record_generation_outcome(result: PollingResult) -> None:
    _get_generation_outcomes()[result.key] = result


def _http_error(exc: RemoteCallError) -> HTTPException:
    if isinstance(exc, CommandTimeoutError):
        return HTTPException(status_code=504, detail=exc.message)
    return HTTPException(status_code=502, detail=f"{exc.target}: {exc.message}")


def _to_view(record: CaptureRecord | None) -> CaptureRecordView | None:
    if record is None:
        return None
    camera = extract_camera_name(record.filename) if record.filename.startswith("video_") else None
    return CaptureRecordView(
        id=record.id,
        timestamp_utc=record.timestamp_utc,
        filename=record.filename,
        uri=record.uri,
        tags=sorted(record.tags),
        component_name=record.component_name,
        component_type=record.component_type,
        camera_name=camera,
    )


async def _list_records(capture_filter: CaptureFilter) -> list[CaptureRecord]:
    source = CaptureStoreDataSource(_get_capture_store(), capture_filter)
    try:
        return await source.list()
    except RemoteCallError as exc:
        raise _http_error(exc) from exc


def _resolve_part_id(raw: Optional[str]) -> str:
    part_id = str(raw or "").strip() or _get_config().SANDING_PART_ID
    if not part_id:
        raise HTTPException(status_code=400, detail="part_id is required (no SANDING_PART_ID configured).")
    return part_id


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/passes/{pass_id}/notes", response_model=PassNotesResponse)
async def pass_notes(pass_id: str) -> PassNotesResponse:
    try:
        notes = await _get_note_store().fetch(pass_id)
    except RemoteCallError as exc:
        raise _http_error(exc) from exc
    return PassNotesResponse(pass_id=pass_id, current=current_note(notes), notes=notes)


@app.post("/passes/{pass_id}/notes", response_model=PassNote)
async def save_pass_note(pass_id: str, payload: SaveNoteRequest) -> PassNote:
    part_id = _resolve_part_id(payload.part_id)
    try:
        return await _get_note_store().save(pass_id, payload.note_text, part_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RemoteCallError as exc:
        raise _http_error(exc) from exc


@app.post("/passes/{pass_id}/notes/compact", response_model=CompactResponse)
async def compact_pass_notes(pass_id: str) -> CompactResponse:
    try:
        deleted = await _get_note_store().compact(pass_id)
    except RemoteCallError as exc:
        raise _http_error(exc) from exc
    return CompactResponse(pass_id=pass_id, deleted=deleted)


@app.post("/notes/batch", response_model=NotesBatchResponse)
async def notes_batch(payload: NotesBatchRequest) -> NotesBatchResponse:
    try:
        grouped = await _get_note_store().fetch_many(payload.pass_ids)
    except RemoteCallError as exc:
        raise _http_error(exc) from exc
    return NotesBatchResponse(
        notes=grouped,
        current={pass_id: current_note(notes) for pass_id, notes in grouped.items()},
    )


@app.post("/correlation/step-videos", response_model=StepVideosResponse)
async def correlation_step_videos(payload: StepVideosRequest) -> StepVideosResponse:
    records = await _list_records(_video_filter())
    videos = match_step_videos(payload.step, records)
    return StepVideosResponse(videos=[_to_view(item) for item in videos])


@app.post("/correlation/before-after", response_model=BeforeAfterResponse)
async def correlation_before_after(payload: BeforeAfterRequest) -> BeforeAfterResponse:
    cfg = _get_config()
    records = await _list_records(
        CaptureFilter(owner_id=cfg.SANDING_MACHINE_ID, component_name=payload.component_name)
    )
    images = match_before_after_images(payload.run, records, payload.component_name)
    return BeforeAfterResponse(
        before=_to_view(images.before),
        after=_to_view(images.after),
        same_record=images.same_record,
    )


@app.post("/correlation/pass-files", response_model=PassFilesResponse)
async def correlation_pass_files(payload: PassFilesRequest) -> PassFilesResponse:
    records = await _list_records(CaptureFilter(owner_id=_get_config().SANDING_MACHINE_ID))
    files = match_pass_files(payload.run, records)
    return PassFilesResponse(pass_id=payload.run.pass_id, files=[_to_view(item) for item in files])


@app.post("/generation/requests", response_model=GenerationStartResponse)
async def generation_start(payload: GenerationRequest) -> GenerationStartResponse:
    coordinator = _get_coordinator()
    try:
        key = await coordinator.ensure_artifact(payload.step, _record_generation_outcome)
    except RemoteCallError as exc:
        raise _http_error(exc) from exc
    _get_generation_outcomes().pop(key, None)
    return GenerationStartResponse(key=key, active_keys=coordinator.active_keys())


def _outcome_view(result: PollingResult) -> GenerationOutcomeView:
    return GenerationOutcomeView(
        key=result.key,
        pass_id=result.pass_id,
        step_name=result.step_name,
        outcome=result.outcome,
        video_ids=[item.id for item in result.records],
    )


@app.get("/generation/requests", response_model=GenerationStatusResponse)
async def generation_status() -> GenerationStatusResponse:
    coordinator = _get_coordinator()
    outcomes = sorted(_get_generation_outcomes().values(), key=lambda item: item.key)
    return GenerationStatusResponse(
        active_keys=coordinator.active_keys(),
        polling=coordinator.is_polling,
        outcomes=[_outcome_view(item) for item in outcomes],
    )


@app.delete("/generation/requests/{key}", response_model=GenerationStatusResponse)
async def generation_remove(key: str) -> GenerationStatusResponse:
    coordinator = _get_coordinator()
    if key not in coordinator.active_keys():
        raise HTTPException(status_code=404, detail=f"Generation request not found: {key}")
    coordinator.remove_request(key)
    return await generation_status()


@app.post("/generation/check", response_model=ForceCheckResponse)
async def generation_check() -> ForceCheckResponse:
    coordinator = _get_coordinator()
    coordinator.update_current_records(await _list_records(_video_filter()))
    completed = coordinator.force_check()
    return ForceCheckResponse(completed_any=completed, active_keys=coordinator.active_keys())


@app.get("/video-store/storage-state", response_model=StorageStateResponse)
async def video_store_storage_state() -> StorageStateResponse:
    try:
        ranges = await _get_video_store_client().get_storage_state()
    except RemoteCallError as exc:
        raise _http_error(exc) from exc
    logger.debug("storage_state ranges=%d", len(ranges))
    return StorageStateResponse(ranges=ranges)

