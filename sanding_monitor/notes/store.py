from __future__ import annotations

"""
Latest-note-per-pass storage on top of the append-only capture store.

Design intent:
- Every save appends a new immutable note record; nothing is mutated in place.
- A background compaction pass deletes superseded records for the pass.
- Readers always apply "newest `created_at` wins", so duplicates left by
  concurrent saves are harmless until the next compaction.
"""

import asyncio
import inspect
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Union

from pydantic import ValidationError

from ..clients.base import CaptureFilter, CaptureStoreClient
from ..internal_core.contracts import CaptureRecord, PassNote
from ..internal_core.timestamps import utc_now

logger = logging.getLogger(__name__)

NOTES_TAG = "sanding-notes"
_NOTE_FIELDS = ("pass_id", "note_text", "created_at", "created_by")

BatchCallback = Callable[[dict[str, list[PassNote]]], Union[None, Awaitable[None]]]


class NoteDecodeError(ValueError):
    """Raised when a stored note record cannot be decoded."""


def pass_tag(pass_id: str) -> str:
    return f"pass:{pass_id}"


def decode_note(record: CaptureRecord) -> PassNote:
    if record.binary is None:
        raise NoteDecodeError(f"Note record {record.id} has no payload.")
    try:
        payload = json.loads(record.binary.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise NoteDecodeError(f"Note record {record.id} is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise NoteDecodeError(f"Note record {record.id} payload is not an object.")
    try:
        return PassNote(
            **{name: payload.get(name) for name in _NOTE_FIELDS},
            storage_id=record.id,
        )
    except ValidationError as exc:
        raise NoteDecodeError(f"Note record {record.id} failed validation: {exc}") from exc


def sort_newest_first(notes: Iterable[PassNote]) -> list[PassNote]:
    # Stable: equal timestamps keep the listing order.
    return sorted(notes, key=lambda note: note.created_at, reverse=True)


def current_note(notes: Sequence[PassNote]) -> Optional[PassNote]:
    ordered = sort_newest_first(notes)
    return ordered[0] if ordered else None


class NoteCompactionStore:
    def __init__(
        self,
        client: CaptureStoreClient,
        machine_id: str,
        *,
        page_size: int = 100,
        created_by: str = "web-app",
        component_name: str = NOTES_TAG,
        component_type: str = "rdk:component:generic",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._machine_id = machine_id
        self._page_size = max(1, int(page_size))
        self._created_by = created_by
        self._component_name = component_name
        self._component_type = component_type
        self._clock = clock
        self._background: set[asyncio.Task[Any]] = set()

    def _filter(self, *tags: str) -> CaptureFilter:
        return CaptureFilter(
            owner_id=self._machine_id,
            component_name=self._component_name,
            component_type=self._component_type,
            tags=tuple(tags),
        )

    async def save(self, pass_id: str, note_text: str, part_id: str) -> PassNote:
        if not pass_id:
            raise ValueError("pass_id is required.")
        if not part_id:
            raise ValueError("No part id available for upload.")

        now = self._clock()
        note = PassNote(
            pass_id=pass_id,
            note_text=note_text,
            created_at=now,
            created_by=self._created_by,
        )
        storage_id = await self._client.write(
            note.to_payload(),
            owner_id=part_id,
            component_type=self._component_type,
            component_name=self._component_name,
            method="SaveNote",
            file_ext=".json",
            time_range=(now, now),
            tags=[NOTES_TAG, pass_tag(pass_id)],
        )
        logger.info("note_saved pass_id=%s storage_id=%s chars=%d", pass_id, storage_id, len(note_text))

        task = asyncio.get_running_loop().create_task(self._compact_in_background(pass_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return note.model_copy(update={"storage_id": storage_id})

    async def update(self, pass_id: str, note_text: str, part_id: str) -> PassNote:
        return await self.save(pass_id, note_text, part_id)

    async def fetch(self, pass_id: str) -> list[PassNote]:
        records = await self._list_all(self._filter(pass_tag(pass_id)))
        notes = [note for note in self._decode_all(records) if note.pass_id == pass_id]
        return sort_newest_first(notes)

    async def latest(self, pass_id: str) -> Optional[PassNote]:
        return current_note(await self.fetch(pass_id))

    async def fetch_many(
        self,
        pass_ids: Sequence[str],
        on_batch: Optional[BatchCallback] = None,
    ) -> dict[str, list[PassNote]]:
        wanted = set(pass_ids)
        grouped: dict[str, list[PassNote]] = {pass_id: [] for pass_id in pass_ids}
        capture_filter = self._filter(NOTES_TAG)
        token: Optional[str] = None
        pages = 0
        while True:
            page = await self._client.list_by_filter(
                capture_filter,
                page_size=self._page_size,
                order="descending",
                page_token=token,
                include_binary=True,
            )
            pages += 1
            records = await self._hydrate(page.records)
            for note in self._decode_all(records):
                if wanted and note.pass_id not in wanted:
                    continue
                grouped.setdefault(note.pass_id, []).append(note)
            if on_batch is not None:
                outcome = on_batch({key: sort_newest_first(value) for key, value in grouped.items()})
                if inspect.isawaitable(outcome):
                    await outcome
            token = page.next_page_token
            if not token:
                break

        logger.info("notes_fetched_many passes=%d pages=%d", len(grouped), pages)
        return {key: sort_newest_first(value) for key, value in grouped.items()}

    async def compact(self, pass_id: str) -> int:
        records = await self._list_all(self._filter(pass_tag(pass_id)))
        notes = [note for note in self._decode_all(records) if note.pass_id == pass_id]
        if len(notes) <= 1:
            return 0
        stale_ids = [note.storage_id for note in sort_newest_first(notes)[1:] if note.storage_id]
        if not stale_ids:
            return 0
        deleted = await self._client.delete_by_ids(stale_ids)
        logger.info("notes_compacted pass_id=%s deleted=%d kept=1", pass_id, deleted)
        return deleted

    async def wait_for_compactions(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _compact_in_background(self, pass_id: str) -> None:
        try:
            await self.compact(pass_id)
        except Exception:
            logger.warning("notes_compaction_failed pass_id=%s", pass_id, exc_info=True)

    async def _list_all(self, capture_filter: CaptureFilter) -> list[CaptureRecord]:
        records: list[CaptureRecord] = []
        token: Optional[str] = None
        while True:
            page = await self._client.list_by_filter(
                capture_filter,
                page_size=self._page_size,
                order="descending",
                page_token=token,
                include_binary=True,
            )
            records.extend(page.records)
            token = page.next_page_token
            if not token:
                break
        return await self._hydrate(records)

    async def _hydrate(self, records: list[CaptureRecord]) -> list[CaptureRecord]:
        missing = [record.id for record in records if record.binary is None]
        if not missing:
            return records
        loaded = {record.id: record for record in await self._client.read_by_ids(missing)}
        return [loaded.get(record.id, record) if record.binary is None else record for record in records]

    def _decode_all(self, records: Iterable[CaptureRecord]) -> list[PassNote]:
        notes: list[PassNote] = []
        for record in records:
            try:
                notes.append(decode_note(record))
            except NoteDecodeError as exc:
                logger.warning("note_record_skipped id=%s reason=%s", record.id, exc)
        return notes
