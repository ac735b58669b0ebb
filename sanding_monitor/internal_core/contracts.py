from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from .timestamps import ensure_utc, format_iso_millis


class CaptureRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    timestamp_utc: datetime
    filename: str = ""
    uri: str = ""
    tags: frozenset[str] = Field(default_factory=frozenset)
    component_name: Optional[str] = None
    component_type: Optional[str] = None
    binary: Optional[bytes] = None

    @field_validator("timestamp_utc")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Step(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    start: datetime
    end: datetime
    pass_id: str = Field(min_length=1)

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _validate_window(self) -> "Step":
        if self.end < self.start:
            raise ValueError("Step.end must be >= Step.start")
        return self


class Pass(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    pass_id: str = Field(min_length=1)
    start: datetime
    end: datetime
    steps: List[Step] = Field(default_factory=list)
    success: bool = True
    err_string: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _validate_window(self) -> "Pass":
        if self.end < self.start:
            raise ValueError("Pass.end must be >= Pass.start")
        return self


class PassNote(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    pass_id: str = Field(min_length=1)
    note_text: str
    created_at: datetime
    created_by: str
    storage_id: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_serializer("created_at")
    def _serialize_created_at(self, value: datetime) -> str:
        return format_iso_millis(value)

    def to_payload(self) -> bytes:
        return self.model_dump_json(exclude={"storage_id"}).encode("utf-8")


class TimeRange(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
