"""Sync protocol schemas: timers, intervals, history and the sync envelope."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer

from backend.services.datetime_service import MAX_TIMESTAMP_MS, format_ms, parse_timestamp_ms


def _timestamp_or_zero(value: object) -> int:
    return parse_timestamp_ms(value) or 0


def _format_optional(value: int | None) -> str | None:
    return format_ms(value) if value else None


# Stored as epoch milliseconds; 0 means "unset, let the store fill it in".
Timestamp = Annotated[
    int,
    BeforeValidator(_timestamp_or_zero),
    PlainSerializer(format_ms, return_type=str),
]
OptionalTimestamp = Annotated[
    int | None,
    BeforeValidator(parse_timestamp_ms),
    PlainSerializer(_format_optional, return_type=str | None),
]


class Interval(BaseModel):
    """One segment of a timer. Position is reassigned from list order on upsert."""

    id: str = Field(min_length=1, max_length=200)
    name: str = Field(default="", max_length=500)
    duration: int = Field(default=0, ge=0)
    color: str = Field(default="", max_length=50)
    position: int = Field(default=0, ge=0)


class TimerDefinition(BaseModel):
    """A named, repeatable sequence of intervals."""

    id: str = Field(min_length=1, max_length=200)
    profile_id: str = ""
    name: str = Field(default="", max_length=500)
    rounds: int = Field(default=1, ge=1)
    intervals: list[Interval] = Field(default_factory=list)
    created_at: Timestamp = 0
    updated_at: Timestamp = 0
    deleted_at: OptionalTimestamp = None

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None


class HistoryEntry(BaseModel):
    """A single run of a timer, possibly stopped before completion."""

    id: str = Field(min_length=1, max_length=200)
    profile_id: str = ""
    timer_id: str = Field(default="", max_length=200)
    timer_name: str = Field(default="", max_length=500)
    total_duration: int = Field(default=0, ge=0)
    elapsed_duration: int = Field(default=0, ge=0)
    completed: bool = False
    started_at: Timestamp = 0
    completed_at: OptionalTimestamp = None
    updated_at: Timestamp = 0
    deleted_at: OptionalTimestamp = None

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None


class SyncPayload(BaseModel):
    """Sync request and response body.

    In a request ``last_synced_at`` is the client's watermark; in a response it is
    the new watermark the client must send next time.
    """

    last_synced_at: int = Field(default=0, ge=0, le=MAX_TIMESTAMP_MS)
    timers: list[TimerDefinition] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
