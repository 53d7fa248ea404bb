"""Record store: profile-partitioned timers and history with soft delete.

Every public method runs in its own transaction.  Timer upserts replace the
interval list inside the same transaction, so readers never observe a timer with a
half-written interval list.  Tombstoned records stay in the tables and keep
flowing through the changed-since queries so that other devices learn about the
deletion.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, text, union
from sqlalchemy.exc import SQLAlchemyError

from backend.exceptions import NotFoundError, StorageFault
from backend.models.history import HistoryRecord
from backend.models.session import SessionRecord
from backend.models.sync import SyncMetadata
from backend.models.timer import IntervalRecord, TimerRecord
from backend.schemas.sync import HistoryEntry, Interval, TimerDefinition
from backend.services.datetime_service import now_ms

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _timer_from_row(row: TimerRecord, intervals: Sequence[IntervalRecord]) -> TimerDefinition:
    return TimerDefinition(
        id=row.id,
        profile_id=row.profile_id,
        name=row.name,
        rounds=row.rounds,
        intervals=[
            Interval(
                id=interval.id,
                name=interval.name,
                duration=interval.duration,
                color=interval.color,
                position=interval.position,
            )
            for interval in intervals
        ],
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _history_from_row(row: HistoryRecord) -> HistoryEntry:
    return HistoryEntry(
        id=row.id,
        profile_id=row.profile_id,
        timer_id=row.timer_id,
        timer_name=row.timer_name,
        total_duration=row.total_duration,
        elapsed_duration=row.elapsed_duration,
        completed=row.completed,
        started_at=row.started_at,
        completed_at=row.completed_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


class RecordStore:
    """Durable storage for timers, history, sessions and sync bookkeeping."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session with a transaction; database errors become StorageFault."""
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("Storage error during %s: %s", operation, exc)
            raise StorageFault(f"Storage error during {operation}") from exc

    async def ping(self) -> None:
        async with self._transaction("ping") as session:
            await session.execute(text("SELECT 1"))

    # ── Timers ───────────────────────────────────────

    async def upsert_timer(self, timer: TimerDefinition) -> None:
        """Insert or fully replace a timer and its interval list.

        ``created_at`` is written only on first insert; an overwrite never moves it.
        Interval positions are taken from list order.
        """
        now = now_ms()
        async with self._transaction("upsert timer") as session:
            row = await session.get(TimerRecord, (timer.profile_id, timer.id))
            if row is None:
                row = TimerRecord(
                    profile_id=timer.profile_id,
                    id=timer.id,
                    created_at=timer.created_at or now,
                )
                session.add(row)
            row.name = timer.name
            row.rounds = timer.rounds
            row.updated_at = timer.updated_at or now
            row.deleted_at = timer.deleted_at

            await session.execute(
                delete(IntervalRecord).where(
                    IntervalRecord.profile_id == timer.profile_id,
                    IntervalRecord.timer_id == timer.id,
                )
            )
            # Parent row must exist before the interval inserts reference it.
            await session.flush()
            session.add_all(
                [
                    IntervalRecord(
                        profile_id=timer.profile_id,
                        timer_id=timer.id,
                        id=interval.id,
                        name=interval.name,
                        duration=interval.duration,
                        color=interval.color,
                        position=position,
                    )
                    for position, interval in enumerate(timer.intervals)
                ]
            )

    async def _load_intervals(
        self, session: AsyncSession, profile_id: str, timer_ids: Sequence[str]
    ) -> dict[str, list[IntervalRecord]]:
        """Load the interval lists of several timers with a single query."""
        grouped: dict[str, list[IntervalRecord]] = {timer_id: [] for timer_id in timer_ids}
        if not timer_ids:
            return grouped
        stmt = (
            select(IntervalRecord)
            .where(
                IntervalRecord.profile_id == profile_id,
                IntervalRecord.timer_id.in_(timer_ids),
            )
            .order_by(IntervalRecord.timer_id, IntervalRecord.position)
        )
        result = await session.execute(stmt)
        for interval in result.scalars():
            grouped[interval.timer_id].append(interval)
        return grouped

    async def timers_changed_since(self, profile_id: str, watermark: int) -> list[TimerDefinition]:
        """Timers (tombstones included) updated after ``watermark``, newest first."""
        async with self._transaction("query changed timers") as session:
            stmt = (
                select(TimerRecord)
                .where(TimerRecord.profile_id == profile_id, TimerRecord.updated_at > watermark)
                .order_by(TimerRecord.updated_at.desc(), TimerRecord.id)
            )
            rows = list((await session.execute(stmt)).scalars())
            intervals = await self._load_intervals(session, profile_id, [row.id for row in rows])
            return [_timer_from_row(row, intervals[row.id]) for row in rows]

    async def get_timer(self, profile_id: str, timer_id: str) -> TimerDefinition:
        """Return an active timer. Raises NotFoundError for unknown or tombstoned ids."""
        async with self._transaction("get timer") as session:
            stmt = select(TimerRecord).where(
                TimerRecord.profile_id == profile_id,
                TimerRecord.id == timer_id,
                TimerRecord.deleted_at.is_(None),
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise NotFoundError("Timer", timer_id)
            intervals = await self._load_intervals(session, profile_id, [row.id])
            return _timer_from_row(row, intervals[row.id])

    async def soft_delete_timer(self, profile_id: str, timer_id: str) -> None:
        """Tombstone a timer. Already-deleted timers are left untouched."""
        async with self._transaction("delete timer") as session:
            row = await session.get(TimerRecord, (profile_id, timer_id))
            if row is None:
                raise NotFoundError("Timer", timer_id)
            if row.deleted_at is not None:
                return
            now = now_ms()
            row.deleted_at = now
            row.updated_at = now

    # ── History ──────────────────────────────────────

    async def upsert_history_entry(self, entry: HistoryEntry) -> None:
        """Insert a history entry, or update only its progress and deletion fields."""
        now = now_ms()
        async with self._transaction("upsert history entry") as session:
            row = await session.get(HistoryRecord, (entry.profile_id, entry.id))
            if row is None:
                session.add(
                    HistoryRecord(
                        profile_id=entry.profile_id,
                        id=entry.id,
                        timer_id=entry.timer_id,
                        timer_name=entry.timer_name,
                        total_duration=entry.total_duration,
                        elapsed_duration=entry.elapsed_duration,
                        completed=entry.completed,
                        started_at=entry.started_at or now,
                        completed_at=entry.completed_at,
                        updated_at=entry.updated_at or now,
                        deleted_at=entry.deleted_at,
                    )
                )
                return
            row.elapsed_duration = entry.elapsed_duration
            row.completed = entry.completed
            row.completed_at = entry.completed_at
            row.updated_at = entry.updated_at or now
            row.deleted_at = entry.deleted_at

    async def history_changed_since(self, profile_id: str, watermark: int) -> list[HistoryEntry]:
        """History entries (tombstones included) updated after ``watermark``, newest first."""
        async with self._transaction("query changed history") as session:
            stmt = (
                select(HistoryRecord)
                .where(
                    HistoryRecord.profile_id == profile_id,
                    HistoryRecord.updated_at > watermark,
                )
                .order_by(HistoryRecord.updated_at.desc(), HistoryRecord.id)
            )
            return [_history_from_row(row) for row in (await session.execute(stmt)).scalars()]

    async def get_history_entry(self, profile_id: str, entry_id: str) -> HistoryEntry:
        async with self._transaction("get history entry") as session:
            row = await session.get(HistoryRecord, (profile_id, entry_id))
            if row is None or row.deleted_at is not None:
                raise NotFoundError("History entry", entry_id)
            return _history_from_row(row)

    async def soft_delete_history_entry(self, profile_id: str, entry_id: str) -> None:
        async with self._transaction("delete history entry") as session:
            row = await session.get(HistoryRecord, (profile_id, entry_id))
            if row is None:
                raise NotFoundError("History entry", entry_id)
            if row.deleted_at is not None:
                return
            now = now_ms()
            row.deleted_at = now
            row.updated_at = now

    # ── Profiles and watermarks ──────────────────────

    async def list_profiles(self) -> list[str]:
        """Distinct profile ids that own timers, history or sync metadata."""
        profile_ids = union(
            select(TimerRecord.profile_id),
            select(HistoryRecord.profile_id),
            select(SyncMetadata.profile_id),
        ).subquery()
        async with self._transaction("list profiles") as session:
            stmt = select(profile_ids.c.profile_id).order_by(profile_ids.c.profile_id)
            return list((await session.execute(stmt)).scalars())

    async def get_watermark(self, profile_id: str) -> int:
        async with self._transaction("get watermark") as session:
            row = await session.get(SyncMetadata, profile_id)
            return row.last_sync_time if row is not None else 0

    async def set_watermark(self, profile_id: str, value: int) -> None:
        async with self._transaction("set watermark") as session:
            row = await session.get(SyncMetadata, profile_id)
            if row is None:
                session.add(SyncMetadata(profile_id=profile_id, last_sync_time=value))
            else:
                row.last_sync_time = value

    # ── Sessions ─────────────────────────────────────

    async def create_session(self, token: str, profile_id: str) -> None:
        async with self._transaction("create session") as session:
            session.add(SessionRecord(token=token, profile_id=profile_id, created_at=now_ms()))

    async def get_session_profile(self, token: str) -> str | None:
        """Profile bound to ``token``, or None for an unknown token."""
        async with self._transaction("verify session") as session:
            row = await session.get(SessionRecord, token)
            return row.profile_id if row is not None else None

    async def delete_session(self, token: str) -> None:
        async with self._transaction("delete session") as session:
            await session.execute(delete(SessionRecord).where(SessionRecord.token == token))
