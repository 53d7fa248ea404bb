"""Workout history model."""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class HistoryRecord(Base):
    """A single run of a timer.

    ``started_at``, ``total_duration``, ``timer_id`` and ``timer_name`` are fixed at
    insert; later upserts only touch the progress and deletion columns.
    """

    __tablename__ = "history"

    profile_id: Mapped[str] = mapped_column(Text, primary_key=True)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    timer_id: Mapped[str] = mapped_column(String, nullable=False)
    timer_name: Mapped[str] = mapped_column(Text, nullable=False)
    total_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    elapsed_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deleted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_history_profile_updated_at", "profile_id", "updated_at"),
    )
