"""Timer definition and interval models."""

from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKeyConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class TimerRecord(Base):
    """Timer definition owned by a profile. Tombstoned when deleted_at is set."""

    __tablename__ = "timers"

    profile_id: Mapped[str] = mapped_column(Text, primary_key=True)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    rounds: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deleted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_timers_profile_updated_at", "profile_id", "updated_at"),
    )


class IntervalRecord(Base):
    """One interval of a timer. Replaced wholesale whenever its timer is upserted."""

    __tablename__ = "timer_intervals"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(Text, nullable=False)
    timer_id: Mapped[str] = mapped_column(String, nullable=False)
    id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[str] = mapped_column(String, nullable=False, default="")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        ForeignKeyConstraint(
            ["profile_id", "timer_id"],
            ["timers.profile_id", "timers.id"],
            ondelete="CASCADE",
        ),
        Index("idx_timer_intervals_timer", "profile_id", "timer_id"),
    )
