"""Sync bookkeeping model."""

from __future__ import annotations

from sqlalchemy import BigInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class SyncMetadata(Base):
    """Last watermark handed out per profile. Informational only."""

    __tablename__ = "sync_metadata"

    profile_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_sync_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
