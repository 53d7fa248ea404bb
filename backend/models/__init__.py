"""SQLAlchemy ORM models for intervals-sync."""

from backend.models.base import Base
from backend.models.history import HistoryRecord
from backend.models.session import SessionRecord
from backend.models.sync import SyncMetadata
from backend.models.timer import IntervalRecord, TimerRecord

__all__ = [
    "Base",
    "HistoryRecord",
    "IntervalRecord",
    "SessionRecord",
    "SyncMetadata",
    "TimerRecord",
]
