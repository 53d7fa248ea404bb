"""Single-record timer and history endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from backend.api.deps import get_store, require_profile
from backend.schemas.sync import TimerDefinition
from backend.services.record_store import RecordStore

router = APIRouter(prefix="/api", tags=["records"])


@router.get("/timers/{timer_id}", response_model=TimerDefinition)
async def get_timer(
    timer_id: str,
    profile_id: Annotated[str, Depends(require_profile)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> TimerDefinition:
    """Fetch one active timer of the caller's profile."""
    return await store.get_timer(profile_id, timer_id)


@router.delete("/timers/{timer_id}")
async def delete_timer(
    timer_id: str,
    profile_id: Annotated[str, Depends(require_profile)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> dict[str, str]:
    """Tombstone a timer; other devices pick the deletion up on their next sync."""
    await store.soft_delete_timer(profile_id, timer_id)
    return {}


@router.delete("/history/{entry_id}")
async def delete_history_entry(
    entry_id: str,
    profile_id: Annotated[str, Depends(require_profile)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> dict[str, str]:
    await store.soft_delete_history_entry(profile_id, entry_id)
    return {}
