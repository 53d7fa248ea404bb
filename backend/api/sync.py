"""Sync API endpoint: upload local records, download changes since the watermark."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from backend.api.deps import get_authority, get_store, get_token
from backend.schemas.sync import SyncPayload
from backend.services.auth_service import SessionAuthority
from backend.services.reconcile_service import reconcile
from backend.services.record_store import RecordStore

router = APIRouter(prefix="/api", tags=["sync"])


@router.post("/sync", response_model=SyncPayload)
async def sync(
    body: SyncPayload,
    token: Annotated[str | None, Depends(get_token)],
    authority: Annotated[SessionAuthority, Depends(get_authority)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> SyncPayload:
    """Exchange the client's full local state for the server's delta."""
    return await reconcile(
        authority,
        store,
        token,
        body.last_synced_at,
        body.timers,
        body.history,
    )
