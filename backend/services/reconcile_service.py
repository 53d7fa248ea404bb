"""Sync reconciliation: persist a client's records, return what changed since its watermark."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from backend.exceptions import StorageFault
from backend.schemas.sync import SyncPayload
from backend.services.datetime_service import now_ms

if TYPE_CHECKING:
    from collections.abc import Sequence

    from backend.schemas.sync import HistoryEntry, TimerDefinition
    from backend.services.auth_service import SessionAuthority
    from backend.services.record_store import RecordStore

logger = logging.getLogger(__name__)


async def reconcile(
    authority: SessionAuthority,
    store: RecordStore,
    token: str | None,
    watermark: int,
    timers: Sequence[TimerDefinition],
    history: Sequence[HistoryEntry],
) -> SyncPayload:
    """Run one sync round-trip for the profile behind ``token``.

    Uploads are applied in order, so a duplicate id later in a batch wins.  The
    delta deliberately includes the records just uploaded: their ``updated_at`` is
    newer than the client's watermark, and the client re-applies them by id.
    """
    profile_id = await authority.verify(token)

    for timer in timers:
        await store.upsert_timer(timer.model_copy(update={"profile_id": profile_id}))
    for entry in history:
        await store.upsert_history_entry(entry.model_copy(update={"profile_id": profile_id}))

    changed_timers = await store.timers_changed_since(profile_id, watermark)
    changed_history = await store.history_changed_since(profile_id, watermark)

    new_watermark = now_ms()
    try:
        await store.set_watermark(profile_id, new_watermark)
    except StorageFault:
        # Bookkeeping only; the client's copy of the watermark is authoritative.
        logger.warning("Failed to record sync time for profile %r", profile_id)

    logger.info(
        "Sync for profile %r: received %d timer(s) and %d history entry(ies), "
        "returned %d and %d since %d",
        profile_id,
        len(timers),
        len(history),
        len(changed_timers),
        len(changed_history),
        watermark,
    )
    return SyncPayload(
        last_synced_at=new_watermark,
        timers=changed_timers,
        history=changed_history,
    )
