"""Client sync controller: debounced, single-flight reconciliation with the backend.

One ``SyncController`` owns everything a running app instance knows about sync:
the persisted ``SyncState``, the ``LocalReplica`` and the only scheduled task (the
debounce timer).  Local mutations go through the helper methods, which persist the
replica and call ``notify_local_change``.  They must be called from the event loop
that runs the controller.

A sync requested while another is in flight is not dropped: it sets an ``owed``
flag and a follow-up runs, with zero delay, as soon as the in-flight one finishes.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from client.api_client import SyncApiClient
from client.blob_store import BlobStore
from client.errors import (
    AuthExpiredError,
    InvalidPasswordError,
    SyncClientError,
)
from client.merge import active_records, merge_by_id, upsert_by_id
from client.state import (
    LocalReplica,
    SyncState,
    load_replica,
    load_state,
    save_replica,
    save_state,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 5.0


class SyncPhase(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"


@dataclass
class SyncOutcome:
    """Result of a sync attempt, reported to the caller instead of raised."""

    success: bool
    error: str | None = None
    auth_expired: bool = False
    deferred: bool = False
    timers_received: int = 0
    history_received: int = 0


@dataclass
class ConnectionStatus:
    success: bool
    password_required: bool = False
    invalid_password: bool = False
    error: str | None = None


def hash_password(password: str) -> str:
    """SHA-256 hex digest; the backend never sees the plain password."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


def _check_id(record: dict[str, Any], what: str) -> None:
    record_id = record.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise ValueError(f"{what} id must be a non-empty string, got {record_id!r}")


def _check_count(record: dict[str, Any], field: str, minimum: int, default: int) -> None:
    value = record.get(field, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{field} must be an integer >= {minimum}, got {value!r}")


def check_timer(timer: dict[str, Any]) -> None:
    """Raise ``ValueError`` for a timer the backend would refuse.

    The full replica goes up in one request, so a single bad record would fail
    every later sync.
    """
    _check_id(timer, "Timer")
    _check_count(timer, "rounds", 1, 1)
    intervals = timer.get("intervals", [])
    if not isinstance(intervals, list):
        raise ValueError("intervals must be a list")
    for interval in intervals:
        if not isinstance(interval, dict):
            raise ValueError(f"Interval must be an object, got {interval!r}")
        _check_id(interval, "Interval")
        _check_count(interval, "duration", 0, 0)


def check_history_entry(entry: dict[str, Any]) -> None:
    """Raise ``ValueError`` for a history entry the backend would refuse."""
    _check_id(entry, "History entry")
    _check_count(entry, "total_duration", 0, 0)
    _check_count(entry, "elapsed_duration", 0, 0)


ApiFactory = Callable[[str], SyncApiClient]


class SyncController:
    def __init__(
        self,
        blob_store: BlobStore,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        api_factory: ApiFactory = SyncApiClient,
        on_auth_expired: Callable[[], None] | None = None,
    ) -> None:
        self._blob_store = blob_store
        self._debounce_seconds = debounce_seconds
        self._api_factory = api_factory
        self._on_auth_expired = on_auth_expired

        self.state: SyncState = load_state(blob_store)
        self.replica: LocalReplica = load_replica(blob_store)
        self.last_error: str | None = None

        self._api: SyncApiClient | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._follow_up_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._syncing = False
        self._owed = False
        # Ids mutated locally while a request is in flight; the echo must not clobber them.
        self._dirty_timer_ids: set[str] = set()
        self._dirty_history_ids: set[str] = set()

    # -- status -----------------------------------------------------------------

    @property
    def authenticated(self) -> bool:
        return self.state.authenticated

    @property
    def syncing(self) -> bool:
        return self._syncing

    @property
    def phase(self) -> SyncPhase:
        if self._syncing:
            return SyncPhase.SYNCING
        if self._debounce_task is not None and not self._debounce_task.done():
            return SyncPhase.PENDING
        return SyncPhase.IDLE

    def status(self) -> dict[str, Any]:
        return {
            "configured": self.state.configured,
            "authenticated": self.authenticated,
            "state": self.phase.value,
            "syncing": self._syncing,
            "last_synced_at": self.state.last_synced_at,
            "backend_url": self.state.backend_url,
            "profile_name": self.state.profile_name,
            "last_error": self.last_error,
        }

    def active_timers(self) -> list[dict[str, Any]]:
        return active_records(self.replica.timers)

    def active_history(self) -> list[dict[str, Any]]:
        return active_records(self.replica.history)

    # -- local mutations ----------------------------------------------------------

    def _persist_replica(self) -> None:
        save_replica(self._blob_store, self.replica)

    def _persist_state(self) -> None:
        save_state(self._blob_store, self.state)

    def _mark_dirty(self, ids: set[str], record_id: str) -> None:
        if self._syncing:
            ids.add(record_id)

    def upsert_timer(self, timer: dict[str, Any]) -> dict[str, Any]:
        """Create or replace a timer locally and schedule a sync."""
        record = dict(timer)
        record.setdefault("id", str(uuid.uuid4()))
        stamp = now_iso()
        existing = next((t for t in self.replica.timers if t.get("id") == record["id"]), None)
        record.setdefault("created_at", existing.get("created_at") if existing else stamp)
        record["updated_at"] = stamp
        record.setdefault("deleted_at", None)
        check_timer(record)
        self.replica.timers = upsert_by_id(self.replica.timers, record)
        self._mark_dirty(self._dirty_timer_ids, record["id"])
        self._persist_replica()
        self.notify_local_change()
        return record

    def delete_timer(self, timer_id: str) -> bool:
        """Tombstone a timer locally. Returns False if there is no live timer with that id."""
        for timer in self.replica.timers:
            if timer.get("id") == timer_id and not timer.get("deleted_at"):
                stamp = now_iso()
                tombstone = {**timer, "deleted_at": stamp, "updated_at": stamp}
                self.replica.timers = upsert_by_id(self.replica.timers, tombstone)
                self._mark_dirty(self._dirty_timer_ids, timer_id)
                self._persist_replica()
                self.notify_local_change()
                return True
        return False

    def record_history(self, entry: dict[str, Any]) -> dict[str, Any]:
        """Create or update a history entry locally and schedule a sync."""
        record = dict(entry)
        record.setdefault("id", str(uuid.uuid4()))
        stamp = now_iso()
        record.setdefault("started_at", stamp)
        record["updated_at"] = stamp
        record.setdefault("deleted_at", None)
        check_history_entry(record)
        self.replica.history = upsert_by_id(self.replica.history, record)
        self._mark_dirty(self._dirty_history_ids, record["id"])
        self._persist_replica()
        self.notify_local_change()
        return record

    def delete_history_entry(self, entry_id: str) -> bool:
        for entry in self.replica.history:
            if entry.get("id") == entry_id and not entry.get("deleted_at"):
                stamp = now_iso()
                tombstone = {**entry, "deleted_at": stamp, "updated_at": stamp}
                self.replica.history = upsert_by_id(self.replica.history, tombstone)
                self._mark_dirty(self._dirty_history_ids, entry_id)
                self._persist_replica()
                self.notify_local_change()
                return True
        return False

    # -- scheduling ---------------------------------------------------------------

    def notify_local_change(self) -> None:
        """Arm or re-arm the debounce timer. No-op when not authenticated."""
        if not self.authenticated:
            return
        self._cancel_debounce()
        self._debounce_task = asyncio.get_running_loop().create_task(
            self._run_after(self._debounce_seconds)
        )

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _run_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Past this point the sync itself is not cancelable.
        self._debounce_task = None
        await self.sync_now()

    async def _run_follow_up(self) -> None:
        await asyncio.sleep(0)
        self._follow_up_task = None
        await self.sync_now()

    async def wait_idle(self) -> None:
        """Wait until no debounce, follow-up or sync is outstanding."""
        while True:
            pending = [
                task
                for task in (self._debounce_task, self._follow_up_task)
                if task is not None and not task.done()
            ]
            if not pending and not self._syncing:
                return
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            else:
                await asyncio.sleep(0.01)

    # -- sync ---------------------------------------------------------------------

    def _client(self) -> SyncApiClient:
        backend_url = self.state.backend_url
        if not backend_url:
            raise SyncClientError("Backend URL not configured")
        if self._api is None:
            self._api = self._api_factory(backend_url)
        return self._api

    async def sync_now(self) -> SyncOutcome:
        """Reconcile now. Returns immediately with ``deferred`` if a sync is in flight."""
        if not self.authenticated:
            return SyncOutcome(success=False, error="Not authenticated")
        if self._syncing:
            self._owed = True
            return SyncOutcome(success=False, error="Sync already in progress", deferred=True)

        # This sync sends the full replica, so a pending debounce is redundant.
        self._cancel_debounce()
        self._syncing = True
        self._owed = False
        try:
            async with self._lock:
                return await self._reconcile()
        finally:
            self._syncing = False
            if self._owed and self.authenticated:
                self._owed = False
                self._follow_up_task = asyncio.get_running_loop().create_task(
                    self._run_follow_up()
                )

    async def _reconcile(self) -> SyncOutcome:
        # The previous holder of the lock may have logged out or switched profile.
        token = self.state.token
        if not self.authenticated or token is None:
            return SyncOutcome(success=False, error="Not authenticated")
        self._dirty_timer_ids.clear()
        self._dirty_history_ids.clear()
        timers = list(self.replica.timers)
        history = list(self.replica.history)

        try:
            response = await self._client().sync(
                token, self.state.last_synced_at, timers, history
            )
        except AuthExpiredError as exc:
            logger.warning("Sync rejected, session expired: %s", exc)
            self._expire_session()
            return SyncOutcome(success=False, error="Session expired", auth_expired=True)
        except SyncClientError as exc:
            logger.warning("Sync failed: %s", exc)
            self.last_error = str(exc)
            return SyncOutcome(success=False, error=str(exc))

        if self.state.token != token:
            # Logged out while the request was in flight.
            return SyncOutcome(success=False, error="Session changed during sync")

        server_timers = response.get("timers") or []
        server_history = response.get("history") or []
        self.replica.timers = merge_by_id(
            self.replica.timers, server_timers, self._dirty_timer_ids
        )
        self.replica.history = merge_by_id(
            self.replica.history, server_history, self._dirty_history_ids
        )
        self._persist_replica()

        if self._dirty_timer_ids or self._dirty_history_ids:
            self._owed = True
        self._dirty_timer_ids.clear()
        self._dirty_history_ids.clear()

        self.state.last_synced_at = int(response.get("last_synced_at") or 0)
        self._persist_state()
        self.last_error = None
        logger.info(
            "Synced profile %r: %d timer(s), %d history entry(ies) received",
            self.state.profile_name,
            len(server_timers),
            len(server_history),
        )
        return SyncOutcome(
            success=True,
            timers_received=len(server_timers),
            history_received=len(server_history),
        )

    def _expire_session(self) -> None:
        self._cancel_debounce()
        self._owed = False
        self.state.token = None
        self.state.last_synced_at = 0
        self._persist_state()
        self.last_error = "Session expired"
        if self._on_auth_expired is not None:
            self._on_auth_expired()

    # -- session management -------------------------------------------------------

    async def test_connection(self, backend_url: str, password: str = "") -> ConnectionStatus:
        api = self._api_factory(backend_url)
        try:
            required = await api.test_connection(hash_password(password) if password else "")
        except InvalidPasswordError as exc:
            return ConnectionStatus(
                success=False, password_required=True, invalid_password=True, error=str(exc)
            )
        except SyncClientError as exc:
            return ConnectionStatus(success=False, error=str(exc))
        finally:
            await api.close()
        return ConnectionStatus(success=True, password_required=required)

    async def list_profiles(
        self, backend_url: str | None = None, password: str | None = None
    ) -> list[str]:
        """Profile names known to the backend. Raises InvalidPasswordError on a bad password."""
        url = backend_url or self.state.backend_url
        if not url:
            raise SyncClientError("Backend URL not configured")
        password_hash = (
            self.state.password_hash
            if password is None
            else (hash_password(password) if password else "")
        )
        api = self._api_factory(url)
        try:
            return await api.list_profiles(password_hash)
        finally:
            await api.close()

    async def login(self, profile_name: str, backend_url: str, password: str = "") -> None:
        """Open a session for ``profile_name``. The watermark restarts at 0."""
        password_hash = hash_password(password) if password else ""
        api = self._api_factory(backend_url)
        try:
            token = await api.init_session(profile_name, password_hash)
        finally:
            await api.close()

        async with self._lock:
            self._cancel_debounce()
            if self._api is not None:
                await self._api.close()
                self._api = None
            self.state.backend_url = backend_url.rstrip("/")
            self.state.password_hash = password_hash
            self.state.token = token
            self.state.profile_name = profile_name
            self.state.last_synced_at = 0
            self._persist_state()
            self.last_error = None
        logger.info("Logged in as profile %r at %s", profile_name, self.state.backend_url)

    async def switch_profile(self, profile_name: str) -> SyncOutcome:
        """Re-authenticate as another profile and replace the replica with its records.

        Local records of the previous profile are discarded, synced or not.
        """
        async with self._lock:
            self._cancel_debounce()
            self._owed = False
            if not self.state.backend_url:
                return SyncOutcome(success=False, error="Backend URL not configured")

            try:
                token = await self._client().init_session(
                    profile_name, self.state.password_hash
                )
            except SyncClientError as exc:
                self.last_error = str(exc)
                return SyncOutcome(success=False, error=str(exc))

            self.state.token = token
            self.state.profile_name = profile_name
            self.state.last_synced_at = 0
            self.replica = LocalReplica()
            self._persist_state()
            self._persist_replica()

            try:
                response = await self._client().sync(token, 0, [], [])
            except AuthExpiredError:
                self._expire_session()
                return SyncOutcome(success=False, error="Session expired", auth_expired=True)
            except SyncClientError as exc:
                self.last_error = str(exc)
                return SyncOutcome(success=False, error=str(exc))

            server_timers = response.get("timers") or []
            server_history = response.get("history") or []
            self.replica = LocalReplica(
                timers=active_records(server_timers),
                history=active_records(server_history),
            )
            self.state.last_synced_at = int(response.get("last_synced_at") or 0)
            self._persist_replica()
            self._persist_state()
            self.last_error = None
            logger.info("Switched to profile %r", profile_name)
            return SyncOutcome(
                success=True,
                timers_received=len(server_timers),
                history_received=len(server_history),
            )

    async def logout(self) -> None:
        """Revoke the session (best effort) and forget the backend locally."""
        self._cancel_debounce()
        self._owed = False
        token = self.state.token
        try:
            if token and self.state.backend_url:
                await self._client().logout(token)
        except SyncClientError as exc:
            logger.warning("Logout request failed, clearing local session anyway: %s", exc)
        finally:
            self.state.token = None
            self.state.profile_name = None
            self.state.last_synced_at = 0
            self.state.backend_url = None
            self._persist_state()
            if self._api is not None:
                await self._api.close()
                self._api = None

    async def close(self) -> None:
        self._cancel_debounce()
        if self._follow_up_task is not None and not self._follow_up_task.done():
            self._follow_up_task.cancel()
        self._follow_up_task = None
        if self._api is not None:
            await self._api.close()
            self._api = None
