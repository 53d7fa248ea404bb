"""Persisted client state: connection settings, watermark and the local replica."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from client.blob_store import BlobStore

logger = logging.getLogger(__name__)

STATE_KEY = "sync_state"
TIMERS_KEY = "timers"
HISTORY_KEY = "history"


@dataclass
class SyncState:
    backend_url: str | None = None
    password_hash: str = ""
    token: str | None = None
    profile_name: str | None = None
    last_synced_at: int = 0

    @property
    def configured(self) -> bool:
        return bool(self.backend_url)

    @property
    def authenticated(self) -> bool:
        return bool(self.backend_url and self.token)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncState:
        """Build from stored JSON, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        state = cls(**{k: v for k, v in data.items() if k in known})
        try:
            state.last_synced_at = max(int(state.last_synced_at or 0), 0)
        except (TypeError, ValueError):
            state.last_synced_at = 0
        return state


@dataclass
class LocalReplica:
    timers: list[dict[str, Any]] = field(default_factory=list)
    history: list[dict[str, Any]] = field(default_factory=list)


def _load_json(store: BlobStore, key: str) -> Any:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable blob %r", key)
        return None


def load_state(store: BlobStore) -> SyncState:
    data = _load_json(store, STATE_KEY)
    if not isinstance(data, dict):
        return SyncState()
    return SyncState.from_dict(data)


def save_state(store: BlobStore, state: SyncState) -> None:
    store.put(STATE_KEY, json.dumps(asdict(state), indent=2))


def load_replica(store: BlobStore) -> LocalReplica:
    timers = _load_json(store, TIMERS_KEY)
    history = _load_json(store, HISTORY_KEY)
    return LocalReplica(
        timers=timers if isinstance(timers, list) else [],
        history=history if isinstance(history, list) else [],
    )


def save_replica(store: BlobStore, replica: LocalReplica) -> None:
    store.put(TIMERS_KEY, json.dumps(replica.timers, indent=2))
    store.put(HISTORY_KEY, json.dumps(replica.history, indent=2))
