"""Tests for the client sync controller."""

from __future__ import annotations

import asyncio
import hashlib
from typing import TYPE_CHECKING, Any

import pytest

from client.api_client import SyncApiClient
from client.blob_store import MemoryBlobStore
from client.controller import SyncController, SyncOutcome, SyncPhase
from client.errors import AuthExpiredError, InvalidPasswordError, SyncRequestError
from client.state import SyncState, load_replica, load_state, save_state

if TYPE_CHECKING:
    import httpx


class FakeApi:
    """Stands in for SyncApiClient; records calls and returns scripted results."""

    def __init__(self) -> None:
        self.sync_calls: list[dict[str, Any]] = []
        self.sync_error: Exception | None = None
        self.sync_gate: asyncio.Event | None = None
        self.sync_entered = asyncio.Event()
        self.response_timers: list[dict[str, Any]] = []
        self.watermark = 1000
        self.logout_calls: list[str] = []
        self.logout_error: Exception | None = None
        self.closed = False

    async def sync(
        self,
        token: str,
        last_synced_at: int,
        timers: list[dict[str, Any]],
        history: list[dict[str, Any]],
    ) -> dict[str, Any]:
        self.sync_calls.append(
            {
                "token": token,
                "last_synced_at": last_synced_at,
                "timers": [dict(t) for t in timers],
                "history": [dict(h) for h in history],
            }
        )
        self.sync_entered.set()
        if self.sync_gate is not None:
            await self.sync_gate.wait()
        if self.sync_error is not None:
            raise self.sync_error
        self.watermark += 1
        return {
            "last_synced_at": self.watermark,
            "timers": self.response_timers or [dict(t) for t in timers],
            "history": [dict(h) for h in history],
        }

    async def init_session(self, profile_name: str, password_hash: str) -> str:
        return f"token-{profile_name}"

    async def logout(self, token: str) -> None:
        self.logout_calls.append(token)
        if self.logout_error is not None:
            raise self.logout_error

    async def close(self) -> None:
        self.closed = True


def authenticated_store(watermark: int = 500) -> MemoryBlobStore:
    store = MemoryBlobStore()
    save_state(
        store,
        SyncState(
            backend_url="http://backend",
            password_hash="",
            token="token-alice",
            profile_name="alice",
            last_synced_at=watermark,
        ),
    )
    return store


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


def make_controller(
    fake_api: FakeApi,
    store: MemoryBlobStore | None = None,
    debounce: float = 0.05,
    **kwargs: Any,
) -> SyncController:
    return SyncController(
        store if store is not None else authenticated_store(),
        debounce_seconds=debounce,
        api_factory=lambda url: fake_api,  # type: ignore[arg-type,return-value]
        **kwargs,
    )


class TestLocalMutations:
    async def test_upsert_timer_stamps_and_persists(self, fake_api: FakeApi) -> None:
        store = authenticated_store()
        controller = make_controller(fake_api, store, debounce=60)
        timer = controller.upsert_timer({"name": "Tabata", "rounds": 8, "intervals": []})
        assert timer["id"]
        assert timer["created_at"] == timer["updated_at"]
        assert timer["deleted_at"] is None
        assert load_replica(store).timers == [timer]
        assert controller.phase is SyncPhase.PENDING
        await controller.close()

    async def test_update_keeps_created_at(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, debounce=60)
        first = controller.upsert_timer({"id": "t1", "name": "A"})
        await asyncio.sleep(0.002)
        second = controller.upsert_timer({"id": "t1", "name": "B"})
        assert second["created_at"] == first["created_at"]
        assert [t["name"] for t in controller.replica.timers] == ["B"]
        await controller.close()

    async def test_delete_timer_leaves_tombstone(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, debounce=60)
        controller.upsert_timer({"id": "t1", "name": "A"})
        assert controller.delete_timer("t1")
        assert controller.active_timers() == []
        assert controller.replica.timers[0]["deleted_at"]
        assert not controller.delete_timer("t1")
        assert not controller.delete_timer("missing")
        await controller.close()

    async def test_history_helpers(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, debounce=60)
        entry = controller.record_history({"timer_id": "t1", "timer_name": "A"})
        controller.record_history({**entry, "elapsed_duration": 30})
        assert len(controller.active_history()) == 1
        assert controller.delete_history_entry(entry["id"])
        assert controller.active_history() == []
        await controller.close()

    async def test_no_debounce_when_unauthenticated(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, MemoryBlobStore())
        controller.upsert_timer({"name": "offline"})
        assert controller.phase is SyncPhase.IDLE
        await asyncio.sleep(0.1)
        assert fake_api.sync_calls == []

    @pytest.mark.parametrize(
        "timer",
        [
            {"name": "zero rounds", "rounds": 0},
            {"name": "fractional", "rounds": 1.5},
            {"name": "flag", "rounds": True},
            {"name": "negative", "intervals": [{"id": "1", "duration": -1}]},
            {"name": "no interval id", "intervals": [{"duration": 10}]},
            {"id": "", "name": "blank id"},
        ],
    )
    async def test_invalid_timer_is_not_stored(
        self, fake_api: FakeApi, timer: dict[str, Any]
    ) -> None:
        store = authenticated_store()
        controller = make_controller(fake_api, store, debounce=60)
        with pytest.raises(ValueError):
            controller.upsert_timer(timer)
        assert controller.replica.timers == []
        assert load_replica(store).timers == []
        assert controller.phase is SyncPhase.IDLE

    @pytest.mark.parametrize(
        "entry", [{"total_duration": -5}, {"elapsed_duration": -1}, {"elapsed_duration": "30"}]
    )
    async def test_invalid_history_entry_is_not_stored(
        self, fake_api: FakeApi, entry: dict[str, Any]
    ) -> None:
        controller = make_controller(fake_api, debounce=60)
        with pytest.raises(ValueError):
            controller.record_history({"timer_id": "t1", **entry})
        assert controller.replica.history == []


class TestDebounce:
    async def test_burst_collapses_into_one_sync(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api)
        for i in range(5):
            controller.upsert_timer({"id": f"t{i}", "name": str(i)})
            await asyncio.sleep(0.01)
        await controller.wait_idle()
        assert len(fake_api.sync_calls) == 1
        assert len(fake_api.sync_calls[0]["timers"]) == 5
        await controller.close()

    async def test_sync_sends_full_state_and_watermark(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, authenticated_store(watermark=777))
        controller.upsert_timer({"id": "t1", "name": "A"})
        await controller.wait_idle()
        call = fake_api.sync_calls[0]
        assert call["token"] == "token-alice"
        assert call["last_synced_at"] == 777
        assert controller.state.last_synced_at == 1001
        await controller.close()

    async def test_close_cancels_pending_sync(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api)
        controller.upsert_timer({"name": "A"})
        await controller.close()
        await asyncio.sleep(0.1)
        assert fake_api.sync_calls == []


class TestSingleFlight:
    async def test_request_during_sync_is_owed(self, fake_api: FakeApi) -> None:
        fake_api.sync_gate = asyncio.Event()
        controller = make_controller(fake_api, debounce=60)

        in_flight = asyncio.create_task(controller.sync_now())
        await fake_api.sync_entered.wait()
        assert controller.phase is SyncPhase.SYNCING

        deferred = await controller.sync_now()
        assert deferred.deferred
        assert len(fake_api.sync_calls) == 1

        fake_api.sync_gate.set()
        assert (await in_flight).success
        await controller.wait_idle()
        assert len(fake_api.sync_calls) == 2
        assert fake_api.sync_calls[1]["last_synced_at"] == 1001
        await controller.close()

    async def test_edit_during_sync_survives_echo(self, fake_api: FakeApi) -> None:
        fake_api.sync_gate = asyncio.Event()
        controller = make_controller(fake_api, debounce=60)
        controller.upsert_timer({"id": "t1", "name": "before"})

        in_flight = asyncio.create_task(controller.sync_now())
        await fake_api.sync_entered.wait()
        controller.upsert_timer({"id": "t1", "name": "during"})
        fake_api.sync_gate.set()
        await in_flight

        assert [t["name"] for t in controller.replica.timers] == ["during"]
        await controller.wait_idle()
        assert fake_api.sync_calls[-1]["timers"][0]["name"] == "during"
        await controller.close()


class TestFailures:
    async def test_auth_expiry_clears_session(self, fake_api: FakeApi) -> None:
        fake_api.sync_error = AuthExpiredError("Invalid token")
        expired: list[bool] = []
        store = authenticated_store()
        controller = make_controller(fake_api, store, on_auth_expired=lambda: expired.append(True))
        controller.upsert_timer({"id": "t1", "name": "keep me"})

        outcome = await controller.sync_now()

        assert outcome.auth_expired
        assert expired == [True]
        assert not controller.authenticated
        persisted = load_state(store)
        assert persisted.token is None
        assert persisted.last_synced_at == 0
        assert persisted.backend_url == "http://backend"
        assert [t["name"] for t in load_replica(store).timers] == ["keep me"]
        assert controller.phase is SyncPhase.IDLE
        await controller.close()

    async def test_transient_failure_keeps_state(self, fake_api: FakeApi) -> None:
        fake_api.sync_error = SyncRequestError("Storage temporarily unavailable", 503)
        store = authenticated_store(watermark=42)
        controller = make_controller(fake_api, store, debounce=60)
        controller.upsert_timer({"id": "t1", "name": "A"})

        outcome = await controller.sync_now()

        assert not outcome.success
        assert not outcome.auth_expired
        assert controller.authenticated
        assert controller.state.last_synced_at == 42
        assert controller.status()["last_error"] == "Storage temporarily unavailable"

        fake_api.sync_error = None
        assert (await controller.sync_now()).success
        assert controller.status()["last_error"] is None
        await controller.close()

    async def test_logout_while_waiting_for_lock(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, debounce=60)
        await controller._lock.acquire()
        task = asyncio.create_task(controller.sync_now())
        await asyncio.sleep(0)
        controller.state.token = None
        controller._lock.release()
        outcome = await task
        assert outcome == SyncOutcome(success=False, error="Not authenticated")
        assert fake_api.sync_calls == []
        await controller.close()

    async def test_sync_when_unauthenticated(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api, MemoryBlobStore())
        outcome = await controller.sync_now()
        assert not outcome.success
        assert fake_api.sync_calls == []


class TestSessionManagement:
    async def test_login_stores_hashed_password(self, fake_api: FakeApi) -> None:
        store = MemoryBlobStore()
        controller = make_controller(fake_api, store)
        await controller.login("alice", "http://backend/", "pw")
        state = load_state(store)
        assert state.token == "token-alice"
        assert state.profile_name == "alice"
        assert state.backend_url == "http://backend"
        assert state.password_hash == hashlib.sha256(b"pw").hexdigest()
        assert state.last_synced_at == 0

    async def test_logout_clears_state_even_if_request_fails(self, fake_api: FakeApi) -> None:
        fake_api.logout_error = SyncRequestError("offline")
        store = authenticated_store()
        controller = make_controller(fake_api, store)
        controller.upsert_timer({"name": "A"})

        await controller.logout()

        assert fake_api.logout_calls == ["token-alice"]
        state = load_state(store)
        assert state.token is None
        assert state.profile_name is None
        assert state.backend_url is None
        assert state.last_synced_at == 0
        assert controller.phase is SyncPhase.IDLE

    async def test_status(self, fake_api: FakeApi) -> None:
        controller = make_controller(fake_api)
        status = controller.status()
        assert status == {
            "configured": True,
            "authenticated": True,
            "state": "idle",
            "syncing": False,
            "last_synced_at": 500,
            "backend_url": "http://backend",
            "profile_name": "alice",
            "last_error": None,
        }


class TestAgainstBackend:
    """End-to-end through the in-process backend."""

    def controller(
        self, asgi_transport: httpx.AsyncBaseTransport, store: MemoryBlobStore | None = None
    ) -> SyncController:
        return SyncController(
            store or MemoryBlobStore(),
            debounce_seconds=60,
            api_factory=lambda url: SyncApiClient(url, transport=asgi_transport),
        )

    async def test_two_devices_converge(self, asgi_transport: httpx.AsyncBaseTransport) -> None:
        phone = self.controller(asgi_transport)
        laptop = self.controller(asgi_transport)
        await phone.login("alice", "http://test")
        await laptop.login("alice", "http://test")

        timer = phone.upsert_timer(
            {
                "name": "Tabata",
                "rounds": 8,
                "intervals": [{"id": "1", "name": "Work", "duration": 20, "color": "red"}],
            }
        )
        assert (await phone.sync_now()).success
        assert (await laptop.sync_now()).success
        assert [t["id"] for t in laptop.active_timers()] == [timer["id"]]
        assert laptop.active_timers()[0]["intervals"][0]["name"] == "Work"

        phone.delete_timer(timer["id"])
        assert (await phone.sync_now()).success
        assert (await laptop.sync_now()).success
        assert laptop.active_timers() == []

        await phone.close()
        await laptop.close()

    async def test_switch_profile_replaces_replica(
        self, asgi_transport: httpx.AsyncBaseTransport
    ) -> None:
        controller = self.controller(asgi_transport)
        await controller.login("alice", "http://test")
        controller.upsert_timer({"id": "a1", "name": "Alice's"})
        assert (await controller.sync_now()).success

        outcome = await controller.switch_profile("bob")
        assert outcome.success
        assert controller.state.profile_name == "bob"
        assert controller.replica.timers == []
        assert controller.replica.history == []

        outcome = await controller.switch_profile("alice")
        assert outcome.success
        assert [t["name"] for t in controller.active_timers()] == ["Alice's"]
        await controller.close()

    async def test_rejected_timer_does_not_block_sync(
        self, asgi_transport: httpx.AsyncBaseTransport
    ) -> None:
        controller = self.controller(asgi_transport)
        await controller.login("alice", "http://test")
        with pytest.raises(ValueError):
            controller.upsert_timer({"id": "bad", "name": "Broken", "rounds": 0})
        controller.upsert_timer({"id": "good", "name": "Fine", "rounds": 3})

        outcome = await controller.sync_now()
        assert outcome.success, outcome.error
        assert [t["id"] for t in controller.active_timers()] == ["good"]
        await controller.close()

    async def test_revoked_session_expires(
        self, asgi_transport: httpx.AsyncBaseTransport
    ) -> None:
        controller = self.controller(asgi_transport)
        await controller.login("alice", "http://test")
        async with SyncApiClient("http://test", transport=asgi_transport) as api:
            assert controller.state.token is not None
            await api.logout(controller.state.token)

        outcome = await controller.sync_now()
        assert outcome.auth_expired
        assert not controller.authenticated
        await controller.close()

    async def test_connection_and_profiles(
        self, asgi_transport: httpx.AsyncBaseTransport
    ) -> None:
        controller = self.controller(asgi_transport)
        status = await controller.test_connection("http://test")
        assert status.success
        assert not status.password_required

        await controller.login("alice", "http://test")
        controller.upsert_timer({"name": "A"})
        await controller.sync_now()
        assert await controller.list_profiles() == ["alice"]
        await controller.close()


class TestPasswordProtectedBackend:
    async def test_invalid_password_is_reported(self, tmp_path: Any) -> None:
        from tests.conftest import TEST_PASSWORD, create_test_app, make_settings

        async with create_test_app(make_settings(tmp_path, sync_password=TEST_PASSWORD)) as app:
            from httpx import ASGITransport

            transport = ASGITransport(app=app)
            controller = SyncController(
                MemoryBlobStore(),
                api_factory=lambda url: SyncApiClient(url, transport=transport),
            )
            status = await controller.test_connection("http://test", "wrong")
            assert not status.success
            assert status.invalid_password
            assert status.password_required

            with pytest.raises(InvalidPasswordError):
                await controller.login("alice", "http://test", "wrong")
            assert not controller.authenticated

            await controller.login("alice", "http://test", TEST_PASSWORD)
            assert controller.authenticated
            assert (await controller.sync_now()).success
            await controller.close()
