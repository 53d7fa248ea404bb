"""Async HTTP client for the sync backend."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from client.errors import (
    AuthExpiredError,
    InvalidPasswordError,
    RateLimitedError,
    SyncRequestError,
)

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {resp.status_code}"


class SyncApiClient:
    """Thin wrapper over the backend's JSON routes.

    Maps error statuses to client exceptions.  A 401 from an auth endpoint means
    a wrong password; a 401 anywhere else means the session is gone.
    """

    def __init__(
        self,
        backend_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.backend_url = backend_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.backend_url,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SyncApiClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        token: str | None = None,
        password_endpoint: bool = False,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            resp = await self._client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise SyncRequestError(f"Could not reach {self.backend_url}: {exc}") from exc

        if resp.status_code == 401:
            message = _error_message(resp)
            if password_endpoint:
                raise InvalidPasswordError(message)
            raise AuthExpiredError(message)
        if resp.status_code == 429:
            try:
                retry_after = int(resp.headers.get("Retry-After", "0"))
            except ValueError:
                retry_after = 0
            raise RateLimitedError(_error_message(resp), retry_after)
        if resp.status_code != 200:
            raise SyncRequestError(_error_message(resp), resp.status_code)

        try:
            body = resp.json()
        except ValueError as exc:
            raise SyncRequestError("Malformed response from backend", resp.status_code) from exc
        if not isinstance(body, dict):
            raise SyncRequestError("Malformed response from backend", resp.status_code)
        return body

    async def test_connection(self, password_hash: str) -> bool:
        """Check reachability and password. Returns whether the backend requires one."""
        body = await self._post(
            "/api/auth/test", {"password_hash": password_hash}, password_endpoint=True
        )
        return bool(body.get("password_required", False))

    async def list_profiles(self, password_hash: str) -> list[str]:
        body = await self._post(
            "/api/profiles", {"password_hash": password_hash}, password_endpoint=True
        )
        return [str(name) for name in body.get("profiles") or []]

    async def init_session(self, profile_name: str, password_hash: str) -> str:
        body = await self._post(
            "/api/auth/init",
            {"profile_name": profile_name, "password_hash": password_hash},
            password_endpoint=True,
        )
        token = body.get("token")
        if not token:
            raise SyncRequestError("Backend did not return a token")
        return str(token)

    async def logout(self, token: str) -> None:
        await self._post("/api/auth/logout", {}, token=token)

    async def sync(
        self,
        token: str,
        last_synced_at: int,
        timers: list[dict[str, Any]],
        history: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """One reconcile round-trip. Returns the server's delta and new watermark."""
        return await self._post(
            "/api/sync",
            {"last_synced_at": last_synced_at, "timers": timers, "history": history},
            token=token,
        )
