"""Shared API dependencies: settings, store, session authority, tokens, rate limits."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.config import Settings
from backend.exceptions import RateLimitedError
from backend.services.auth_service import SessionAuthority
from backend.services.rate_limit_service import TokenBucketRateLimiter
from backend.services.record_store import RecordStore

AUTH_LIMIT_CLASS = "auth"

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_store(request: Request) -> RecordStore:
    """Get the record store from app state."""
    store: RecordStore = request.app.state.record_store
    return store


def get_authority(request: Request) -> SessionAuthority:
    """Get the session authority from app state."""
    authority: SessionAuthority = request.app.state.session_authority
    return authority


def get_client_ip(request: Request) -> str:
    """Socket peer address; the first X-Forwarded-For hop only from trusted proxies."""
    peer = request.client.host if request.client and request.client.host else "unknown"
    settings: Settings = request.app.state.settings
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for and peer in settings.trusted_proxy_ips:
        return forwarded_for.split(",", maxsplit=1)[0].strip()
    return peer


def get_token(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> str | None:
    """Bearer token from the Authorization header, falling back to ``?token=``."""
    if credentials is not None:
        return credentials.credentials
    if request.headers.get("Authorization"):
        # Present but not a bearer credential.
        return None
    return request.query_params.get("token") or None


def auth_rate_limit(
    request: Request,
    client_ip: Annotated[str, Depends(get_client_ip)],
) -> None:
    """Consume one auth-class token for this client. Raises RateLimitedError when empty."""
    limiter: TokenBucketRateLimiter = request.app.state.rate_limiter
    allowed, retry_after = limiter.try_acquire(client_ip, AUTH_LIMIT_CLASS)
    if not allowed:
        raise RateLimitedError(retry_after)


async def require_profile(
    token: Annotated[str | None, Depends(get_token)],
    authority: Annotated[SessionAuthority, Depends(get_authority)],
) -> str:
    """Require a valid session. Returns the authenticated profile id."""
    return await authority.verify(token)
