"""Authentication API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from backend.api.deps import auth_rate_limit, get_authority, get_token
from backend.schemas.auth import (
    AuthInitRequest,
    ConnectionTestResponse,
    PasswordCheckRequest,
    TokenResponse,
)
from backend.services.auth_service import SessionAuthority

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post(
    "/test",
    response_model=ConnectionTestResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def test_connection(
    body: PasswordCheckRequest,
    authority: Annotated[SessionAuthority, Depends(get_authority)],
) -> ConnectionTestResponse:
    """Check reachability and the password before a profile is chosen.

    Lets the UI tell "password required" apart from "invalid password".
    """
    authority.require_password(body.password_hash)
    return ConnectionTestResponse(success=True, password_required=authority.password_required)


@router.post("/init", response_model=TokenResponse, dependencies=[Depends(auth_rate_limit)])
async def init_session(
    body: AuthInitRequest,
    authority: Annotated[SessionAuthority, Depends(get_authority)],
) -> TokenResponse:
    """Open a session for a profile."""
    token = await authority.authenticate(body.profile_name, body.password_hash)
    return TokenResponse(token=token)


@router.post("/logout")
async def logout(
    token: Annotated[str | None, Depends(get_token)],
    authority: Annotated[SessionAuthority, Depends(get_authority)],
) -> dict[str, str]:
    """Revoke the caller's session. Safe to repeat."""
    await authority.revoke(token)
    return {}
