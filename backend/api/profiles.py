"""Profile listing endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from backend.api.deps import auth_rate_limit, get_authority, get_store
from backend.schemas.auth import PasswordCheckRequest, ProfilesResponse
from backend.services.auth_service import SessionAuthority
from backend.services.record_store import RecordStore

router = APIRouter(prefix="/api", tags=["profiles"])


@router.post(
    "/profiles",
    response_model=ProfilesResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def list_profiles(
    body: PasswordCheckRequest,
    authority: Annotated[SessionAuthority, Depends(get_authority)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> ProfilesResponse:
    """List every profile with data on this backend, for profile pickers."""
    authority.require_password(body.password_hash)
    return ProfilesResponse(profiles=await store.list_profiles())
