"""Authentication schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PasswordCheckRequest(BaseModel):
    """Body of connection tests and profile listing."""

    password_hash: str = Field(default="", max_length=256)


class ConnectionTestResponse(BaseModel):
    """Result of a successful connection test."""

    success: bool = True
    password_required: bool


class AuthInitRequest(BaseModel):
    """Session request for a profile. The profile name is sent in plaintext."""

    profile_name: str = Field(default="", max_length=200)
    password_hash: str = Field(default="", max_length=256)


class TokenResponse(BaseModel):
    """Opaque session token."""

    token: str


class ProfilesResponse(BaseModel):
    """Profile names known to the backend."""

    profiles: list[str] = Field(default_factory=list)
