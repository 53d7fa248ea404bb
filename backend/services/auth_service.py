"""Authentication service: shared-secret password gate and opaque session tokens."""

from __future__ import annotations

import hashlib
import logging
import secrets
from typing import TYPE_CHECKING

from backend.exceptions import UnauthorizedError, ValidationFailure

if TYPE_CHECKING:
    from backend.services.record_store import RecordStore

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def hash_passphrase(passphrase: str) -> str:
    """SHA-256 hex digest, the form in which clients send the shared password."""
    return hashlib.sha256(passphrase.encode("utf-8")).hexdigest()


def create_session_token() -> str:
    """Generate an unguessable opaque session token (64 hex chars)."""
    return secrets.token_hex(TOKEN_BYTES)


class SessionAuthority:
    """Issues, verifies and revokes session tokens bound to profile ids.

    When no password is configured every password hash, including the empty
    string, is accepted.
    """

    def __init__(self, store: RecordStore, sync_password: str = "") -> None:
        self._store = store
        self._password_hash = hash_passphrase(sync_password) if sync_password else None

    @property
    def password_required(self) -> bool:
        return self._password_hash is not None

    def check_password(self, supplied_hash: str) -> bool:
        """Constant-time comparison of the supplied hash with the configured one."""
        if self._password_hash is None:
            return True
        return secrets.compare_digest(
            supplied_hash.strip().lower().encode("utf-8"),
            self._password_hash.encode("utf-8"),
        )

    def require_password(self, supplied_hash: str) -> None:
        if not self.check_password(supplied_hash):
            raise UnauthorizedError("Invalid password")

    async def authenticate(self, profile_id: str, supplied_hash: str) -> str:
        """Open a session for ``profile_id``.

        The profile id is used verbatim: no trimming or case folding, so variants of a
        name are distinct partitions.
        """
        self.require_password(supplied_hash)
        if not profile_id:
            raise ValidationFailure("Profile name is required")

        token = create_session_token()
        await self._store.create_session(token, profile_id)
        logger.info("Opened session for profile %r", profile_id)
        return token

    async def verify(self, token: str | None) -> str:
        """Return the profile bound to ``token``."""
        if not token:
            raise UnauthorizedError("Missing token")
        profile_id = await self._store.get_session_profile(token)
        if profile_id is None:
            raise UnauthorizedError("Invalid token")
        return profile_id

    async def revoke(self, token: str | None) -> None:
        """Delete the session. Revoking an unknown token is not an error."""
        if not token:
            raise UnauthorizedError("Missing token")
        await self._store.delete_session(token)
