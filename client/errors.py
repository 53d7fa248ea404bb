"""Client-side sync errors, mirroring the server's error taxonomy."""

from __future__ import annotations


class SyncClientError(Exception):
    """Base class for errors talking to the sync backend."""


class InvalidPasswordError(SyncClientError):
    """Backend rejected the password hash (401 from an auth endpoint)."""


class AuthExpiredError(SyncClientError):
    """Session token is missing, unknown or revoked (401 from a session endpoint)."""


class RateLimitedError(SyncClientError):
    """Backend answered 429. Back off for ``retry_after`` seconds."""

    def __init__(self, message: str, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SyncRequestError(SyncClientError):
    """Transient failure: unreachable host, timeout, 5xx, or an unexpected response.

    Local state is kept and the next natural trigger retries.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
