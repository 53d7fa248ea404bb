"""Application-level exception types.

Convention:
- Services raise the domain errors below; the global handlers in
  ``backend/main.py`` translate each into an HTTP status and an
  ``{"error": ...}`` body.  Routers never build error responses by hand.
- ``StorageFault`` — the backing database failed.  Aborts the current request
  with 503 so clients treat it as transient and retry on their next trigger.
"""

from __future__ import annotations


class UnauthorizedError(Exception):
    """Missing, unknown or revoked token, or a wrong password hash."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)
        self.message = message


class RateLimitedError(Exception):
    """Too many attempts from one client address."""

    def __init__(self, retry_after: int, message: str = "Too many attempts") -> None:
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


class ValidationFailure(ValueError):
    """Request is well-formed JSON but semantically invalid."""


class NotFoundError(Exception):
    """Record does not exist, is tombstoned, or belongs to another profile."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class StorageFault(Exception):
    """The backing store failed while serving a request."""
