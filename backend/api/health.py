"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.api.deps import get_store
from backend.exceptions import StorageFault
from backend.services.record_store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: str


@router.get("/api/health", response_model=HealthResponse)
@router.get("/health", response_model=HealthResponse, include_in_schema=False)
async def health_check(
    store: Annotated[RecordStore, Depends(get_store)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    try:
        await store.ping()
    except StorageFault:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    return HealthResponse(status="ok", database=db_status)
