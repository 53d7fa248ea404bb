"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.api.auth import router as auth_router
from backend.api.health import router as health_router
from backend.api.profiles import router as profiles_router
from backend.api.sync import router as sync_router
from backend.api.timers import router as timers_router
from backend.config import Settings
from backend.database import create_engine
from backend.exceptions import (
    NotFoundError,
    RateLimitedError,
    StorageFault,
    UnauthorizedError,
    ValidationFailure,
)
from backend.models.base import Base
from backend.services.auth_service import SessionAuthority
from backend.services.rate_limit_service import BucketLimit, TokenBucketRateLimiter
from backend.services.record_store import RecordStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


async def init_storage(app: FastAPI) -> None:
    """Create the engine, schema, record store and session authority on ``app.state``."""
    settings: Settings = app.state.settings

    if not settings.uses_remote_database:
        settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = RecordStore(session_factory)
    app.state.record_store = store
    app.state.session_authority = SessionAuthority(store, settings.sync_password)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    logger.info("Starting intervals-sync (debug=%s)", settings.debug)
    settings.log_security_posture()

    try:
        await init_storage(app)
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    yield

    try:
        await app.state.engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("intervals-sync stopped")


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="intervals-sync",
        description="Multi-device sync backend for interval timers",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.rate_limiter = TokenBucketRateLimiter(
        {
            "auth": BucketLimit(
                capacity=settings.auth_rate_limit_capacity,
                refill_per_second=settings.auth_rate_limit_refill_per_second,
            )
        }
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        max_age=300,
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(profiles_router)
    app.include_router(sync_router)
    app.include_router(timers_router)

    # Global exception handlers: domain errors -> {"error": ...} responses

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = ".".join(str(part) for part in loc[1:]) if len(loc) > 1 else "body"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "fields": errors},
        )

    @app.exception_handler(ValidationFailure)
    async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
        logger.warning("ValidationFailure in %s %s: %s", request.method, request.url.path, exc)
        return _error(400, str(exc) or "Invalid request")

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
        logger.info("Unauthorized %s %s: %s", request.method, request.url.path, exc.message)
        return _error(401, exc.message, headers={"WWW-Authenticate": "Bearer"})

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
        logger.warning("Rate limited %s %s", request.method, request.url.path)
        return _error(429, exc.message, headers={"Retry-After": str(exc.retry_after)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, f"{exc.kind} not found")

    @app.exception_handler(StorageFault)
    async def storage_fault_handler(request: Request, exc: StorageFault) -> JSONResponse:
        logger.error(
            "StorageFault in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error(503, "Storage temporarily unavailable")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
