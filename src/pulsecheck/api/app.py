"""FastAPI application with lifespan, router mounting and domain error mapping."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pulsecheck.api.dependencies import Services, build_services
from pulsecheck.api.routes import admin, coach, escalations, health
from pulsecheck.core.config import AppSettings
from pulsecheck.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateConditionError,
    InvalidStateError,
    NotFoundError,
    PulseCheckError,
    ValidationError,
)
from pulsecheck.core.logging import configure_logging

logger = structlog.get_logger(__name__)

_STATUS_CODES: list[tuple[type[PulseCheckError], int, str]] = [
    (ValidationError, 422, "The request could not be processed."),
    (NotFoundError, 404, "The requested resource was not found."),
    (InvalidStateError, 409, "This action is no longer available."),
    (DuplicateConditionError, 409, "An active condition already exists for this tier and category."),
    (ConcurrencyConflictError, 409, "The resource changed, please retry."),
]


async def pulsecheck_error_handler(request: Request, exc: PulseCheckError) -> JSONResponse:
    status, message = 500, "Something went wrong."
    for exc_type, code, text in _STATUS_CODES:
        if isinstance(exc, exc_type):
            status, message = code, text
            break
    log = logger.warning if status < 500 else logger.error
    log("API_DOMAIN_ERROR", path=request.url.path, error_code=exc.code, status=status, detail=str(exc))
    body: dict = {"error": exc.code, "message": message}
    if isinstance(exc, ValidationError) and exc.errors:
        body["fields"] = [".".join(str(p) for p in e.get("loc", ())) for e in exc.errors]
    return JSONResponse(status_code=status, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize and tear down application resources."""
    if getattr(app.state, "services", None) is None:
        settings = AppSettings()
        configure_logging(settings)
        app.state.services = build_services(settings)
    logger.info("PULSECHECK_API_STARTED", backend=app.state.services.settings.backend)
    yield
    app.state.services.shutdown()


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing ``services`` skips settings-based wiring (tests, embedding).
    """
    app = FastAPI(
        title="PulseCheck Escalation Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(PulseCheckError, pulsecheck_error_handler)
    app.include_router(health.router)
    app.include_router(escalations.router)
    app.include_router(coach.router, prefix="/coach")
    app.include_router(admin.router, prefix="/admin")
    return app
