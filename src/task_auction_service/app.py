"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from task_auction_service.config import get_settings
from task_auction_service.core.exceptions import register_exception_handlers
from task_auction_service.core.lifespan import lifespan
from task_auction_service.core.middleware import RequestValidationMiddleware
from task_auction_service.routers import bids, health, tasks
from task_auction_service.schemas import ErrorResponse

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 429, 502, 503)
}


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(tasks.router, tags=["Tasks"], responses=_ERROR_RESPONSES)
    app.include_router(bids.router, tags=["Bids"], responses=_ERROR_RESPONSES)

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
