"""Typed service failures and the handlers that render them as JSON."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_auction_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = ["ERROR_CATALOG", "ServiceError", "auction_error", "register_exception_handlers"]


class ServiceError(Exception):
    """A business or infrastructure failure with a stable error code."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any],
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body for this error."""
        return {"error": self.error, "message": self.message, "details": self.details}


# Stable human-readable message and HTTP status per failure kind.
ERROR_CATALOG: dict[str, tuple[str, int]] = {
    "INVALID_JSON": ("Request body is not valid JSON", 400),
    "INVALID_PAYLOAD": ("Request payload is invalid", 400),
    "INVALID_BUDGET": (
        "Budget must satisfy min <= max and lie within the allowed range",
        400,
    ),
    "INVALID_DEADLINE": ("Deadline must be a valid future timestamp within the horizon", 400),
    "AMOUNT_OUT_OF_RANGE": ("Bid amount must fall within the task budget", 400),
    "SELF_BID": ("You cannot bid on your own task", 400),
    "UNAUTHORIZED": ("A valid bearer token is required", 401),
    "FORBIDDEN": ("Token verification failed", 403),
    "NOT_OWNER": ("Only the owner may perform this action", 403),
    "NOT_ASSIGNEE": ("Only the assigned bidder may perform this action", 403),
    "NOT_AUTHORIZED": ("You are not authorized to perform this action", 403),
    "TASK_NOT_FOUND": ("Task not found", 404),
    "BID_NOT_FOUND": ("Bid not found", 404),
    "TASK_NOT_OPEN": ("This task is no longer accepting bids", 409),
    "TASK_EXPIRED": ("The task deadline has passed", 409),
    "TASK_NOT_ASSIGNED": ("Only assigned tasks can be started", 409),
    "TASK_NOT_IN_PROGRESS": ("Only in-progress tasks can be marked as completed", 409),
    "TASK_NOT_CLOSABLE": ("Only open or completed tasks can be closed", 409),
    "TASK_NOT_EDITABLE": ("Task cannot be edited after receiving bids", 409),
    "TASK_NOT_DELETABLE": ("Cannot delete a task with bids or after assignment", 409),
    "BID_NOT_PENDING": ("Only pending bids can be changed", 409),
    "BID_NOT_EDITABLE": ("Bid cannot be edited after its edit window or a status change", 409),
    "BID_NOT_DELETABLE": ("Only withdrawn or rejected bids can be deleted", 409),
    "DUPLICATE_BID": ("You have already placed a bid on this task", 409),
    "RATE_LIMITED": ("Too many requests, try again later", 429),
    "IDENTITY_SERVICE_UNAVAILABLE": ("Cannot connect to the identity provider", 502),
    "REPOSITORY_UNAVAILABLE": ("Storage is temporarily unavailable", 503),
}


def auction_error(code: str, details: dict[str, Any] | None = None) -> ServiceError:
    """Build a ServiceError for a catalogued code."""
    message, status_code = ERROR_CATALOG[code]
    return ServiceError(code, message, status_code, details if details is not None else {})


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from the router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(
        StarletteHTTPException, cast("ExceptionHandler", http_exception_handler)
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
