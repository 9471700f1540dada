"""Shared request validation helpers for the auction routers."""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Any

from task_auction_service.core.exceptions import ServiceError
from task_auction_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from task_auction_service.services.auction_engine import AuctionEngine


def _reject_constant(name: str) -> Any:
    msg = f"{name} is not valid JSON"
    raise ValueError(msg)


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """
    Parse JSON body, raising ServiceError on failure.

    NaN and Infinity literals are refused like any other malformed body.
    """
    try:
        data = json.loads(raw_body, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the bearer token from an Authorization header."""
    if authorization is None:
        raise ServiceError(
            "UNAUTHORIZED",
            "Missing Authorization header",
            401,
            {},
        )

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ServiceError(
            "UNAUTHORIZED",
            "Bearer token must not be empty",
            401,
            {},
        )

    return token


async def resolve_caller(request: Request) -> str:
    """Verify the request's bearer token and return the caller's user id."""
    token = extract_bearer_token(request.headers.get("authorization"))
    state = get_app_state()
    if state.identity_client is None:
        msg = "IdentityClient not initialized"
        raise RuntimeError(msg)
    return await state.identity_client.verify_token(token)


def get_engine() -> AuctionEngine:
    """Return the running AuctionEngine."""
    state = get_app_state()
    if state.auction_engine is None:
        msg = "AuctionEngine not initialized"
        raise RuntimeError(msg)
    return state.auction_engine


def query_int(request: Request, name: str, default: int | None) -> int | None:
    """Read an integer query parameter."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ServiceError(
            "INVALID_PAYLOAD", f"{name} must be an integer", 400, {"field": name}
        ) from exc


def query_float(request: Request, name: str) -> float | None:
    """Read a numeric query parameter."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ServiceError(
            "INVALID_PAYLOAD", f"{name} must be a number", 400, {"field": name}
        ) from exc
    if not math.isfinite(value):
        raise ServiceError(
            "INVALID_PAYLOAD", f"{name} must be a finite number", 400, {"field": name}
        )
    return value


def query_str(request: Request, name: str) -> str | None:
    """Read a string query parameter; empty values count as absent."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    return raw


def query_bool(request: Request, name: str) -> bool:
    """Read a boolean flag query parameter; absent means False."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return False
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ServiceError(
        "INVALID_PAYLOAD", f"{name} must be true or false", 400, {"field": name}
    )
