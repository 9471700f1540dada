"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_auction_service.routers.validation import (
    get_engine,
    parse_json_body,
    query_bool,
    query_float,
    query_int,
    query_str,
    resolve_caller,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new open task."""
    caller_id = await resolve_caller(request)
    data = parse_json_body(await request.body())
    result = await get_engine().create_task(caller_id, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with filters, sorting and pagination."""
    return await get_engine().list_tasks(
        status=query_str(request, "status"),
        category=query_str(request, "category"),
        search=query_str(request, "search"),
        location=query_str(request, "location"),
        min_budget=query_float(request, "min_budget"),
        max_budget=query_float(request, "max_budget"),
        deadline=query_str(request, "deadline"),
        exclude_expired=query_bool(request, "exclude_expired"),
        poster_id=query_str(request, "poster_id"),
        assigned_to=query_str(request, "assigned_to"),
        sort=query_str(request, "sort"),
        page=query_int(request, "page", 1) or 1,
        limit=query_int(request, "limit", None),
    )


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a task with its pending-bid summary."""
    return await get_engine().get_task(task_id)


@router.patch("/tasks/{task_id}")
async def update_task(task_id: str, request: Request) -> dict[str, Any]:
    """Edit an open task that has no bids yet."""
    caller_id = await resolve_caller(request)
    data = parse_json_body(await request.body())
    return await get_engine().update_task(caller_id, task_id, data)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Delete an open task that has no bids."""
    caller_id = await resolve_caller(request)
    return await get_engine().delete_task(caller_id, task_id)


# ---------------------------------------------------------------------------
# Lifecycle actions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/start")
async def start_task(task_id: str, request: Request) -> dict[str, Any]:
    """Start work on an assigned task."""
    caller_id = await resolve_caller(request)
    return await get_engine().start_task(caller_id, task_id)


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Mark an in-progress task completed, with an optional rating and review."""
    caller_id = await resolve_caller(request)
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)
    return await get_engine().complete_task(caller_id, task_id, data)


@router.post("/tasks/{task_id}/close")
async def close_task(task_id: str, request: Request) -> dict[str, Any]:
    """Close an open or completed task."""
    caller_id = await resolve_caller(request)
    return await get_engine().close_task(caller_id, task_id)
