"""Bid endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_auction_service.routers.validation import (
    get_engine,
    parse_json_body,
    query_int,
    query_str,
    resolve_caller,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Bids on a task
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids", status_code=201)
async def submit_bid(task_id: str, request: Request) -> JSONResponse:
    """Submit a bid on an open task."""
    caller_id = await resolve_caller(request)
    data = parse_json_body(await request.body())
    result = await get_engine().submit_bid(caller_id, task_id, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/bids")
async def list_bids_for_task(task_id: str, request: Request) -> dict[str, Any]:
    """List bids on a task (poster only)."""
    caller_id = await resolve_caller(request)
    return await get_engine().list_bids_for_task(
        caller_id,
        task_id,
        status=query_str(request, "status"),
        sort=query_str(request, "sort"),
        page=query_int(request, "page", 1) or 1,
        limit=query_int(request, "limit", None),
    )


@router.get("/tasks/{task_id}/bids/stats")
async def get_bid_stats(task_id: str, request: Request) -> dict[str, Any]:
    """Bid statistics for a task (poster only)."""
    caller_id = await resolve_caller(request)
    return await get_engine().get_bid_stats(caller_id, task_id)


@router.post("/tasks/{task_id}/bids/{bid_id}/accept")
async def accept_bid(task_id: str, bid_id: str, request: Request) -> dict[str, Any]:
    """Accept a bid, assigning the task and rejecting the other pending bids."""
    caller_id = await resolve_caller(request)
    return await get_engine().accept_bid(caller_id, task_id, bid_id)


# ---------------------------------------------------------------------------
# Bids of the caller (MUST be before GET /bids/{bid_id})
# ---------------------------------------------------------------------------


@router.get("/bids")
async def list_user_bids(request: Request) -> dict[str, Any]:
    """List the caller's bids (type=mine) or bids on the caller's tasks (type=received)."""
    caller_id = await resolve_caller(request)
    return await get_engine().list_bids_for_user(
        caller_id,
        query_str(request, "type") or "mine",
        status=query_str(request, "status"),
        sort=query_str(request, "sort"),
        page=query_int(request, "page", 1) or 1,
        limit=query_int(request, "limit", None),
    )


@router.get("/bids/analytics")
async def get_bid_analytics(request: Request) -> dict[str, Any]:
    """The caller's bidding performance over the last ``days`` days (default 30)."""
    caller_id = await resolve_caller(request)
    return await get_engine().get_bid_analytics(caller_id, query_int(request, "days", None))


# ---------------------------------------------------------------------------
# Single bid
# ---------------------------------------------------------------------------


@router.get("/bids/{bid_id}")
async def get_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Get a bid (bidder or task poster)."""
    caller_id = await resolve_caller(request)
    return await get_engine().get_bid(caller_id, bid_id)


@router.patch("/bids/{bid_id}")
async def edit_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Edit a pending bid."""
    caller_id = await resolve_caller(request)
    data = parse_json_body(await request.body())
    return await get_engine().edit_bid(caller_id, bid_id, data)


@router.delete("/bids/{bid_id}")
async def delete_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Delete a rejected or withdrawn bid."""
    caller_id = await resolve_caller(request)
    return await get_engine().delete_bid(caller_id, bid_id)


@router.post("/bids/{bid_id}/withdraw")
async def withdraw_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Withdraw a pending bid."""
    caller_id = await resolve_caller(request)
    return await get_engine().withdraw_bid(caller_id, bid_id)


@router.post("/bids/{bid_id}/reject")
async def reject_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Reject a pending bid on one of the caller's tasks."""
    caller_id = await resolve_caller(request)
    return await get_engine().reject_bid(caller_id, bid_id)


@router.post("/bids/{bid_id}/highlight")
async def highlight_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Toggle the highlight flag on a pending bid."""
    caller_id = await resolve_caller(request)
    return await get_engine().highlight_bid(caller_id, bid_id)
