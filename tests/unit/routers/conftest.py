"""Router test fixtures with a mocked identity provider."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_auction_service.app import create_app
from task_auction_service.config import clear_settings_cache
from task_auction_service.core.exceptions import auction_error
from task_auction_service.core.lifespan import lifespan
from task_auction_service.core.state import get_app_state, reset_app_state
from tests.helpers import BIDDER_ID, POSTER_ID, auth, bid_payload, task_payload

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


def _token_to_user(token: str) -> str:
    """Tokens look like ``token-<user_id>``; anything else is rejected."""
    if not token.startswith("token-"):
        raise auction_error("FORBIDDEN")
    return token.removeprefix("token-")


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and a mocked identity provider."""
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "task-auction"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: null
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_path: "/tokens/verify"
  timeout_seconds: 10
events:
  webhook_url: null
  timeout_seconds: 5
request:
  max_body_size: 4096
auction:
  budget_min: 50
  budget_max: 2000
  max_deadline_days: 365
  bid_edit_window_days: 7
  default_page_size: 10
  max_page_size: 50
limits:
  max_pending_bids_per_user: 20
  window_seconds: 3600
  max_tasks_per_window: 10
  max_bids_per_window: 30
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Mock identity client: "token-<user>" verifies as <user>
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=_token_to_user)
        state.identity_client = mock_identity

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the identity mock to behave like an unreachable provider."""
    state = get_app_state()
    state.identity_client.verify_token = AsyncMock(
        side_effect=auction_error("IDENTITY_SERVICE_UNAVAILABLE")
    )


@pytest.fixture
def failing_publisher(_app: Any) -> AsyncMock:
    """Replace the event publisher with one that always fails."""
    state = get_app_state()
    mock_publisher = AsyncMock()
    mock_publisher.publish = AsyncMock(side_effect=RuntimeError("webhook down"))
    state.auction_engine._publisher = mock_publisher
    return mock_publisher


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    poster_id: str = POSTER_ID,
    **overrides: Any,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    now = overrides.pop("now", datetime.now(UTC))
    return await client.post("/tasks", json=task_payload(now, **overrides), headers=auth(poster_id))


async def submit_bid(
    client: AsyncClient,
    task_id: str,
    bidder_id: str = BIDDER_ID,
    **overrides: Any,
) -> Any:
    """Submit a bid via POST /tasks/{task_id}/bids and return the response."""
    return await client.post(
        f"/tasks/{task_id}/bids",
        json=bid_payload(**overrides),
        headers=auth(bidder_id),
    )


async def accept_bid(
    client: AsyncClient,
    task_id: str,
    bid_id: str,
    poster_id: str = POSTER_ID,
) -> Any:
    """Accept a bid via POST /tasks/{task_id}/bids/{bid_id}/accept."""
    return await client.post(f"/tasks/{task_id}/bids/{bid_id}/accept", headers=auth(poster_id))


async def setup_assigned_task(
    client: AsyncClient,
    poster_id: str = POSTER_ID,
    bidder_id: str = BIDDER_ID,
) -> tuple[str, str]:
    """Create a task and accept one bid on it.

    Returns (task_id, bid_id).
    """
    task_id = (await create_task(client, poster_id)).json()["task_id"]
    bid_id = (await submit_bid(client, task_id, bidder_id)).json()["bid_id"]
    await accept_bid(client, task_id, bid_id, poster_id)
    return task_id, bid_id


async def setup_task_in_progress(
    client: AsyncClient,
    poster_id: str = POSTER_ID,
    bidder_id: str = BIDDER_ID,
) -> tuple[str, str]:
    """Create a task, accept a bid and start it.

    Returns (task_id, bid_id).
    """
    task_id, bid_id = await setup_assigned_task(client, poster_id, bidder_id)
    await client.post(f"/tasks/{task_id}/start", headers=auth(bidder_id))
    return task_id, bid_id
