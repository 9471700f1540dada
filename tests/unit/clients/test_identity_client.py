"""Error mapping tests for IdentityClient."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from task_auction_service.clients.identity_client import IdentityClient
from task_auction_service.core.exceptions import ServiceError


def _make_client(mock_response: httpx.Response | None = None, error: Exception | None = None):
    """Create an IdentityClient with a mock HTTP transport."""
    client = IdentityClient(
        base_url="http://mock-identity:8001",
        verify_path="/tokens/verify",
        timeout_seconds=5,
    )
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    if error is not None:
        mock_http.post = AsyncMock(side_effect=error)
    else:
        mock_http.post = AsyncMock(return_value=mock_response)
    client._client = mock_http
    return client, mock_http


def _mock_response(status_code: int, json_body: Any) -> httpx.Response:
    """Create a mock httpx.Response."""
    return httpx.Response(
        status_code=status_code,
        json=json_body,
        request=httpx.Request("POST", "http://mock-identity:8001/tokens/verify"),
    )


@pytest.mark.unit
async def test_verify_token_returns_user_id() -> None:
    client, mock_http = _make_client(_mock_response(200, {"valid": True, "user_id": "u-alice"}))

    assert await client.verify_token("abc") == "u-alice"
    mock_http.post.assert_awaited_once_with("/tokens/verify", json={"token": "abc"})


@pytest.mark.unit
async def test_invalid_token_raises_forbidden() -> None:
    client, _ = _make_client(_mock_response(200, {"valid": False, "reason": "expired"}))

    with pytest.raises(ServiceError) as exc_info:
        await client.verify_token("abc")

    assert exc_info.value.status_code == 403
    assert exc_info.value.error == "FORBIDDEN"


@pytest.mark.unit
async def test_missing_user_id_raises_bad_gateway() -> None:
    client, _ = _make_client(_mock_response(200, {"valid": True}))

    with pytest.raises(ServiceError) as exc_info:
        await client.verify_token("abc")

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"


@pytest.mark.unit
@pytest.mark.parametrize("status_code", [401, 404, 500, 503])
async def test_unexpected_status_raises_bad_gateway(status_code: int) -> None:
    client, _ = _make_client(_mock_response(status_code, {"error": "X"}))

    with pytest.raises(ServiceError) as exc_info:
        await client.verify_token("abc")

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"


@pytest.mark.unit
async def test_non_json_body_raises_bad_gateway() -> None:
    response = httpx.Response(
        status_code=200,
        content=b"<html>oops</html>",
        request=httpx.Request("POST", "http://mock-identity:8001/tokens/verify"),
    )
    client, _ = _make_client(response)

    with pytest.raises(ServiceError) as exc_info:
        await client.verify_token("abc")

    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"


@pytest.mark.unit
@pytest.mark.parametrize(
    "error",
    [
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        httpx.RemoteProtocolError("broken"),
    ],
)
async def test_transport_errors_raise_bad_gateway(error: Exception) -> None:
    client, _ = _make_client(error=error)

    with pytest.raises(ServiceError) as exc_info:
        await client.verify_token("abc")

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"


@pytest.mark.unit
async def test_close_closes_http_client() -> None:
    client, mock_http = _make_client(_mock_response(200, {}))
    await client.close()
    mock_http.aclose.assert_awaited_once()
