"""Async HTTP client for the identity provider."""

from __future__ import annotations

from typing import Any

import httpx

from task_auction_service.core.exceptions import ServiceError, auction_error
from task_auction_service.logging import get_logger


class IdentityClient:
    """
    Resolves bearer tokens to user ids.

    Verification is delegated to the identity provider via POST to the
    configured verify path; this service never inspects token contents.
    """

    def __init__(
        self,
        base_url: str,
        verify_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_path = verify_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def verify_token(self, token: str) -> str:
        """
        Verify a bearer token with the identity provider.

        Returns:
            The user_id the token belongs to.

        Raises:
            ServiceError: FORBIDDEN (403) if the provider says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(self._verify_path, json={"token": token})
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise auction_error("IDENTITY_SERVICE_UNAVAILABLE") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise auction_error("IDENTITY_SERVICE_UNAVAILABLE") from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise auction_error("IDENTITY_SERVICE_UNAVAILABLE")

        try:
            result: dict[str, Any] = response.json()
        except ValueError as exc:
            raise auction_error("IDENTITY_SERVICE_UNAVAILABLE") from exc

        if not result.get("valid", False):
            raise auction_error("FORBIDDEN")

        user_id = result.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service response is missing user_id",
                502,
                {},
            )
        return user_id

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
