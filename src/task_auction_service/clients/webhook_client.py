"""Async HTTP client that posts domain events to a webhook."""

from __future__ import annotations

from typing import Any

import httpx

from task_auction_service.logging import get_logger


class WebhookDeliveryError(Exception):
    """Raised when the webhook cannot be reached or rejects an event."""


class WebhookClient:
    """Posts ``{"event": ..., "data": ...}`` bodies to a single webhook URL."""

    def __init__(self, url: str, timeout_seconds: int) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def post_event(self, event_name: str, payload: dict[str, Any]) -> None:
        """
        Deliver one event.

        Raises:
            WebhookDeliveryError: on connection errors or a non-2xx response
        """
        logger = get_logger(__name__)
        try:
            response = await self._client.post(
                self._url,
                json={"event": event_name, "data": payload},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Webhook connection failed",
                extra={"error": str(exc), "event": event_name},
            )
            msg = f"Webhook delivery of {event_name} failed"
            raise WebhookDeliveryError(msg) from exc

        if response.status_code >= 300:
            msg = f"Webhook rejected {event_name} with status {response.status_code}"
            raise WebhookDeliveryError(msg)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
