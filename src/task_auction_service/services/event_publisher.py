"""Notification channel for committed task and bid changes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from task_auction_service.logging import get_logger

if TYPE_CHECKING:
    from task_auction_service.clients.webhook_client import WebhookClient

TASK_UPDATED = "task.updated"
BID_UPDATED = "bid.updated"
BID_DELETED = "bid.deleted"
TASK_DELETED = "task.deleted"


class EventPublisher(Protocol):
    """Receives events after the transaction that produced them has committed."""

    async def publish(self, event_name: str, payload: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class LoggingEventPublisher:
    """Writes every event to the service log."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        self._logger.info(
            "Event published",
            extra={
                "event": event_name,
                "task_id": payload.get("task_id"),
                "bid_id": payload.get("bid_id"),
            },
        )

    async def close(self) -> None:
        return None


class WebhookEventPublisher:
    """Forwards every event to a webhook."""

    def __init__(self, client: WebhookClient) -> None:
        self._client = client

    async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        await self._client.post_event(event_name, payload)

    async def close(self) -> None:
        await self._client.close()
