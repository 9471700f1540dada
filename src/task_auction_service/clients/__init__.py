"""HTTP clients for the identity provider and the event webhook."""

from task_auction_service.clients.identity_client import IdentityClient
from task_auction_service.clients.webhook_client import WebhookClient

__all__ = ["IdentityClient", "WebhookClient"]
