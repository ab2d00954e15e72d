"""WooCommerce two-way sync: outbox publishing, webhooks, imports and reconciliation."""

from app.services.woocommerce.client import WooClient
from app.services.woocommerce.errors import (
    ConfigurationError,
    RemoteNotFound,
    RemoteRejection,
    SyncValidationError,
    TransientRemoteError,
    WooSyncError,
)
from app.services.woocommerce.importer import ResumableImporter
from app.services.woocommerce.outbox import OutboxPublisher
from app.services.woocommerce.reconciler import Reconciler
from app.services.woocommerce.webhook_verifier import WebhookVerifier
from app.services.woocommerce.webhooks import WebhookEventProcessor, ingest_webhook

__all__ = [
    "WooClient",
    "WooSyncError",
    "TransientRemoteError",
    "RemoteRejection",
    "RemoteNotFound",
    "ConfigurationError",
    "SyncValidationError",
    "ResumableImporter",
    "OutboxPublisher",
    "Reconciler",
    "WebhookVerifier",
    "WebhookEventProcessor",
    "ingest_webhook",
]
