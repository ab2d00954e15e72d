from app.models.catalog import Customer, Product, ProductVariant, Sale  # noqa: F401
from app.models.job import Job  # noqa: F401
from app.models.woo_outbox import WooOutbox  # noqa: F401
from app.models.woo_reconcile_report import WooReconcileReport  # noqa: F401
from app.models.woo_sync_state import WooSyncState  # noqa: F401
from app.models.woo_webhook_event import WooWebhookEvent  # noqa: F401
