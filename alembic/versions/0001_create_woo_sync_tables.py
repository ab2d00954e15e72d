"""create woo sync tables

Revision ID: 0001_create_woo_sync_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

revision = "0001_create_woo_sync_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _id() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True)


def upgrade() -> None:
    # Local catalog
    op.create_table(
        "products",
        _id(),
        sa.Column("woo_product_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("sku", sa.String(120), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False, server_default="simple"),
        sa.Column("status", sa.String(32), nullable=False, server_default="publish"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("short_description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(18, 4), nullable=True),
        sa.Column("regular_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("sale_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("manage_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(32), nullable=True),
        sa.Column("categories", sa.JSON(), nullable=True),
        sa.Column("images", sa.JSON(), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=True),
        sa.Column("woo_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_products_sku", "products", ["sku"])
    op.create_index("ix_products_updated_at", "products", ["updated_at"])

    op.create_table(
        "product_variants",
        _id(),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("woo_variation_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("sku", sa.String(120), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="publish"),
        sa.Column("price", sa.Numeric(18, 4), nullable=True),
        sa.Column("regular_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("sale_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("manage_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(32), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=True),
        sa.Column("image", sa.JSON(), nullable=True),
        sa.Column("woo_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])
    op.create_index("ix_product_variants_sku", "product_variants", ["sku"])

    op.create_table(
        "customers",
        _id(),
        sa.Column("woo_customer_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("billing", sa.JSON(), nullable=True),
        sa.Column("shipping", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("woo_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_customers_email", "customers", ["email"])
    op.create_index("ix_customers_updated_at", "customers", ["updated_at"])

    op.create_table(
        "sales",
        _id(),
        sa.Column("woo_order_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("woo_customer_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="IRR"),
        sa.Column("total", sa.Numeric(18, 4), nullable=True),
        sa.Column("line_items", sa.JSON(), nullable=True),
        sa.Column("billing", sa.JSON(), nullable=True),
        sa.Column("shipping", sa.JSON(), nullable=True),
        sa.Column("payment_method", sa.String(80), nullable=True),
        sa.Column("date_created_remote", sa.String(40), nullable=True),
        sa.Column("woo_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sales_customer_id", "sales", ["customer_id"])
    op.create_index("ix_sales_updated_at", "sales", ["updated_at"])

    # Sync engine
    op.create_table(
        "woo_outbox",
        _id(),
        sa.Column("site_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("remote_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(16), nullable=False, server_default="upsert"),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("idempotency_key", sa.String(191), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="8"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_woo_outbox_status_available", "woo_outbox", ["status", "available_at"])
    op.create_index("ix_woo_outbox_entity", "woo_outbox", ["entity_type", "entity_id"])

    op.create_table(
        "woo_webhook_events",
        _id(),
        sa.Column("site_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("topic", sa.String(80), nullable=True),
        sa.Column("resource", sa.String(40), nullable=True),
        sa.Column("event", sa.String(40), nullable=True),
        sa.Column("resource_id", sa.Integer(), nullable=True),
        sa.Column("webhook_id", sa.String(40), nullable=True),
        sa.Column("delivery_id", sa.String(80), nullable=True),
        sa.Column("signature_ok", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("raw_body", sa.Text(), nullable=True),
        sa.Column("headers", sa.JSON(), nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_woo_webhook_events_status", "woo_webhook_events", ["status", "received_at"])
    op.create_index("ix_woo_webhook_events_resource", "woo_webhook_events", ["resource", "resource_id"])

    op.create_table(
        "woo_sync_state",
        _id(),
        sa.Column("site_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("sync_key", sa.String(64), nullable=False),
        sa.Column("cursor", sa.JSON(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_report", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("site_id", "sync_key", name="uq_woo_sync_state_site_key"),
    )

    op.create_table(
        "woo_reconcile_reports",
        _id(),
        sa.Column("site_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("strategy", sa.String(20), nullable=False),
        sa.Column("repair", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("summary", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_woo_reconcile_reports_site_created",
        "woo_reconcile_reports",
        ["site_id", "created_at"],
    )

    op.create_table(
        "jobs_queue",
        _id(),
        sa.Column("queue", sa.String(64), nullable=False, server_default="default"),
        sa.Column("job", sa.String(120), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_jobs_queue_ready", "jobs_queue", ["queue", "status", "available_at"])
    op.create_index("ix_jobs_queue_reserved", "jobs_queue", ["status", "reserved_at"])


def downgrade() -> None:
    op.drop_index("ix_jobs_queue_reserved", table_name="jobs_queue")
    op.drop_index("ix_jobs_queue_ready", table_name="jobs_queue")
    op.drop_table("jobs_queue")
    op.drop_index("ix_woo_reconcile_reports_site_created", table_name="woo_reconcile_reports")
    op.drop_table("woo_reconcile_reports")
    op.drop_table("woo_sync_state")
    op.drop_index("ix_woo_webhook_events_resource", table_name="woo_webhook_events")
    op.drop_index("ix_woo_webhook_events_status", table_name="woo_webhook_events")
    op.drop_table("woo_webhook_events")
    op.drop_index("ix_woo_outbox_entity", table_name="woo_outbox")
    op.drop_index("ix_woo_outbox_status_available", table_name="woo_outbox")
    op.drop_table("woo_outbox")
    op.drop_index("ix_sales_updated_at", table_name="sales")
    op.drop_index("ix_sales_customer_id", table_name="sales")
    op.drop_table("sales")
    op.drop_index("ix_customers_updated_at", table_name="customers")
    op.drop_index("ix_customers_email", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_product_variants_sku", table_name="product_variants")
    op.drop_index("ix_product_variants_product_id", table_name="product_variants")
    op.drop_table("product_variants")
    op.drop_index("ix_products_updated_at", table_name="products")
    op.drop_index("ix_products_sku", table_name="products")
    op.drop_table("products")
