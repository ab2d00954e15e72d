"""Tests for webhook ingestion and event processing."""

import json
import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from app.models.catalog import Customer, Product, Sale
from app.models.job import Job
from app.models.woo_webhook_event import (
    STATUS_DEAD,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    WooWebhookEvent,
)
from app.services.job_queue import JobQueue
from app.services.woocommerce.errors import (
    DeadLetteredError,
    EventBusyError,
    SyncValidationError,
    TransientRemoteError,
)
from app.services.woocommerce.webhook_verifier import compute_signature
from app.services.woocommerce.webhooks import WebhookEventProcessor, ingest_webhook, is_incomplete

PRODUCT = {
    "id": 77,
    "name": "Ceramic Mug",
    "type": "simple",
    "status": "publish",
    "sku": "MUG-77",
    "regular_price": "12.50",
    "price": "12.50",
    "manage_stock": True,
    "stock_quantity": 5,
}


def _signed(body: bytes, topic: str | None = "product.updated", secret: str = "whsec_test") -> dict:
    headers = {
        "X-WC-Webhook-Signature": compute_signature(body, secret),
        "X-WC-Webhook-ID": "12",
        "X-WC-Webhook-Delivery-ID": uuid.uuid4().hex,
        "User-Agent": "WooCommerce/8.0 Hookshot",
        "Content-Type": "application/json",
    }
    if topic:
        resource, _, event = topic.partition(".")
        headers["X-WC-Webhook-Topic"] = topic
        headers["X-WC-Webhook-Resource"] = resource
        headers["X-WC-Webhook-Event"] = event
    return headers


def _event(db_session, topic: str, payload: dict | None, **fields) -> WooWebhookEvent:
    resource, _, action = topic.partition(".")
    event = WooWebhookEvent(
        topic=topic,
        resource=resource,
        event=action,
        resource_id=(payload or {}).get("id"),
        payload=payload,
        payload_hash=uuid.uuid4().hex,
        status=fields.pop("status", STATUS_PENDING),
        **fields,
    )
    db_session.add(event)
    db_session.commit()
    return event


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class TestIngest:
    def test_valid_delivery_is_stored_and_queued(self, db_session, woo_settings):
        body = json.dumps(PRODUCT).encode()
        result = ingest_webhook(db_session, body, _signed(body), "10.0.0.5", config=woo_settings)

        assert result.http_status == 200
        assert result.message == "accepted"
        event = db_session.get(WooWebhookEvent, result.event_id)
        assert event.status == STATUS_PENDING
        assert event.signature_ok is True
        assert event.resource_id == 77
        assert event.topic == "product.updated"
        assert event.ip == "10.0.0.5"
        assert event.headers["x-wc-webhook-signature"] == "***"

        job = db_session.query(Job).one()
        assert job.job == "woo.process_webhook"
        assert job.queue == woo_settings.woo_webhook_queue
        assert job.payload == {"event_id": event.id}
        assert job.max_attempts == woo_settings.woo_webhook_max_attempts

    def test_duplicate_body_is_ignored(self, db_session, woo_settings):
        body = json.dumps(PRODUCT).encode()
        first = ingest_webhook(db_session, body, _signed(body), config=woo_settings)
        second = ingest_webhook(db_session, body, _signed(body), config=woo_settings)

        assert second.http_status == 200
        assert second.duplicate is True
        assert second.event_id == first.event_id
        assert db_session.query(WooWebhookEvent).count() == 1
        assert db_session.query(Job).count() == 1

    def test_failed_enqueue_stores_nothing(self, db_session, woo_settings, monkeypatch):
        body = json.dumps(PRODUCT).encode()
        original_push = JobQueue.push
        calls = []

        def flaky_push(self, *args, **kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise RuntimeError("connection dropped")
            return original_push(self, *args, **kwargs)

        monkeypatch.setattr(JobQueue, "push", flaky_push)

        with pytest.raises(RuntimeError):
            ingest_webhook(db_session, body, _signed(body), config=woo_settings)
        assert db_session.query(WooWebhookEvent).count() == 0

        result = ingest_webhook(db_session, body, _signed(body), config=woo_settings)

        assert result.message == "accepted"
        assert db_session.query(WooWebhookEvent).count() == 1
        assert db_session.query(Job).one().payload == {"event_id": result.event_id}

    def test_redelivery_requeues_pending_event_without_job(self, db_session, woo_settings):
        body = json.dumps(PRODUCT).encode()
        first = ingest_webhook(db_session, body, _signed(body), config=woo_settings)
        db_session.query(Job).delete()
        db_session.commit()

        second = ingest_webhook(db_session, body, _signed(body), config=woo_settings)

        assert second.duplicate is True
        assert second.event_id == first.event_id
        job = db_session.query(Job).one()
        assert job.payload == {"event_id": first.event_id}
        assert job.queue == woo_settings.woo_webhook_queue

    def test_invalid_json_is_dead_lettered(self, db_session, woo_settings):
        body = b"{not json"
        result = ingest_webhook(db_session, body, _signed(body), config=woo_settings)

        assert result.http_status == 400
        event = db_session.get(WooWebhookEvent, result.event_id)
        assert event.status == STATUS_DEAD
        assert event.last_error.startswith("Invalid JSON payload")
        assert event.raw_body == "{not json"
        assert db_session.query(Job).count() == 0

    def test_ping_returns_pong(self, db_session, woo_settings):
        body = b"webhook_id=12"
        result = ingest_webhook(db_session, body, _signed(body, topic=None), config=woo_settings)

        assert (result.http_status, result.message) == (200, "pong")
        assert db_session.query(WooWebhookEvent).count() == 0

    def test_bad_signature_is_rejected(self, db_session, woo_settings):
        body = json.dumps(PRODUCT).encode()
        headers = _signed(body, secret="other-secret")
        result = ingest_webhook(db_session, body, headers, config=woo_settings)

        assert result.http_status == 401
        assert db_session.query(WooWebhookEvent).count() == 0


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@pytest.fixture()
def processor(db_session, woo_client, woo_settings):
    return WebhookEventProcessor(db_session, woo_client, woo_settings)


class TestIsIncomplete:
    def test_thin_payloads(self):
        assert is_incomplete("product", None)
        assert is_incomplete("product", {"id": 1})
        assert is_incomplete("order", {"id": 1, "status": "processing", "total": "10", "currency": "IRR"})
        assert is_incomplete("customer", {"id": 1, "first_name": "A", "last_name": "B", "username": "ab"})

    def test_full_payloads(self):
        assert not is_incomplete("product", PRODUCT)
        assert not is_incomplete(
            "order", {"id": 1, "status": "processing", "total": "10", "line_items": []}
        )


class TestProcess:
    def test_full_payload_creates_product(self, processor, db_session, woo_client):
        event = _event(db_session, "product.created", PRODUCT)

        result = processor.process(event.id)

        assert result.action == "created"
        assert result.fetched is False
        woo_client.get_product.assert_not_called()
        product = db_session.query(Product).filter(Product.woo_product_id == 77).one()
        assert product.sku == "MUG-77"
        assert product.stock_quantity == 5
        db_session.refresh(event)
        assert event.status == STATUS_PROCESSED
        assert event.attempts == 1
        assert event.processed_at is not None

    def test_thin_payload_is_fetched(self, processor, db_session, woo_client):
        woo_client.get_product.return_value = PRODUCT
        event = _event(db_session, "product.updated", {"id": 77})

        result = processor.process(event.id)

        assert result.fetched is True
        woo_client.get_product.assert_called_once_with(77)
        assert db_session.query(Product).filter(Product.woo_product_id == 77).count() == 1

    def test_variable_product_pulls_variations(self, processor, db_session, woo_client):
        woo_client.get_product_variations.return_value = [
            {
                "id": 501,
                "sku": "MUG-77-RED",
                "regular_price": "13",
                "attributes": [{"name": "Color", "option": "Red"}],
            }
        ]
        event = _event(db_session, "product.updated", {**PRODUCT, "type": "variable"})

        processor.process(event.id)

        woo_client.get_product_variations.assert_called_once_with(77)
        product = db_session.query(Product).filter(Product.woo_product_id == 77).one()
        assert product.type == "variable"

    def test_order_links_guest_customer(self, processor, db_session):
        order = {
            "id": 9001,
            "status": "processing",
            "total": "150000.00",
            "customer_id": 0,
            "billing": {"email": "guest@example.com", "first_name": "Ali", "last_name": "R"},
            "line_items": [{"product_id": 77, "quantity": 1}],
        }
        event = _event(db_session, "order.created", order)

        processor.process(event.id)

        sale = db_session.query(Sale).filter(Sale.woo_order_id == 9001).one()
        assert sale.currency == "IRR"
        customer = db_session.get(Customer, sale.customer_id)
        assert customer.email == "guest@example.com"
        assert customer.status == "guest"

    def test_deleted_topic_marks_local_row(self, processor, db_session, woo_client):
        db_session.add(Product(name="Old Mug", woo_product_id=77, status="publish"))
        db_session.commit()
        event = _event(db_session, "product.deleted", {"id": 77})

        result = processor.process(event.id)

        assert result.action == "deleted"
        woo_client.get_product.assert_not_called()
        product = db_session.query(Product).filter(Product.woo_product_id == 77).one()
        assert product.status == "trash"

    def test_unknown_topic_is_ignored(self, processor, db_session):
        event = _event(db_session, "coupon.created", {"id": 3, "code": "SALE"})
        result = processor.process(event.id)
        assert result.action == "ignored"
        db_session.refresh(event)
        assert event.status == STATUS_PROCESSED

    def test_processed_event_is_skipped(self, processor, db_session, woo_client):
        event = _event(db_session, "product.updated", PRODUCT, status=STATUS_PROCESSED)
        result = processor.process(event.id)
        assert result.status == STATUS_PROCESSED
        woo_client.get_product.assert_not_called()

    def test_missing_event(self, processor):
        with pytest.raises(SyncValidationError):
            processor.process(424242)

    def test_live_lease_is_busy(self, processor, db_session):
        event = _event(
            db_session,
            "product.updated",
            PRODUCT,
            status=STATUS_PROCESSING,
            locked_at=datetime.now(UTC),
        )
        with pytest.raises(EventBusyError):
            processor.process(event.id)

    def test_stale_lease_is_reclaimed(self, processor, db_session):
        event = _event(
            db_session,
            "product.updated",
            PRODUCT,
            status=STATUS_PROCESSING,
            locked_at=datetime.now(UTC) - timedelta(hours=1),
        )
        result = processor.process(event.id)
        assert result.status == STATUS_PROCESSED

    def test_failure_then_dead_letter(self, db_session, woo_client, woo_settings):
        processor = WebhookEventProcessor(db_session, woo_client, replace(woo_settings, woo_webhook_max_attempts=2))
        woo_client.get_product.side_effect = TransientRemoteError("Woo HTTP 502")
        event = _event(db_session, "product.updated", {"id": 77})

        with pytest.raises(TransientRemoteError):
            processor.process(event.id)
        db_session.refresh(event)
        assert event.status == STATUS_FAILED
        assert event.locked_at is None
        assert "502" in event.last_error

        with pytest.raises(DeadLetteredError):
            processor.process(event.id)
        db_session.refresh(event)
        assert event.status == STATUS_DEAD
        assert event.attempts == 2

    def test_force_fetch(self, processor, db_session, woo_client):
        woo_client.get_product.return_value = {**PRODUCT, "name": "Fresh Mug"}
        event = _event(db_session, "product.updated", PRODUCT)

        result = processor.process(event.id, force_fetch=True)

        assert result.fetched is True
        assert db_session.query(Product).filter(Product.woo_product_id == 77).one().name == "Fresh Mug"
