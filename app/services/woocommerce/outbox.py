"""Durable outbox for mutations pushed to WooCommerce.

Rows are claimed in one transaction (locking read, then status=sending and
locked_at=now, then commit) so concurrent publishers never share a row.
A create links the returned remote id back to the local entity; later
pushes for the same entity become updates. Content-addressed keys only
collapse onto rows that are still in flight.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.metrics import OUTBOX_ITEMS
from app.models.catalog import Product, ProductVariant
from app.models.woo_outbox import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    ACTION_UPSERT,
    STATUS_DEAD,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENDING,
    STATUS_SENT,
    WooOutbox,
)
from app.services.woocommerce import mapper
from app.services.woocommerce.client import WooClient
from app.services.woocommerce.errors import SyncValidationError
from app.services.woocommerce.upserter import LocalUpserter
from app.telemetry import get_tracer

logger = logging.getLogger(__name__)

BACKOFF_SECONDS = (10, 30, 120, 600, 1800, 3600, 7200, 14400)

_ACTIONS = frozenset({ACTION_UPSERT, ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE})
_IN_FLIGHT = (STATUS_PENDING, STATUS_SENDING, STATUS_FAILED)
_COLLECTIONS = {
    mapper.ENTITY_PRODUCT: "products",
    mapper.ENTITY_CUSTOMER: "customers",
    mapper.ENTITY_ORDER: "orders",
}
_ERROR_LIMIT = 10


def _now() -> datetime:
    return datetime.now(UTC)


def compute_backoff_seconds(attempts: int) -> int:
    """Delay after the given attempt count, capped at the last table entry."""
    index = min(max(attempts, 1), len(BACKOFF_SECONDS)) - 1
    return BACKOFF_SECONDS[index]


def default_idempotency_key(entity_type: str, entity_id: int, action: str, payload: dict) -> str:
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"{entity_type}:{entity_id}:{action}:{digest[:16]}"


@dataclass
class PublishReport:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    dead: int = 0
    errors: list[dict] = field(default_factory=list)

    def add_error(self, outbox_id: int, error: str) -> None:
        if len(self.errors) < _ERROR_LIMIT:
            self.errors.append({"id": outbox_id, "error": error})

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "dead": self.dead,
            "errors": self.errors,
        }


class OutboxPublisher:
    def __init__(
        self,
        db: Session,
        client: WooClient | None = None,
        config: Settings | None = None,
    ):
        self.db = db
        self.settings = config or default_settings
        self.client = client or WooClient.from_settings(self.settings)
        self.upserter = LocalUpserter(db, self.settings)

    # ============ Enqueue ============

    def enqueue(
        self,
        entity_type: str,
        entity_id: int,
        payload: dict | None,
        remote_id_hint: int | None = None,
        *,
        action: str = ACTION_UPSERT,
        idempotency_key: str | None = None,
        site_id: int | None = None,
        max_attempts: int | None = None,
    ) -> int:
        if not entity_type or entity_type not in (*_COLLECTIONS, mapper.ENTITY_VARIANT):
            raise SyncValidationError(f"Unsupported entity type {entity_type!r}")
        if not entity_id:
            raise SyncValidationError("entity_id is required")
        if action not in _ACTIONS:
            raise SyncValidationError(f"Unsupported outbox action {action!r}")
        if not payload and action != ACTION_DELETE:
            raise SyncValidationError("payload must not be empty")
        payload = dict(payload or {})

        key = (idempotency_key or "").strip()
        if key:
            existing = self.db.query(WooOutbox).filter(WooOutbox.idempotency_key == key).first()
            if existing:
                return existing.id
        else:
            key, in_flight_id = self._content_key(entity_type, entity_id, action, payload)
            if in_flight_id:
                return in_flight_id

        record = WooOutbox(
            site_id=site_id or self.settings.woo_site_id,
            entity_type=entity_type,
            entity_id=int(entity_id),
            remote_id=int(remote_id_hint) if remote_id_hint else None,
            action=action,
            payload=payload,
            idempotency_key=key,
            status=STATUS_PENDING,
            attempts=0,
            max_attempts=max_attempts or self.settings.woo_outbox_max_attempts,
            available_at=_now(),
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.db.query(WooOutbox).filter(WooOutbox.idempotency_key == key).first()
            if existing:
                return existing.id
            raise
        logger.info(
            "woo_outbox_enqueued id=%s entity=%s:%s action=%s",
            record.id,
            entity_type,
            entity_id,
            action,
        )
        return record.id

    def _content_key(self, entity_type: str, entity_id: int, action: str, payload: dict) -> tuple[str, int | None]:
        """Key for a content-addressed enqueue.

        Identical content collapses onto a row that is still in flight. Once
        every earlier row for the content is sent or dead, the same content
        is a new mutation and gets the next generation suffix.
        """
        base = default_idempotency_key(entity_type, entity_id, action, payload)
        generations = (
            self.db.query(WooOutbox)
            .filter(
                or_(
                    WooOutbox.idempotency_key == base,
                    WooOutbox.idempotency_key.startswith(f"{base}#", autoescape=True),
                )
            )
            .all()
        )
        for row in generations:
            if row.status in _IN_FLIGHT:
                return row.idempotency_key, row.id
        if not generations:
            return base, None
        return f"{base}#{len(generations) + 1}", None

    def enqueue_product(self, product: Product, *, idempotency_key: str | None = None) -> int:
        return self.enqueue(
            mapper.ENTITY_PRODUCT,
            product.id,
            mapper.map_local_to_remote_update(mapper.ENTITY_PRODUCT, product),
            product.woo_product_id,
            idempotency_key=idempotency_key,
        )

    def enqueue_variant(self, variant: ProductVariant, *, idempotency_key: str | None = None) -> int:
        return self.enqueue(
            mapper.ENTITY_VARIANT,
            variant.id,
            mapper.map_local_to_remote_update(mapper.ENTITY_VARIANT, variant),
            variant.woo_variation_id,
            idempotency_key=idempotency_key,
        )

    def enqueue_customer(self, customer, *, idempotency_key: str | None = None) -> int:
        return self.enqueue(
            mapper.ENTITY_CUSTOMER,
            customer.id,
            mapper.map_local_to_remote_update(mapper.ENTITY_CUSTOMER, customer),
            customer.woo_customer_id,
            idempotency_key=idempotency_key,
        )

    def enqueue_entity(self, entity_type: str, entity, *, idempotency_key: str | None = None) -> int:
        if entity_type == mapper.ENTITY_PRODUCT:
            return self.enqueue_product(entity, idempotency_key=idempotency_key)
        if entity_type == mapper.ENTITY_VARIANT:
            return self.enqueue_variant(entity, idempotency_key=idempotency_key)
        if entity_type == mapper.ENTITY_CUSTOMER:
            return self.enqueue_customer(entity, idempotency_key=idempotency_key)
        if entity_type == mapper.ENTITY_ORDER:
            return self.enqueue(
                mapper.ENTITY_ORDER,
                entity.id,
                mapper.map_local_to_remote_update(mapper.ENTITY_ORDER, entity),
                entity.woo_order_id,
                action=ACTION_UPDATE,
                idempotency_key=idempotency_key,
            )
        raise SyncValidationError(f"Unsupported entity type {entity_type!r}")

    # ============ Claim ============

    def claim_batch(self, batch_size: int, lease_seconds: int) -> list[WooOutbox]:
        """Atomically move up to batch_size due rows to ``sending``."""
        now = _now()
        lease_cutoff = now - timedelta(seconds=max(lease_seconds, 1))

        released = (
            self.db.query(WooOutbox)
            .filter(WooOutbox.status == STATUS_SENDING)
            .filter(WooOutbox.locked_at <= lease_cutoff)
            .update(
                {"status": STATUS_PENDING, "locked_at": None, "updated_at": now},
                synchronize_session=False,
            )
        )
        if released:
            logger.warning("woo_outbox_leases_expired count=%s", released)

        rows = (
            self.db.query(WooOutbox)
            .filter(WooOutbox.status.in_([STATUS_PENDING, STATUS_FAILED]))
            .filter(WooOutbox.available_at <= now)
            .filter(or_(WooOutbox.locked_at.is_(None), WooOutbox.locked_at <= lease_cutoff))
            .order_by(WooOutbox.id.asc())
            .limit(max(batch_size, 1))
            .with_for_update(skip_locked=True)
            .all()
        )
        for row in rows:
            row.status = STATUS_SENDING
            row.locked_at = now
        self.db.commit()
        return rows

    # ============ Publish ============

    def publish_pending(self, batch_size: int | None = None, lease_seconds: int | None = None) -> PublishReport:
        self.client.assert_ready()
        batch_size = batch_size or self.settings.woo_outbox_batch_size
        lease_seconds = lease_seconds or self.settings.woo_outbox_lease_seconds
        report = PublishReport()

        with get_tracer().start_as_current_span("woo.outbox.publish") as span:
            claimed_ids = [row.id for row in self.claim_batch(batch_size, lease_seconds)]
            span.set_attribute("woo.outbox.claimed", len(claimed_ids))
            for outbox_id in claimed_ids:
                report.processed += 1
                self._publish_one(outbox_id, report)

        logger.info(
            "woo_outbox_publish_done processed=%s sent=%s failed=%s dead=%s",
            report.processed,
            report.sent,
            report.failed,
            report.dead,
        )
        return report

    def _publish_one(self, outbox_id: int, report: PublishReport) -> None:
        record = self.db.get(WooOutbox, outbox_id)
        if record is None:
            return
        try:
            remote_id = self._dispatch(record)
        except Exception as exc:
            self.db.rollback()
            status = self._mark_failed(outbox_id, exc)
            report.add_error(outbox_id, str(exc))
            if status == STATUS_DEAD:
                report.dead += 1
            else:
                report.failed += 1
            return

        record.status = STATUS_SENT
        record.sent_at = _now()
        record.locked_at = None
        record.last_error = None
        if remote_id:
            record.remote_id = remote_id
        self.db.commit()
        OUTBOX_ITEMS.labels(status=STATUS_SENT).inc()
        report.sent += 1
        logger.info("woo_outbox_sent id=%s remote_id=%s", outbox_id, remote_id)

    def _mark_failed(self, outbox_id: int, exc: Exception) -> str:
        record = self.db.get(WooOutbox, outbox_id)
        record.attempts = (record.attempts or 0) + 1
        record.last_error = str(exc)[:2000]
        record.locked_at = None
        if record.attempts >= record.max_attempts:
            record.status = STATUS_DEAD
            logger.error(
                "woo_outbox_dead id=%s attempts=%s error=%s",
                outbox_id,
                record.attempts,
                record.last_error,
            )
        else:
            record.status = STATUS_FAILED
            delay = compute_backoff_seconds(record.attempts)
            record.available_at = _now() + timedelta(seconds=delay)
            logger.warning(
                "woo_outbox_failed id=%s attempts=%s retry_in=%s error=%s",
                outbox_id,
                record.attempts,
                delay,
                record.last_error,
            )
        self.db.commit()
        OUTBOX_ITEMS.labels(status=record.status).inc()
        return record.status

    def _resolve_remote_id(self, record: WooOutbox) -> int | None:
        if record.remote_id:
            return record.remote_id
        return self.upserter.remote_id_of(record.entity_type, record.entity_id)

    def _collection_path(self, record: WooOutbox) -> str:
        if record.entity_type != mapper.ENTITY_VARIANT:
            return _COLLECTIONS[record.entity_type]
        variant = self.db.get(ProductVariant, record.entity_id)
        if variant is None:
            raise SyncValidationError(f"Local variant {record.entity_id} not found")
        product = self.db.get(Product, variant.product_id)
        if product is None or not product.woo_product_id:
            raise SyncValidationError(f"Parent product of variant {record.entity_id} is not linked to Woo")
        return f"products/{product.woo_product_id}/variations"

    def _dispatch(self, record: WooOutbox) -> int | None:
        collection = self._collection_path(record)
        remote_id = self._resolve_remote_id(record)
        action = record.action

        if action == ACTION_DELETE:
            if not remote_id:
                raise SyncValidationError("delete requires a remote id")
            self.client.delete(f"{collection}/{remote_id}", query={"force": "true"})
            return remote_id

        if action == ACTION_UPDATE or (action == ACTION_UPSERT and remote_id):
            if not remote_id:
                raise SyncValidationError("update requires a remote id")
            self.client.put(f"{collection}/{remote_id}", body=record.payload)
            return remote_id

        response = self.client.post(collection, body=record.payload)
        created_id = mapper.int_or_none((response or {}).get("id")) if isinstance(response, dict) else None
        if not created_id:
            raise SyncValidationError(f"Woo create for {record.entity_type} returned no id")

        # The remote resource exists now; a retry must update it, never create again.
        record.remote_id = created_id
        self.db.commit()

        try:
            linked = self.upserter.link_remote_id(record.entity_type, record.entity_id, created_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(
                "woo_outbox_link_back_failed id=%s entity=%s:%s remote_id=%s error=%s",
                record.id,
                record.entity_type,
                record.entity_id,
                created_id,
                exc,
            )
            return created_id
        if linked is None:
            logger.warning(
                "woo_outbox_link_missing id=%s entity=%s:%s remote_id=%s",
                record.id,
                record.entity_type,
                record.entity_id,
                created_id,
            )
        return created_id

    # ============ Admin ============

    def summary(self, site_id: int | None = None) -> dict[str, int]:
        query = self.db.query(WooOutbox.status, func.count(WooOutbox.id))
        if site_id is not None:
            query = query.filter(WooOutbox.site_id == site_id)
        counts = dict.fromkeys((STATUS_PENDING, STATUS_SENDING, STATUS_SENT, STATUS_FAILED, STATUS_DEAD), 0)
        for status, count in query.group_by(WooOutbox.status).all():
            counts[status] = count
        return counts
