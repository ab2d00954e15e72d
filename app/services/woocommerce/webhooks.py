"""Inbound WooCommerce webhooks: ingestion and event processing.

Deliveries are verified, stored once per payload hash and handed to the
job queue in the same transaction. ``WebhookEventProcessor`` later maps
each stored event into a local upsert, re-fetching the resource when the
delivered payload is thin.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.logging import mask_secrets
from app.metrics import WEBHOOK_EVENTS
from app.models.job import STATUS_PENDING as JOB_PENDING, STATUS_RESERVED as JOB_RESERVED, Job
from app.models.woo_webhook_event import (
    STATUS_DEAD,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    WooWebhookEvent,
)
from app.schemas.woocommerce import JOB_PROCESS_WEBHOOK
from app.services.job_queue import JobQueue
from app.services.woocommerce import mapper
from app.services.woocommerce.client import WooClient
from app.services.woocommerce.errors import DeadLetteredError, EventBusyError, SyncValidationError
from app.services.woocommerce.upserter import LocalUpserter
from app.services.woocommerce.webhook_verifier import WebhookVerifier

logger = logging.getLogger(__name__)

_SNAPSHOT_HEADERS = ("user-agent", "content-type", "content-length")


def _now() -> datetime:
    return datetime.now(UTC)


# ============ Ingestion ============


@dataclass(frozen=True)
class IngestResult:
    http_status: int
    message: str
    event_id: int | None = None
    duplicate: bool = False


def _header_snapshot(headers: Mapping[str, str]) -> dict[str, str]:
    snapshot = {}
    for key, value in headers.items():
        lowered = str(key).lower()
        if lowered.startswith("x-wc-") or lowered in _SNAPSHOT_HEADERS:
            snapshot[lowered] = str(value)
    return mask_secrets(snapshot)


def _is_ping(raw_body: bytes, topic: str | None) -> bool:
    return not topic and raw_body.strip().startswith(b"webhook_id=")


def _push_processing(queue: JobQueue, event_id: int, config: Settings, *, commit: bool) -> int:
    return queue.push(
        JOB_PROCESS_WEBHOOK,
        {"event_id": event_id},
        queue=config.woo_webhook_queue,
        max_attempts=config.woo_webhook_max_attempts,
        commit=commit,
    )


def _has_live_job(db: Session, event_id: int, config: Settings) -> bool:
    payloads = (
        db.query(Job.payload)
        .filter(Job.job == JOB_PROCESS_WEBHOOK)
        .filter(Job.queue == config.woo_webhook_queue)
        .filter(Job.status.in_([JOB_PENDING, JOB_RESERVED]))
        .all()
    )
    return any((payload or {}).get("event_id") == event_id for (payload,) in payloads)


def ingest_webhook(
    db: Session,
    raw_body: bytes,
    headers: Mapping[str, str],
    client_ip: str | None = None,
    *,
    verifier: WebhookVerifier | None = None,
    queue: JobQueue | None = None,
    config: Settings | None = None,
) -> IngestResult:
    config = config or default_settings
    verifier = verifier or WebhookVerifier(config)
    queue = queue or JobQueue(db, config)

    verification = verifier.verify(raw_body, headers, client_ip)
    if not verification.ok:
        WEBHOOK_EVENTS.labels(outcome="rejected").inc()
        return IngestResult(verification.http_status, verification.message)

    meta = verifier.extract_meta(headers, client_ip)
    if _is_ping(raw_body, meta.topic):
        WEBHOOK_EVENTS.labels(outcome="ping").inc()
        logger.info("woo_webhook_ping webhook_id=%s", meta.webhook_id)
        return IngestResult(200, "pong")

    existing = (
        db.query(WooWebhookEvent.id, WooWebhookEvent.status)
        .filter(WooWebhookEvent.payload_hash == verification.payload_hash)
        .first()
    )
    if existing:
        event_id, status = existing
        if status == STATUS_PENDING and not _has_live_job(db, event_id, config):
            _push_processing(queue, event_id, config, commit=True)
            logger.warning("woo_webhook_requeued event_id=%s delivery_id=%s", event_id, meta.delivery_id)
        WEBHOOK_EVENTS.labels(outcome="duplicate").inc()
        logger.info("woo_webhook_duplicate event_id=%s delivery_id=%s", event_id, meta.delivery_id)
        return IngestResult(200, "duplicate ignored", event_id=event_id, duplicate=True)

    raw_text = raw_body.decode("utf-8", errors="replace")
    try:
        payload = json.loads(raw_text) if raw_text.strip() else {}
        if not isinstance(payload, dict):
            raise ValueError("payload is not a JSON object")
        parse_error = None
    except ValueError as exc:
        payload = None
        parse_error = f"Invalid JSON payload: {exc}"

    event = WooWebhookEvent(
        site_id=config.woo_site_id,
        topic=meta.topic,
        resource=meta.resource,
        event=meta.event,
        resource_id=mapper.int_or_none((payload or {}).get("id")),
        webhook_id=meta.webhook_id,
        delivery_id=meta.delivery_id,
        signature_ok=verifier.signature_valid(raw_body, meta.signature),
        payload=payload,
        raw_body=raw_text,
        headers=_header_snapshot(headers),
        payload_hash=verification.payload_hash,
        ip=client_ip,
        user_agent=(meta.user_agent or "")[:255] or None,
        status=STATUS_DEAD if parse_error else STATUS_PENDING,
        last_error=parse_error,
        received_at=_now(),
    )
    db.add(event)
    try:
        db.flush()
        if not parse_error:
            _push_processing(queue, event.id, config, commit=False)
        db.commit()
    except IntegrityError:
        db.rollback()
        WEBHOOK_EVENTS.labels(outcome="duplicate").inc()
        return IngestResult(200, "duplicate ignored", duplicate=True)
    except Exception:
        db.rollback()
        raise

    if parse_error:
        WEBHOOK_EVENTS.labels(outcome="invalid_json").inc()
        logger.warning("woo_webhook_invalid_json event_id=%s topic=%s", event.id, meta.topic)
        return IngestResult(400, "Invalid JSON payload", event_id=event.id)

    WEBHOOK_EVENTS.labels(outcome="stored").inc()
    logger.info(
        "woo_webhook_stored event_id=%s topic=%s resource_id=%s",
        event.id,
        meta.topic,
        event.resource_id,
    )
    return IngestResult(200, "accepted", event_id=event.id)


# ============ Processing ============


@dataclass
class ProcessResult:
    event_id: int
    status: str
    entity_type: str | None = None
    remote_id: int | None = None
    entity_id: int | None = None
    fetched: bool = False
    action: str | None = None


def is_incomplete(entity_type: str | None, payload: dict[str, Any] | None) -> bool:
    """True when the delivered payload is too thin to upsert from."""
    if not payload:
        return True
    if "id" in payload and len(payload) <= 3:
        return True
    if entity_type == mapper.ENTITY_ORDER and not isinstance(payload.get("line_items"), list):
        return True
    if entity_type == mapper.ENTITY_PRODUCT and not payload.get("name"):
        return True
    if entity_type == mapper.ENTITY_CUSTOMER and not payload.get("email"):
        return True
    return False


class WebhookEventProcessor:
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

    def _claim(self, event_id: int) -> WooWebhookEvent | None:
        now = _now()
        lease_cutoff = now - timedelta(seconds=self.settings.woo_webhook_lease_seconds)
        event = (
            self.db.query(WooWebhookEvent)
            .filter(WooWebhookEvent.id == event_id)
            .filter(
                or_(
                    WooWebhookEvent.status.in_([STATUS_PENDING, STATUS_FAILED]),
                    (WooWebhookEvent.status == STATUS_PROCESSING) & (WooWebhookEvent.locked_at <= lease_cutoff),
                )
            )
            .with_for_update(skip_locked=True)
            .first()
        )
        if event is None:
            self.db.commit()
            return None
        event.status = STATUS_PROCESSING
        event.attempts = (event.attempts or 0) + 1
        event.locked_at = now
        event.last_error = None
        self.db.commit()
        return event

    def process(self, event_id: int, force_fetch: bool = False) -> ProcessResult:
        event = self._claim(event_id)
        if event is None:
            current = self.db.get(WooWebhookEvent, event_id)
            if current is None:
                raise SyncValidationError(f"Webhook event {event_id} not found")
            if current.status == STATUS_PROCESSING:
                raise EventBusyError(f"Webhook event {event_id} is being processed by another worker")
            logger.info("woo_webhook_event_skipped event_id=%s status=%s", event_id, current.status)
            return ProcessResult(event_id=event_id, status=current.status)

        try:
            result = self._handle(event, force_fetch)
        except Exception as exc:
            self.db.rollback()
            status = self._mark_failed(event_id, exc)
            if status == STATUS_DEAD:
                raise DeadLetteredError(f"Webhook event {event_id} dead after repeated failures: {exc}") from exc
            raise

        event.status = STATUS_PROCESSED
        event.processed_at = _now()
        event.locked_at = None
        event.last_error = None
        self.db.commit()
        WEBHOOK_EVENTS.labels(outcome="processed").inc()
        logger.info(
            "woo_webhook_processed event_id=%s topic=%s action=%s fetched=%s",
            event_id,
            event.topic,
            result.action,
            result.fetched,
        )
        return result

    def _mark_failed(self, event_id: int, exc: Exception) -> str:
        event = self.db.get(WooWebhookEvent, event_id)
        event.last_error = str(exc)[:2000]
        event.locked_at = None
        if event.attempts >= self.settings.woo_webhook_max_attempts:
            event.status = STATUS_DEAD
        else:
            event.status = STATUS_FAILED
        self.db.commit()
        WEBHOOK_EVENTS.labels(outcome=event.status).inc()
        logger.warning(
            "woo_webhook_failed event_id=%s attempts=%s status=%s error=%s",
            event_id,
            event.attempts,
            event.status,
            event.last_error,
        )
        return event.status

    def _handle(self, event: WooWebhookEvent, force_fetch: bool) -> ProcessResult:
        entity_type = mapper.entity_type_for(event.topic, event.resource)
        payload = dict(event.payload or {})
        remote_id = mapper.int_or_none(payload.get("id")) or event.resource_id
        result = ProcessResult(event_id=event.id, status=STATUS_PROCESSED, entity_type=entity_type, remote_id=remote_id)

        if entity_type not in (mapper.ENTITY_PRODUCT, mapper.ENTITY_ORDER, mapper.ENTITY_CUSTOMER):
            logger.warning(
                "woo_webhook_unknown_topic event_id=%s topic=%s resource=%s",
                event.id,
                event.topic,
                event.resource,
            )
            result.action = "ignored"
            return result

        if (event.topic or "").lower().endswith(".deleted") or (event.event or "").lower() == "deleted":
            if not remote_id:
                raise SyncValidationError("Delete event without resource id")
            deleted = self.upserter.mark_deleted(entity_type, remote_id)
            result.action = "deleted" if deleted else "ignored"
            result.entity_id = deleted.entity_id if deleted else None
            return result

        if force_fetch or is_incomplete(entity_type, payload):
            if not remote_id:
                raise SyncValidationError(f"Incomplete {entity_type} payload without id")
            payload = self._fetch(entity_type, remote_id)
            result.fetched = True

        variations = None
        if entity_type == mapper.ENTITY_PRODUCT and payload.get("type") == "variable" and remote_id:
            variations = self.client.get_product_variations(remote_id)

        upserted = self.upserter.apply_remote(entity_type, payload, client=self.client, variations=variations)
        result.entity_id = upserted.entity_id
        result.action = "created" if upserted.created else ("updated" if upserted.changed else "unchanged")
        return result

    def _fetch(self, entity_type: str, remote_id: int) -> dict[str, Any]:
        if entity_type == mapper.ENTITY_PRODUCT:
            return self.client.get_product(remote_id)
        if entity_type == mapper.ENTITY_ORDER:
            return self.client.get_order(remote_id)
        return self.client.get_customer(remote_id)
