"""Job handlers for the WooCommerce sync engine.

Handlers are registered per job kind; ``run_job`` resolves the kind from
``payload["handler"]`` (falling back to the job name), validates the payload
into its typed variant and calls the handler.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.schemas.woocommerce import (
    JOB_IMPORT,
    JOB_OUTBOX_PUSH,
    JOB_PROCESS_WEBHOOK,
    JOB_RECONCILE,
    ImportJob,
    OutboxPushJob,
    ProcessWebhookJob,
    ReconcileJob,
    ReconcileRequest,
    parse_job,
)
from app.services.woocommerce.client import WooClient
from app.services.woocommerce.errors import InvalidJobPayloadError, UnknownJobError
from app.services.woocommerce.importer import ResumableImporter
from app.services.woocommerce.outbox import OutboxPublisher
from app.services.woocommerce.reconciler import Reconciler
from app.services.woocommerce.webhooks import WebhookEventProcessor

logger = logging.getLogger(__name__)

JobHandler = Callable[[Session, Any, Settings, WooClient], dict]

_HANDLERS: dict[str, JobHandler] = {}


def register(kind: str):
    def decorator(func: JobHandler) -> JobHandler:
        _HANDLERS[kind] = func
        return func

    return decorator


def registered_kinds() -> list[str]:
    return sorted(_HANDLERS)


def resolve_kind(job_name: str, payload: dict[str, Any] | None) -> str:
    handler = (payload or {}).get("handler")
    return str(handler) if handler else job_name


@register(JOB_OUTBOX_PUSH)
def handle_outbox_push(db: Session, job: OutboxPushJob, config: Settings, client: WooClient) -> dict:
    publisher = OutboxPublisher(db, client, config)
    return publisher.publish_pending(batch_size=job.batch_size, lease_seconds=job.lease_seconds).to_dict()


@register(JOB_PROCESS_WEBHOOK)
def handle_process_webhook(db: Session, job: ProcessWebhookJob, config: Settings, client: WooClient) -> dict:
    result = WebhookEventProcessor(db, client, config).process(job.event_id, force_fetch=job.force_fetch)
    return {
        "event_id": result.event_id,
        "status": result.status,
        "entity_type": result.entity_type,
        "entity_id": result.entity_id,
        "action": result.action,
        "fetched": result.fetched,
    }


@register(JOB_IMPORT)
def handle_import(db: Session, job: ImportJob, config: Settings, client: WooClient) -> dict:
    importer = ResumableImporter(db, client, config)
    report = importer.run(
        job.resource,
        site_id=job.site_id,
        page=job.page,
        per_page=job.per_page,
        since=job.since,
        status=job.status,
        max_pages=job.max_pages,
        enqueue_next=job.enqueue_next,
        dry_run=job.dry_run,
    )
    return report.to_dict()


@register(JOB_RECONCILE)
def handle_reconcile(db: Session, job: ReconcileJob, config: Settings, client: WooClient) -> dict:
    request = ReconcileRequest.model_validate(job.model_dump(exclude={"kind"}))
    report = Reconciler(db, client, config).run(request)
    return {"report_id": report.id, **{k: report.summary.get(k) for k in ("checked", "fixed", "skipped", "errors")}}


def run_job(
    db: Session,
    job_name: str,
    payload: dict[str, Any] | None,
    *,
    config: Settings | None = None,
    client: WooClient | None = None,
) -> dict:
    config = config or default_settings
    kind = resolve_kind(job_name, payload)
    handler = _HANDLERS.get(kind)
    if handler is None:
        raise UnknownJobError(f"No handler registered for job {kind!r}")
    try:
        job = parse_job(kind, payload)
    except ValidationError as exc:
        raise InvalidJobPayloadError(f"Invalid payload for job {kind!r}: {exc.errors()}") from exc

    owns_client = client is None
    client = client or WooClient.from_settings(config)
    try:
        result = handler(db, job, config, client)
    finally:
        if owns_client:
            client.close()
    logger.info("woo_job_handled kind=%s", kind)
    return result
