"""Resumable bulk importer for WooCommerce products, customers and orders.

The cursor ``{page, since, status}`` is persisted in the same commit as each
completed page, so a crash loses at most the page in flight. A page failure
freezes the cursor at that page and re-raises for the job queue to retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.metrics import IMPORT_PAGES
from app.models.catalog import Customer, Product, Sale
from app.schemas.woocommerce import JOB_IMPORT, ImportJob, job_payload
from app.services.job_queue import JobQueue
from app.services.woocommerce import mapper
from app.services.woocommerce.client import WooClient, clamp_per_page
from app.services.woocommerce.errors import ConfigurationError, SyncValidationError
from app.services.woocommerce.schema import table_available
from app.services.woocommerce.sync_state import SyncCursorStore, sync_key_for
from app.services.woocommerce.upserter import LocalUpserter
from app.telemetry import get_tracer

logger = logging.getLogger(__name__)

RESOURCES: dict[str, tuple[str, type]] = {
    "products": (mapper.ENTITY_PRODUCT, Product),
    "customers": (mapper.ENTITY_CUSTOMER, Customer),
    "orders": (mapper.ENTITY_ORDER, Sale),
}

REENQUEUE_DELAY_SECONDS = 1
REENQUEUE_MAX_ATTEMPTS = 5
_ERROR_LIMIT = 10


@dataclass
class ImportReport:
    resource: str
    site_id: int
    sync_key: str
    start_page: int = 1
    next_page: int = 1
    pages: int = 0
    items: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    complete: bool = False
    capped: bool = False
    dry_run: bool = False
    reenqueued_job_id: int | None = None
    error: str | None = None
    errors: list[dict] = field(default_factory=list)

    def add_error(self, remote_id: Any, message: str) -> None:
        if len(self.errors) < _ERROR_LIMIT:
            self.errors.append({"id": remote_id, "error": message})

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "site_id": self.site_id,
            "start_page": self.start_page,
            "next_page": self.next_page,
            "pages": self.pages,
            "items": self.items,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "complete": self.complete,
            "capped": self.capped,
            "dry_run": self.dry_run,
            "reenqueued_job_id": self.reenqueued_job_id,
            "error": self.error,
            "errors": self.errors,
        }


class ResumableImporter:
    def __init__(
        self,
        db: Session,
        client: WooClient | None = None,
        config: Settings | None = None,
        queue: JobQueue | None = None,
    ):
        self.db = db
        self.settings = config or default_settings
        self.client = client or WooClient.from_settings(self.settings)
        self.queue = queue or JobQueue(db, self.settings)
        self.upserter = LocalUpserter(db, self.settings)
        self.cursors = SyncCursorStore(db)

    def run(
        self,
        resource: str,
        *,
        site_id: int | None = None,
        page: int | None = None,
        per_page: int | None = None,
        since: str | None = None,
        status: str | None = None,
        max_pages: int | None = None,
        enqueue_next: bool = True,
        dry_run: bool = False,
    ) -> ImportReport:
        if resource not in RESOURCES:
            raise SyncValidationError(f"Unsupported import resource {resource!r}")

        entity_type, model = RESOURCES[resource]
        site_id = site_id or self.settings.woo_site_id
        sync_key = sync_key_for(resource)
        report = ImportReport(resource=resource, site_id=site_id, sync_key=sync_key, dry_run=dry_run)

        try:
            self.client.assert_ready()
        except ConfigurationError as exc:
            report.error = str(exc)
            self._persist_failure(site_id, sync_key, None, report)
            logger.error("woo_import_not_ready resource=%s error=%s", resource, exc)
            raise

        if not table_available(self.db, model.__tablename__):
            report.error = f"table {model.__tablename__} missing"
            self._persist_failure(site_id, sync_key, None, report)
            return report

        cursor = self.cursors.load_cursor(site_id, sync_key)
        current = int(page or cursor.get("page") or 1)
        since = since if since is not None else cursor.get("since")
        status = status if status is not None else cursor.get("status")
        per_page = clamp_per_page(per_page, self.settings.woo_per_page)
        page_cap = max(1, max_pages or self.settings.woo_import_max_pages_per_run)
        report.start_page = report.next_page = current

        logger.info(
            "woo_import_start resource=%s site_id=%s page=%s per_page=%s since=%s status=%s",
            resource,
            site_id,
            current,
            per_page,
            since,
            status,
        )

        with get_tracer().start_as_current_span("woo.import.run") as span:
            span.set_attribute("woo.import.resource", resource)
            while report.pages < page_cap:
                try:
                    items = self._fetch_page(resource, current, per_page, since, status)
                    if not items:
                        report.complete = True
                        if not dry_run:
                            self.cursors.save(
                                site_id,
                                sync_key,
                                {
                                    "page": current,
                                    "since": since,
                                    "status": status,
                                    "completed_at": datetime.now(UTC).isoformat(),
                                },
                                success=True,
                                report=report.to_dict(),
                            )
                            self.db.commit()
                        break

                    for item in items:
                        self._import_item(entity_type, item, report, dry_run)

                    current += 1
                    report.pages += 1
                    report.next_page = current
                    if dry_run:
                        self.db.rollback()
                    else:
                        self.cursors.save(
                            site_id,
                            sync_key,
                            {"page": current, "since": since, "status": status},
                            success=True,
                            report=report.to_dict(),
                        )
                        self.db.commit()
                    IMPORT_PAGES.labels(resource=resource).inc()
                except Exception as exc:
                    self.db.rollback()
                    report.error = str(exc)
                    self._persist_failure(site_id, sync_key, {"page": current, "since": since, "status": status}, report)
                    logger.error(
                        "woo_import_page_failed resource=%s page=%s error=%s",
                        resource,
                        current,
                        exc,
                    )
                    raise

        if not report.complete and report.pages >= page_cap:
            report.capped = True
            if enqueue_next and not dry_run:
                report.reenqueued_job_id = self._reenqueue(
                    resource, site_id, per_page, since, status, max_pages
                )

        logger.info(
            "woo_import_done resource=%s pages=%s items=%s created=%s updated=%s complete=%s next_page=%s",
            resource,
            report.pages,
            report.items,
            report.created,
            report.updated,
            report.complete,
            report.next_page,
        )
        return report

    def _fetch_page(
        self,
        resource: str,
        page: int,
        per_page: int,
        since: str | None,
        status: str | None,
    ) -> list[dict]:
        if resource == "orders":
            return self.client.list_orders(
                page,
                per_page,
                orderby="id",
                order="asc",
                status=status,
                modified_after=since,
            )
        if resource == "products":
            return self.client.list_products(
                page,
                per_page,
                orderby="id",
                order="asc",
                status=status,
                modified_after=since,
            )
        return self.client.list_customers(page, per_page, orderby="id", order="asc")

    def _import_item(self, entity_type: str, item: dict, report: ImportReport, dry_run: bool) -> None:
        report.items += 1
        remote_id = item.get("id")
        try:
            if dry_run:
                mapper.map_remote(entity_type, item, self.settings.woo_default_currency)
                report.unchanged += 1
                return
            variations = None
            if entity_type == mapper.ENTITY_PRODUCT and item.get("type") == "variable" and remote_id:
                variations = self.client.get_product_variations(int(remote_id))
            result = self.upserter.apply_remote(entity_type, item, client=self.client, variations=variations)
        except SyncValidationError as exc:
            report.skipped += 1
            report.add_error(remote_id, str(exc))
            logger.warning("woo_import_item_skipped entity=%s id=%s error=%s", entity_type, remote_id, exc)
            return
        if result.created:
            report.created += 1
        elif result.changed:
            report.updated += 1
        else:
            report.unchanged += 1

    def _persist_failure(self, site_id: int, sync_key: str, cursor: dict | None, report: ImportReport) -> None:
        """Record the failed run on the cursor row; a None cursor keeps the saved one."""
        if report.dry_run:
            return
        try:
            if cursor is None:
                cursor = self.cursors.load_cursor(site_id, sync_key)
            self.cursors.save(site_id, sync_key, cursor, success=False, error=report.error, report=report.to_dict())
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("woo_import_cursor_persist_failed sync_key=%s", sync_key)

    def _reenqueue(
        self,
        resource: str,
        site_id: int,
        per_page: int,
        since: str | None,
        status: str | None,
        max_pages: int | None,
    ) -> int:
        job = ImportJob(
            resource=resource,
            site_id=site_id,
            per_page=per_page,
            since=since,
            status=status,
            max_pages=max_pages,
            enqueue_next=True,
        )
        job_id = self.queue.push(
            JOB_IMPORT,
            job_payload(job),
            queue=self.settings.woo_queue,
            delay_seconds=REENQUEUE_DELAY_SECONDS,
            max_attempts=REENQUEUE_MAX_ATTEMPTS,
        )
        logger.info("woo_import_reenqueued resource=%s job_id=%s", resource, job_id)
        return job_id
