"""Drift detection and repair between local rows and WooCommerce.

Strategies:
- remote_wins: fetch the remote entity and upsert it locally
- local_wins: enqueue an outbox update from the local row (no local write)
- merge: report field diffs only

Every run saves a ``WooReconcileReport``, including runs that end in a
fatal error; the error is re-raised after the report is stored.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.metrics import RECONCILE_ITEMS
from app.models.woo_reconcile_report import WooReconcileReport
from app.schemas.woocommerce import ReconcileRequest
from app.services.woocommerce import mapper
from app.services.woocommerce.client import WooClient
from app.services.woocommerce.diffing import diff_fields, pushable_diffs
from app.services.woocommerce.errors import RemoteNotFound
from app.services.woocommerce.outbox import OutboxPublisher
from app.services.woocommerce.schema import table_available
from app.services.woocommerce.upserter import LocalUpserter, model_for
from app.telemetry import get_tracer

logger = logging.getLogger(__name__)

STRATEGY_REMOTE_WINS = "remote_wins"
STRATEGY_LOCAL_WINS = "local_wins"
STRATEGY_MERGE = "merge"

OUTCOME_FIXED = "fixed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"

MAX_DETAILS_PER_ENTITY = 50
MAX_DETAILS_TOTAL = 80

_BULK_TARGETS = {
    "products": (mapper.ENTITY_PRODUCT,),
    "customers": (mapper.ENTITY_CUSTOMER,),
    "orders": (mapper.ENTITY_ORDER,),
    "all": (mapper.ENTITY_PRODUCT, mapper.ENTITY_CUSTOMER, mapper.ENTITY_ORDER),
}


def _empty_summary() -> dict[str, Any]:
    return {"checked": 0, "fixed": 0, "skipped": 0, "errors": 0, "by_entity": {}, "details": []}


class Reconciler:
    def __init__(
        self,
        db: Session,
        client: WooClient | None = None,
        config: Settings | None = None,
        publisher: OutboxPublisher | None = None,
    ):
        self.db = db
        self.settings = config or default_settings
        self.client = client or WooClient.from_settings(self.settings)
        self.publisher = publisher or OutboxPublisher(db, self.client, self.settings)
        self.upserter = LocalUpserter(db, self.settings)

    def run(self, request: ReconcileRequest) -> WooReconcileReport:
        site_id = request.site_id or self.settings.woo_site_id
        summary = _empty_summary()
        summary["scan_window_days"] = request.scan_window_days
        summary["limit"] = request.limit

        with get_tracer().start_as_current_span("woo.reconcile.run") as span:
            span.set_attribute("woo.reconcile.mode", request.mode)
            span.set_attribute("woo.reconcile.strategy", request.strategy)
            try:
                self.client.assert_ready()
                if request.mode == "single":
                    detail = self.reconcile_one(
                        request.entity_type,
                        request.remote_id,
                        request.strategy,
                        repair=request.repair,
                        dry_run=request.dry_run,
                    )
                    self._record(summary, detail, entity_details=[])
                else:
                    for entity_type in _BULK_TARGETS[request.mode]:
                        self._reconcile_recent(entity_type, request, summary)
            except Exception as exc:
                self.db.rollback()
                summary["fatal_error"] = str(exc)
                self._save(site_id, request, summary)
                logger.error(
                    "woo_reconcile_fatal mode=%s strategy=%s error=%s",
                    request.mode,
                    request.strategy,
                    exc,
                )
                raise

        report = self._save(site_id, request, summary)
        logger.info(
            "woo_reconcile_done report_id=%s mode=%s strategy=%s checked=%s fixed=%s skipped=%s errors=%s",
            report.id,
            request.mode,
            request.strategy,
            summary["checked"],
            summary["fixed"],
            summary["skipped"],
            summary["errors"],
        )
        return report

    def _save(self, site_id: int, request: ReconcileRequest, summary: dict[str, Any]) -> WooReconcileReport:
        report = WooReconcileReport(
            site_id=site_id,
            mode=request.mode,
            strategy=request.strategy,
            repair=request.repair,
            dry_run=request.dry_run,
            summary=summary,
        )
        self.db.add(report)
        self.db.commit()
        return report

    def _record(self, summary: dict[str, Any], detail: dict[str, Any], entity_details: list) -> None:
        outcome = detail["outcome"]
        summary["checked"] += 1
        if outcome == OUTCOME_FIXED:
            summary["fixed"] += 1
        elif outcome == OUTCOME_ERROR:
            summary["errors"] += 1
        else:
            summary["skipped"] += 1

        counts = summary["by_entity"].setdefault(
            detail["entity_type"], {"checked": 0, "fixed": 0, "skipped": 0, "errors": 0}
        )
        counts["checked"] += 1
        counts["errors" if outcome == OUTCOME_ERROR else outcome] += 1

        if len(entity_details) < MAX_DETAILS_PER_ENTITY and len(summary["details"]) < MAX_DETAILS_TOTAL:
            entity_details.append(detail)
            summary["details"].append(detail)

    def _recent_rows(self, entity_type: str, limit: int, window_days: int) -> list:
        model, remote_column = model_for(entity_type)
        cutoff = datetime.now(UTC) - timedelta(days=window_days)
        column = getattr(model, remote_column)
        return (
            self.db.query(model)
            .filter(column.isnot(None))
            .filter(model.updated_at >= cutoff)
            .order_by(model.updated_at.desc(), model.id.desc())
            .limit(limit)
            .all()
        )

    def _reconcile_recent(self, entity_type: str, request: ReconcileRequest, summary: dict[str, Any]) -> None:
        model, remote_column = model_for(entity_type)
        if not table_available(self.db, model.__tablename__):
            summary.setdefault("skipped_entities", []).append(entity_type)
            return
        targets = [
            getattr(row, remote_column)
            for row in self._recent_rows(entity_type, request.limit, request.scan_window_days)
        ]
        entity_details: list = []
        for remote_id in targets:
            detail = self.reconcile_one(
                entity_type,
                remote_id,
                request.strategy,
                repair=request.repair,
                dry_run=request.dry_run,
            )
            self._record(summary, detail, entity_details)

    def reconcile_one(
        self,
        entity_type: str,
        remote_id: int,
        strategy: str,
        *,
        repair: bool = True,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        detail: dict[str, Any] = {
            "entity_type": entity_type,
            "remote_id": remote_id,
            "local_id": None,
            "outcome": OUTCOME_SKIPPED,
            "reason": None,
            "diffs": [],
        }
        try:
            self._reconcile_into(detail, entity_type, remote_id, strategy, repair, dry_run)
        except Exception as exc:
            self.db.rollback()
            detail["outcome"] = OUTCOME_ERROR
            detail["reason"] = str(exc)[:500]
            logger.warning(
                "woo_reconcile_item_error entity=%s remote_id=%s error=%s",
                entity_type,
                remote_id,
                exc,
            )
        RECONCILE_ITEMS.labels(strategy=strategy, outcome=detail["outcome"]).inc()
        return detail

    def _fetch_remote(self, entity_type: str, remote_id: int) -> dict[str, Any]:
        if entity_type == mapper.ENTITY_PRODUCT:
            return self.client.get_product(remote_id)
        if entity_type == mapper.ENTITY_CUSTOMER:
            return self.client.get_customer(remote_id)
        return self.client.get_order(remote_id)

    def _reconcile_into(
        self,
        detail: dict[str, Any],
        entity_type: str,
        remote_id: int,
        strategy: str,
        repair: bool,
        dry_run: bool,
    ) -> None:
        local = self.upserter.find_by_remote_id(entity_type, remote_id)
        detail["local_id"] = local.id if local is not None else None

        try:
            remote = self._fetch_remote(entity_type, remote_id)
        except RemoteNotFound:
            detail["reason"] = "not_found_remote"
            return
        mapped = mapper.map_remote(entity_type, remote, self.settings.woo_default_currency)

        if local is None:
            if strategy != STRATEGY_REMOTE_WINS:
                detail["reason"] = "missing_locally"
                return
            detail["diffs"] = [{"field": "*", "local": None, "remote": "present"}]
        else:
            diffs = diff_fields(entity_type, local, mapped)
            detail["diffs"] = [diff.to_dict() for diff in diffs]
            if not diffs:
                detail["reason"] = "no_drift"
                return
            if strategy == STRATEGY_LOCAL_WINS and not pushable_diffs(entity_type, diffs):
                detail["reason"] = "drift_not_pushable"
                return

        if strategy == STRATEGY_MERGE:
            detail["reason"] = "merge_report_only"
            return
        if dry_run:
            detail["reason"] = "dry_run"
            return
        if not repair:
            detail["reason"] = "repair_disabled"
            return

        if strategy == STRATEGY_REMOTE_WINS:
            variations = None
            if entity_type == mapper.ENTITY_PRODUCT and remote.get("type") == "variable":
                variations = self.client.get_product_variations(remote_id)
            result = self.upserter.apply_remote(entity_type, remote, client=self.client, variations=variations)
            self.db.commit()
            detail["local_id"] = result.entity_id
            detail["outcome"] = OUTCOME_FIXED
            detail["reason"] = "local_updated" if not result.created else "local_created"
            return

        outbox_id = self.publisher.enqueue_entity(
            entity_type,
            local,
            idempotency_key=f"reconcile:{entity_type}:{local.id}:{uuid.uuid4().hex}",
        )
        detail["outcome"] = OUTCOME_FIXED
        detail["reason"] = "outbox_enqueued"
        detail["outbox_id"] = outbox_id
