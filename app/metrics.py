"""Prometheus metrics for the sync engine."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

JOB_RUNS = Counter(
    "sync_jobs_total",
    "Jobs executed by the worker or Celery triggers",
    ["job", "status"],  # status: success, error, skipped, dead
)

JOB_DURATION = Histogram(
    "sync_job_duration_seconds",
    "Job execution time",
    ["job"],
)

OUTBOX_ITEMS = Counter(
    "woo_outbox_items_total",
    "Outbox items processed by the publisher",
    ["status"],  # status: sent, failed, dead
)

WEBHOOK_EVENTS = Counter(
    "woo_webhook_events_total",
    "Inbound webhook deliveries",
    ["outcome"],  # outcome: stored, duplicate, rejected, invalid_json, ping, processed, failed, dead
)

IMPORT_PAGES = Counter(
    "woo_import_pages_total",
    "Pages completed by the resumable importer",
    ["resource"],
)

RECONCILE_ITEMS = Counter(
    "woo_reconcile_items_total",
    "Per-entity reconciliation outcomes",
    ["strategy", "outcome"],  # outcome: fixed, skipped, error
)


def observe_job(job: str, status: str, duration: float) -> None:
    JOB_RUNS.labels(job=job, status=status).inc()
    JOB_DURATION.labels(job=job).observe(max(duration, 0.0))
