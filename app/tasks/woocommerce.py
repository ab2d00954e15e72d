"""Celery triggers for the WooCommerce sync engine.

Beat only pushes jobs into the relational queue; the worker executes them.
``drain_job_queue`` lets a Celery worker run the queue loop when no
dedicated ``app.worker`` process is deployed.
"""

import time

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.logging import get_logger
from app.metrics import observe_job
from app.schemas.woocommerce import (
    JOB_OUTBOX_PUSH,
    JOB_RECONCILE,
    OutboxPushJob,
    ReconcileJob,
    job_payload,
)
from app.services.job_queue import JobQueue
from app.worker import Worker


def _push(job: str, payload: dict) -> int:
    session = SessionLocal()
    try:
        return JobQueue(session).push(job, payload, queue=settings.woo_queue)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.woocommerce.enqueue_outbox_push")
def enqueue_outbox_push():
    start = time.monotonic()
    status = "success"
    logger = get_logger(__name__)
    try:
        job_id = _push(JOB_OUTBOX_PUSH, job_payload(OutboxPushJob()))
        logger.info("woo_outbox_push_enqueued job_id=%s", job_id)
        return job_id
    except Exception:
        status = "error"
        raise
    finally:
        observe_job("woo_enqueue_outbox_push", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.woocommerce.enqueue_reconcile")
def enqueue_reconcile(mode: str = "all", strategy: str | None = None):
    start = time.monotonic()
    status = "success"
    logger = get_logger(__name__)
    try:
        job = ReconcileJob(
            mode=mode,
            strategy=strategy or settings.woo_reconcile_strategy,
            limit=settings.woo_reconcile_limit,
            scan_window_days=settings.woo_reconcile_window_days,
        )
        job_id = _push(JOB_RECONCILE, job_payload(job))
        logger.info("woo_reconcile_enqueued job_id=%s mode=%s strategy=%s", job_id, job.mode, job.strategy)
        return job_id
    except Exception:
        status = "error"
        raise
    finally:
        observe_job("woo_enqueue_reconcile", status, time.monotonic() - start)


@celery_app.task(
    name="app.tasks.woocommerce.drain_job_queue",
    time_limit=900,
    soft_time_limit=840,
)
def drain_job_queue(queue: str | None = None, max_jobs: int | None = None):
    start = time.monotonic()
    status = "success"
    logger = get_logger(__name__)
    try:
        worker = Worker([queue or settings.woo_queue])
        processed = worker.run(once=True, max_jobs=max_jobs or settings.worker_drain_max_jobs)
        logger.info("job_queue_drained queue=%s processed=%s", queue or settings.woo_queue, processed)
        return processed
    except Exception:
        status = "error"
        raise
    finally:
        observe_job("drain_job_queue", status, time.monotonic() - start)
