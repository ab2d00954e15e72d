"""Durable job queue backed by the ``jobs_queue`` table.

Workers reserve jobs with the same claim pattern as the outbox: a locking
read and the status flip happen in one transaction. Reservations older
than the reserve timeout are handed back to ``pending``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models.job import STATUS_DEAD, STATUS_DONE, STATUS_PENDING, STATUS_RESERVED, Job

logger = logging.getLogger(__name__)

RETRY_DELAYS = [5, 20, 60, 180, 600, 1800]
MAX_RETRY_DELAY = 3600


def _now() -> datetime:
    return datetime.now(UTC)


def retry_delay_seconds(attempts: int) -> int:
    index = max(attempts, 1) - 1
    if index < len(RETRY_DELAYS):
        return RETRY_DELAYS[index]
    return MAX_RETRY_DELAY


class JobQueue:
    def __init__(self, db: Session, config: Settings | None = None):
        self.db = db
        self.settings = config or default_settings

    def push(
        self,
        job: str,
        payload: dict[str, Any] | None = None,
        queue: str | None = None,
        delay_seconds: int = 0,
        max_attempts: int = 3,
        *,
        commit: bool = True,
    ) -> int:
        """Insert a pending job.

        With commit=False the row is only flushed so it lands in the caller's
        transaction.
        """
        if not job:
            raise ValueError("job name is required")
        record = Job(
            queue=queue or self.settings.job_default_queue,
            job=job,
            payload=dict(payload or {}),
            status=STATUS_PENDING,
            attempts=0,
            max_attempts=max(1, max_attempts),
            available_at=_now() + timedelta(seconds=max(0, delay_seconds)),
        )
        self.db.add(record)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        logger.info("job_pushed id=%s job=%s queue=%s delay=%s", record.id, job, record.queue, delay_seconds)
        return record.id

    def release_stale(self, queue: str | None = None) -> int:
        now = _now()
        cutoff = now - timedelta(seconds=self.settings.job_reserve_timeout_seconds)
        query = (
            self.db.query(Job)
            .filter(Job.status == STATUS_RESERVED)
            .filter(Job.reserved_at <= cutoff)
        )
        if queue:
            query = query.filter(Job.queue == queue)
        released = query.update(
            {"status": STATUS_PENDING, "reserved_at": None, "updated_at": now},
            synchronize_session=False,
        )
        if released:
            logger.warning("job_reservations_released queue=%s count=%s", queue, released)
        return released

    def reserve(self, queue: str | None = None) -> Job | None:
        queue = queue or self.settings.job_default_queue
        now = _now()
        self.release_stale(queue)
        job = (
            self.db.query(Job)
            .filter(Job.queue == queue)
            .filter(Job.status == STATUS_PENDING)
            .filter(Job.available_at <= now)
            .order_by(Job.available_at.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .first()
        )
        if job is None:
            self.db.commit()
            return None
        job.status = STATUS_RESERVED
        job.reserved_at = now
        job.attempts = (job.attempts or 0) + 1
        self.db.commit()
        return job

    def ack(self, job_id: int) -> None:
        job = self.db.get(Job, job_id)
        if job is None:
            return
        job.status = STATUS_DONE
        job.finished_at = _now()
        job.reserved_at = None
        job.last_error = None
        self.db.commit()

    def fail(self, job_id: int, error: str, retry: bool = True) -> str | None:
        job = self.db.get(Job, job_id)
        if job is None:
            return None
        job.last_error = (error or "")[:4000]
        job.reserved_at = None
        if not retry or job.attempts >= job.max_attempts:
            job.status = STATUS_DEAD
            job.finished_at = _now()
            logger.error("job_dead id=%s job=%s attempts=%s error=%s", job.id, job.job, job.attempts, job.last_error)
        else:
            delay = retry_delay_seconds(job.attempts)
            job.status = STATUS_PENDING
            job.available_at = _now() + timedelta(seconds=delay)
            logger.warning(
                "job_retry_scheduled id=%s job=%s attempts=%s retry_in=%s",
                job.id,
                job.job,
                job.attempts,
                delay,
            )
        self.db.commit()
        return job.status

    def release(self, job_id: int, delay_seconds: int = 0) -> None:
        """Put a reserved job back without counting the attempt."""
        job = self.db.get(Job, job_id)
        if job is None:
            return
        job.status = STATUS_PENDING
        job.reserved_at = None
        job.attempts = max((job.attempts or 0) - 1, 0)
        job.available_at = _now() + timedelta(seconds=max(0, delay_seconds))
        self.db.commit()

    def counts(self, queue: str | None = None) -> dict[str, int]:
        query = self.db.query(Job.status, func.count(Job.id))
        if queue:
            query = query.filter(Job.queue == queue)
        counts = dict.fromkeys((STATUS_PENDING, STATUS_RESERVED, STATUS_DONE, STATUS_DEAD), 0)
        for status, count in query.group_by(Job.status).all():
            counts[status] = count
        return counts
