"""Relational job queue worker.

Polls the Woo sync and webhook queues unless ``--queue`` names others.

Usage:
    python -m app.worker
    python -m app.worker --queue woo --once --max-jobs 50
"""

from __future__ import annotations

import argparse
import signal
import time
from collections.abc import Callable, Sequence

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.db import SessionLocal
from app.logging import configure_logging, get_logger
from app.metrics import observe_job
from app.models.job import STATUS_DEAD
from app.services.job_queue import JobQueue
from app.services.woocommerce.client import WooClient
from app.services.woocommerce.errors import EventBusyError
from app.services.woocommerce.jobs import run_job

logger = get_logger(__name__)

BUSY_RELEASE_DELAY_SECONDS = 5


def default_queues(config: Settings) -> list[str]:
    return [config.woo_queue, config.woo_webhook_queue]


class Worker:
    def __init__(
        self,
        queues: Sequence[str],
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        config: Settings | None = None,
        client_factory: Callable[[], WooClient] | None = None,
        sleep_ms: int = 500,
    ):
        self.settings = config or default_settings
        self.queues = list(queues) or default_queues(self.settings)
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.sleep_ms = max(0, sleep_ms)
        self._stop = False

    def stop(self, *_args) -> None:
        if not self._stop:
            logger.info("worker_stop_requested")
        self._stop = True

    @property
    def stopping(self) -> bool:
        return self._stop

    def process_next(self, queue: str) -> bool:
        """Reserve and run one job from ``queue``. Returns False when the queue is idle."""
        session = self.session_factory()
        try:
            jobs = JobQueue(session, self.settings)
            job = jobs.reserve(queue)
            if job is None:
                return False

            job_id, name = job.id, job.job
            payload = dict(job.payload or {})
            start = time.monotonic()
            logger.info("worker_job_start id=%s job=%s queue=%s attempt=%s", job_id, name, queue, job.attempts)
            client = self.client_factory() if self.client_factory else None
            try:
                run_job(session, name, payload, config=self.settings, client=client)
            except EventBusyError as exc:
                session.rollback()
                jobs.release(job_id, BUSY_RELEASE_DELAY_SECONDS)
                observe_job(name, "skipped", time.monotonic() - start)
                logger.info("worker_job_busy id=%s job=%s error=%s", job_id, name, exc)
                return True
            except Exception as exc:
                session.rollback()
                retry = not payload.get("no_retry") and getattr(exc, "retryable", True)
                status = jobs.fail(job_id, f"{type(exc).__name__}: {exc}", retry=retry)
                observe_job(name, "dead" if status == STATUS_DEAD else "error", time.monotonic() - start)
                logger.warning(
                    "worker_job_failed id=%s job=%s retry=%s status=%s error=%s",
                    job_id,
                    name,
                    retry,
                    status,
                    exc,
                )
                return True

            jobs.ack(job_id)
            duration = time.monotonic() - start
            observe_job(name, "success", duration)
            logger.info("worker_job_done id=%s job=%s duration=%.3f", job_id, name, duration)
            return True
        finally:
            session.close()

    def run(self, *, once: bool = False, max_jobs: int | None = None, max_seconds: float | None = None) -> int:
        """Process jobs until stopped.

        ``once`` exits as soon as every queue is idle. ``max_jobs`` and
        ``max_seconds`` bound the run; the stop flag is only checked between
        jobs so a running job always finishes.
        """
        processed = 0
        started = time.monotonic()
        logger.info("worker_started queues=%s", ",".join(self.queues))
        while not self._stop:
            did_work = False
            for queue in self.queues:
                if self._stop:
                    break
                if self.process_next(queue):
                    processed += 1
                    did_work = True
                if max_jobs and processed >= max_jobs:
                    logger.info("worker_max_jobs_reached processed=%s", processed)
                    return processed
            if max_seconds and time.monotonic() - started >= max_seconds:
                break
            if not did_work:
                if once:
                    break
                time.sleep(self.sleep_ms / 1000)
        logger.info("worker_stopped processed=%s", processed)
        return processed


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the sync job queue worker.")
    parser.add_argument(
        "--queue",
        action="append",
        dest="queues",
        help="Queue to consume (repeatable, default: WOO_QUEUE and WOO_WEBHOOK_QUEUE).",
    )
    parser.add_argument("--once", action="store_true", help="Exit when all queues are idle.")
    parser.add_argument("--max-jobs", type=int, default=0, help="Stop after N jobs (0 = no limit).")
    parser.add_argument("--max-seconds", type=float, default=0, help="Stop after N seconds (0 = no limit).")
    parser.add_argument("--sleep-ms", type=int, default=500, help="Idle poll interval in milliseconds.")
    args = parser.parse_args(argv)

    configure_logging()
    worker = Worker(args.queues or default_queues(default_settings), sleep_ms=args.sleep_ms)
    signal.signal(signal.SIGINT, worker.stop)
    signal.signal(signal.SIGTERM, worker.stop)
    worker.run(once=args.once, max_jobs=args.max_jobs or None, max_seconds=args.max_seconds or None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
