"""Tests for the relational job queue."""

from datetime import UTC, datetime, timedelta

import pytest

from app.models.job import STATUS_DEAD, STATUS_DONE, STATUS_PENDING, STATUS_RESERVED, Job
from app.services.job_queue import MAX_RETRY_DELAY, RETRY_DELAYS, JobQueue, retry_delay_seconds


@pytest.fixture()
def queue(db_session, woo_settings):
    return JobQueue(db_session, woo_settings)


def test_push_defaults(queue, db_session, woo_settings):
    job_id = queue.push("woo.outbox_push", {"batch_size": 10})
    job = db_session.get(Job, job_id)
    assert job.queue == woo_settings.job_default_queue
    assert job.status == STATUS_PENDING
    assert job.attempts == 0
    assert job.payload == {"batch_size": 10}


def test_push_without_commit_joins_caller_transaction(queue, db_session):
    job_id = queue.push("woo.outbox_push", commit=False)
    assert db_session.get(Job, job_id).status == STATUS_PENDING

    db_session.rollback()

    assert db_session.get(Job, job_id) is None


def test_push_requires_name(queue):
    with pytest.raises(ValueError):
        queue.push("")


def test_reserve_marks_reserved_and_counts_attempt(queue):
    job_id = queue.push("woo.import", {"resource": "products"}, queue="woo")
    job = queue.reserve("woo")
    assert job.id == job_id
    assert job.status == STATUS_RESERVED
    assert job.attempts == 1
    assert job.reserved_at is not None
    assert queue.reserve("woo") is None


def test_reserve_honours_queue_and_delay(queue):
    queue.push("woo.import", {"resource": "products"}, queue="other")
    queue.push("woo.import", {"resource": "orders"}, queue="woo", delay_seconds=60)
    assert queue.reserve("woo") is None


def test_reserve_orders_by_availability(queue):
    first = queue.push("a", queue="woo")
    second = queue.push("b", queue="woo")
    assert queue.reserve("woo").id == first
    assert queue.reserve("woo").id == second


def test_ack(queue, db_session):
    job_id = queue.push("a", queue="woo")
    queue.reserve("woo")
    queue.ack(job_id)
    job = db_session.get(Job, job_id)
    assert job.status == STATUS_DONE
    assert job.finished_at is not None


def test_fail_schedules_retry_with_backoff(queue, db_session):
    job_id = queue.push("a", queue="woo", max_attempts=3)
    queue.reserve("woo")

    status = queue.fail(job_id, "boom")

    job = db_session.get(Job, job_id)
    assert status == STATUS_PENDING
    assert job.last_error == "boom"
    assert job.reserved_at is None
    assert queue.reserve("woo") is None


def test_fail_dead_after_max_attempts(queue, db_session):
    job_id = queue.push("a", queue="woo", max_attempts=1)
    queue.reserve("woo")
    assert queue.fail(job_id, "boom") == STATUS_DEAD
    assert db_session.get(Job, job_id).finished_at is not None


def test_fail_without_retry_is_dead(queue):
    job_id = queue.push("a", queue="woo", max_attempts=5)
    queue.reserve("woo")
    assert queue.fail(job_id, "bad payload", retry=False) == STATUS_DEAD


def test_release_does_not_count_attempt(queue, db_session):
    job_id = queue.push("a", queue="woo")
    queue.reserve("woo")
    queue.release(job_id)
    job = db_session.get(Job, job_id)
    assert job.status == STATUS_PENDING
    assert job.attempts == 0
    assert queue.reserve("woo").id == job_id


def test_stale_reservations_are_released(queue, db_session):
    job_id = queue.push("a", queue="woo")
    queue.reserve("woo")
    job = db_session.get(Job, job_id)
    job.reserved_at = datetime.now(UTC) - timedelta(hours=1)
    db_session.commit()

    reclaimed = queue.reserve("woo")

    assert reclaimed.id == job_id
    assert reclaimed.attempts == 2


def test_counts(queue):
    done = queue.push("a", queue="woo")
    queue.push("b", queue="woo")
    queue.push("c", queue="elsewhere")
    queue.reserve("woo")
    queue.ack(done)

    counts = queue.counts("woo")

    assert counts == {STATUS_PENDING: 1, STATUS_RESERVED: 0, STATUS_DONE: 1, STATUS_DEAD: 0}


def test_retry_delay_table():
    assert [retry_delay_seconds(n) for n in range(1, len(RETRY_DELAYS) + 1)] == RETRY_DELAYS
    assert retry_delay_seconds(50) == MAX_RETRY_DELAY
