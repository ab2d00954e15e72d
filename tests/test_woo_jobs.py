"""Tests for job dispatch."""

import pytest

from app.schemas.woocommerce import (
    JOB_IMPORT,
    JOB_OUTBOX_PUSH,
    JOB_PROCESS_WEBHOOK,
    JOB_RECONCILE,
    ImportJob,
    job_payload,
    parse_job,
)
from app.services.woocommerce.errors import InvalidJobPayloadError, UnknownJobError
from app.services.woocommerce.jobs import registered_kinds, resolve_kind, run_job


def test_all_kinds_are_registered():
    assert registered_kinds() == sorted([JOB_OUTBOX_PUSH, JOB_PROCESS_WEBHOOK, JOB_IMPORT, JOB_RECONCILE])


def test_handler_key_overrides_job_name():
    assert resolve_kind("legacy", {"handler": JOB_IMPORT}) == JOB_IMPORT
    assert resolve_kind(JOB_IMPORT, {}) == JOB_IMPORT
    assert resolve_kind(JOB_IMPORT, None) == JOB_IMPORT


def test_parse_job_strips_reserved_keys():
    job = parse_job(JOB_IMPORT, {"resource": "orders", "no_retry": True, "handler": JOB_IMPORT})
    assert isinstance(job, ImportJob)
    assert job.resource == "orders"


def test_job_payload_omits_kind_and_nulls():
    payload = job_payload(ImportJob(resource="products", max_pages=2))
    assert payload == {"resource": "products", "max_pages": 2, "enqueue_next": True, "dry_run": False}


def test_unknown_kind(db_session, woo_settings, woo_client):
    with pytest.raises(UnknownJobError) as exc_info:
        run_job(db_session, "woo.unknown", {}, config=woo_settings, client=woo_client)
    assert exc_info.value.retryable is False


def test_invalid_payload(db_session, woo_settings, woo_client):
    with pytest.raises(InvalidJobPayloadError) as exc_info:
        run_job(db_session, JOB_PROCESS_WEBHOOK, {"event_id": "not-a-number"}, config=woo_settings, client=woo_client)
    assert exc_info.value.retryable is False


def test_outbox_push_dispatch(db_session, woo_settings, woo_client):
    result = run_job(db_session, JOB_OUTBOX_PUSH, {"batch_size": 5}, config=woo_settings, client=woo_client)
    assert result["processed"] == 0
    woo_client.assert_ready.assert_called_once()
    woo_client.close.assert_not_called()


def test_import_dispatch(db_session, woo_settings, woo_client):
    woo_client.list_orders.return_value = []
    result = run_job(db_session, JOB_IMPORT, {"resource": "orders"}, config=woo_settings, client=woo_client)
    assert result["resource"] == "orders"
    assert result["complete"] is True


def test_reconcile_dispatch(db_session, woo_settings, woo_client):
    result = run_job(
        db_session,
        JOB_RECONCILE,
        {"mode": "customers", "strategy": "merge"},
        config=woo_settings,
        client=woo_client,
    )
    assert result["report_id"] is not None
    assert result["checked"] == 0


def test_owned_client_is_closed(db_session, woo_settings, monkeypatch):
    closed = []

    class FakeClient:
        def assert_ready(self):
            return None

        def close(self):
            closed.append(True)

        def list_customers(self, *args, **kwargs):
            return []

    monkeypatch.setattr(
        "app.services.woocommerce.jobs.WooClient.from_settings",
        classmethod(lambda cls, config: FakeClient()),
    )
    run_job(db_session, JOB_IMPORT, {"resource": "customers"}, config=woo_settings)
    assert closed == [True]
