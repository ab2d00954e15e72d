"""Tests for the resumable WooCommerce importer."""

from dataclasses import replace

import pytest

from app.models.catalog import Customer, Product, ProductVariant, Sale
from app.models.job import Job
from app.schemas.woocommerce import JOB_IMPORT
from app.services.woocommerce.errors import ConfigurationError, SyncValidationError, TransientRemoteError
from app.services.woocommerce.importer import REENQUEUE_MAX_ATTEMPTS, ResumableImporter
from app.services.woocommerce.sync_state import SyncCursorStore, sync_key_for


def _product(remote_id: int) -> dict:
    return {
        "id": remote_id,
        "name": f"Product {remote_id}",
        "type": "simple",
        "status": "publish",
        "sku": f"SKU-{remote_id}",
        "regular_price": "10.00",
    }


def _pager(pages: dict[int, list[dict]], calls: list[int] | None = None):
    def fetch(page, per_page, **filters):
        if calls is not None:
            calls.append(page)
        return pages.get(page, [])

    return fetch


@pytest.fixture()
def importer(db_session, woo_client, woo_settings):
    return ResumableImporter(db_session, woo_client, woo_settings)


def _cursor(db_session, resource: str) -> dict:
    return SyncCursorStore(db_session).load_cursor(1, sync_key_for(resource))


def test_runs_until_empty_page(importer, woo_client, db_session):
    woo_client.list_products.side_effect = _pager({1: [_product(1), _product(2)], 2: [_product(3)]})

    report = importer.run("products", per_page=2)

    assert report.complete is True
    assert report.pages == 2
    assert report.created == 3
    assert db_session.query(Product).count() == 3
    cursor = _cursor(db_session, "products")
    assert cursor["page"] == 3
    assert "completed_at" in cursor


def test_resumes_from_saved_cursor(importer, woo_client, db_session):
    SyncCursorStore(db_session).save(1, sync_key_for("products"), {"page": 3, "since": None}, success=True)
    db_session.commit()
    calls: list[int] = []
    woo_client.list_products.side_effect = _pager({3: [_product(30)]}, calls)

    report = importer.run("products")

    assert report.start_page == 3
    assert calls[0] == 3
    assert db_session.query(Product).filter(Product.woo_product_id == 30).count() == 1


def test_explicit_page_overrides_cursor(importer, woo_client, db_session):
    SyncCursorStore(db_session).save(1, sync_key_for("products"), {"page": 9}, success=True)
    db_session.commit()
    calls: list[int] = []
    woo_client.list_products.side_effect = _pager({}, calls)

    importer.run("products", page=1)

    assert calls == [1]


def test_page_failure_freezes_cursor(importer, woo_client, db_session):
    pages = {1: [_product(1)], 3: []}

    def flaky(page, per_page, **filters):
        if page == 2:
            raise TransientRemoteError("Woo HTTP 503")
        return pages.get(page, [])

    woo_client.list_products.side_effect = flaky

    with pytest.raises(TransientRemoteError):
        importer.run("products")

    state = SyncCursorStore(db_session).get(1, sync_key_for("products"))
    assert state.cursor["page"] == 2
    assert "503" in state.last_error
    assert db_session.query(Product).count() == 1

    calls: list[int] = []
    woo_client.list_products.side_effect = _pager({2: [_product(2)]}, calls)
    report = importer.run("products")

    assert calls[0] == 2
    assert report.complete is True
    assert db_session.query(Product).count() == 2


def test_page_cap_reenqueues_continuation(importer, woo_client, db_session, woo_settings):
    woo_client.list_products.side_effect = _pager({1: [_product(1)], 2: [_product(2)]})

    report = importer.run("products", max_pages=1, status="publish")

    assert report.capped is True
    assert report.complete is False
    job = db_session.get(Job, report.reenqueued_job_id)
    assert job.job == JOB_IMPORT
    assert job.queue == woo_settings.woo_queue
    assert job.max_attempts == REENQUEUE_MAX_ATTEMPTS
    assert job.payload["resource"] == "products"
    assert job.payload["max_pages"] == 1
    assert job.payload["status"] == "publish"
    assert "page" not in job.payload
    assert _cursor(db_session, "products")["page"] == 2


def test_cap_without_enqueue_next(importer, woo_client, db_session):
    woo_client.list_products.side_effect = _pager({1: [_product(1)]})

    report = importer.run("products", max_pages=1, enqueue_next=False)

    assert report.capped is True
    assert report.reenqueued_job_id is None
    assert db_session.query(Job).count() == 0


def test_dry_run_writes_nothing(importer, woo_client, db_session):
    woo_client.list_products.side_effect = _pager({1: [_product(1)]})

    report = importer.run("products", dry_run=True)

    assert report.items == 1
    assert db_session.query(Product).count() == 0
    assert _cursor(db_session, "products") == {}


def test_invalid_items_are_skipped(importer, woo_client, db_session):
    woo_client.list_products.side_effect = _pager({1: [{"name": "No id or sku"}, _product(5)]})

    report = importer.run("products")

    assert report.skipped == 1
    assert report.created == 1
    assert report.errors[0]["id"] is None


def test_customers_use_their_own_cursor(importer, woo_client, db_session):
    woo_client.list_customers.side_effect = _pager(
        {1: [{"id": 8, "email": "sara@example.com", "first_name": "Sara", "last_name": "K"}]}
    )

    report = importer.run("customers")

    assert report.sync_key == "initial_customers"
    assert db_session.query(Customer).filter(Customer.woo_customer_id == 8).one().full_name == "Sara K"
    assert _cursor(db_session, "products") == {}


def test_unknown_resource(importer):
    with pytest.raises(SyncValidationError):
        importer.run("coupons")


# ---------------------------------------------------------------------------
# Orders and variable products
# ---------------------------------------------------------------------------


def _order(remote_id: int, customer_id: int = 0, **overrides) -> dict:
    data = {
        "id": remote_id,
        "status": "processing",
        "currency": "IRR",
        "total": "250000",
        "customer_id": customer_id,
        "billing": {"first_name": "Reza", "last_name": "Ahmadi", "email": "Reza@Example.com", "phone": "0912"},
        "line_items": [{"product_id": 1, "quantity": 2}],
    }
    data.update(overrides)
    return data


def test_orders_query_by_id_with_filters(importer, woo_client):
    woo_client.list_orders.side_effect = _pager({})

    importer.run("orders", per_page=25, since="2024-01-01T00:00:00", status="processing")

    woo_client.list_orders.assert_called_once_with(
        1,
        25,
        orderby="id",
        order="asc",
        status="processing",
        modified_after="2024-01-01T00:00:00",
    )


def test_guest_order_gets_pseudo_customer(importer, woo_client, db_session):
    woo_client.list_orders.side_effect = _pager({1: [_order(301)]})

    report = importer.run("orders")

    assert report.created == 1
    customer = db_session.query(Customer).one()
    assert customer.status == "guest"
    assert customer.email == "reza@example.com"
    assert customer.woo_customer_id is None
    sale = db_session.query(Sale).filter(Sale.woo_order_id == 301).one()
    assert sale.customer_id == customer.id
    assert sale.woo_customer_id is None
    woo_client.get_customer.assert_not_called()


def test_registered_customer_fetched_in_woo_id_mode(db_session, woo_client, woo_settings):
    config = replace(woo_settings, woo_order_customer_mode="woo_id")
    importer = ResumableImporter(db_session, woo_client, config)
    woo_client.get_customer.return_value = {
        "id": 42,
        "email": "sara@example.com",
        "first_name": "Sara",
        "last_name": "Karimi",
    }
    woo_client.list_orders.side_effect = _pager({1: [_order(302, customer_id=42)]})

    importer.run("orders")

    woo_client.get_customer.assert_called_once_with(42)
    customer = db_session.query(Customer).filter(Customer.woo_customer_id == 42).one()
    assert customer.full_name == "Sara Karimi"
    assert db_session.query(Sale).filter(Sale.woo_order_id == 302).one().customer_id == customer.id


def test_registered_customer_built_from_billing_in_email_mode(importer, woo_client, db_session):
    woo_client.list_orders.side_effect = _pager({1: [_order(303, customer_id=43)]})

    importer.run("orders")

    woo_client.get_customer.assert_not_called()
    customer = db_session.query(Customer).filter(Customer.woo_customer_id == 43).one()
    assert customer.email == "reza@example.com"
    assert customer.full_name == "Reza Ahmadi"
    assert db_session.query(Sale).filter(Sale.woo_order_id == 303).one().customer_id == customer.id


def test_variable_product_imports_variations(importer, woo_client, db_session):
    woo_client.list_products.side_effect = _pager({1: [{**_product(7), "type": "variable"}]})
    woo_client.get_product_variations.return_value = [
        {"id": 71, "sku": "SKU-7-RED", "regular_price": "11.00", "attributes": [{"name": "Color", "option": "Red"}]}
    ]

    importer.run("products")

    woo_client.get_product_variations.assert_called_once_with(7)
    product = db_session.query(Product).filter(Product.woo_product_id == 7).one()
    variant = db_session.query(ProductVariant).one()
    assert variant.product_id == product.id
    assert variant.woo_variation_id == 71
    assert variant.sku == "SKU-7-RED"


# ---------------------------------------------------------------------------
# Failures before the first page
# ---------------------------------------------------------------------------


def test_not_ready_records_failure_and_keeps_cursor(importer, woo_client, db_session):
    SyncCursorStore(db_session).save(1, sync_key_for("products"), {"page": 4}, success=True)
    db_session.commit()
    woo_client.assert_ready.side_effect = ConfigurationError("WooCommerce integration is disabled")

    with pytest.raises(ConfigurationError):
        importer.run("products")

    state = SyncCursorStore(db_session).get(1, sync_key_for("products"))
    assert state.cursor == {"page": 4}
    assert state.last_error == "WooCommerce integration is disabled"
    assert state.last_report["error"] == "WooCommerce integration is disabled"
    woo_client.list_products.assert_not_called()
