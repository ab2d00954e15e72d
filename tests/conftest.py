import os
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.config import settings
from app.db import Base
from app.services.woocommerce.client import WooClient

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite defers BEGIN on its own; take over so SAVEPOINTs nest
        # inside the outer test transaction.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def session_factory(engine):
    """Sessions sharing one outer transaction; service commits become savepoints."""
    connection = engine.connect()
    transaction = connection.begin()
    factory = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield factory
    finally:
        transaction.rollback()
        connection.close()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def woo_settings():
    return replace(
        settings,
        woo_enabled=True,
        woo_base_url="https://shop.example.com",
        woo_consumer_key="ck_test",
        woo_consumer_secret="cs_test",
        woo_http_retries=0,
        woo_http_retry_delay_ms=0,
        woo_webhook_enabled=True,
        woo_webhook_secret="whsec_test",
        woo_webhook_require_signature=True,
        woo_webhook_ip_allowlist=(),
        woo_webhook_require_topic=False,
        woo_site_id=1,
        woo_default_currency="IRR",
        woo_order_customer_mode="email",
        sync_admin_token=None,
    )


@pytest.fixture()
def woo_client():
    client = MagicMock(spec=WooClient)
    client.assert_ready.return_value = None
    client.get_product_variations.return_value = []
    return client
