import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine

from app.services.woocommerce.errors import SchemaDriftWarning
from app.services.woocommerce.schema import detect_schema_drift, table_available


def test_no_drift_on_full_schema(engine):
    assert detect_schema_drift(engine) == []


def test_missing_table_and_column_are_reported():
    live = create_engine("sqlite+pysqlite://")
    existing = MetaData()
    Table("widgets", existing, Column("id", Integer, primary_key=True))
    existing.create_all(live)

    expected = MetaData()
    Table("widgets", expected, Column("id", Integer, primary_key=True), Column("label", String(20)))
    Table("gadgets", expected, Column("id", Integer, primary_key=True))

    with pytest.warns(SchemaDriftWarning):
        problems = detect_schema_drift(live, expected)

    assert "missing column widgets.label" in problems
    assert "missing table gadgets" in problems


def test_table_available(db_session):
    assert table_available(db_session, "woo_outbox") is True
    with pytest.warns(SchemaDriftWarning):
        assert table_available(db_session, "no_such_table") is False
