"""Detect drift between the ORM schema and the live database.

Missing tables or columns are reported as ``SchemaDriftWarning`` and logged;
callers skip the affected feature instead of failing.
"""

from __future__ import annotations

import logging
import warnings

from sqlalchemy import MetaData, inspect
from sqlalchemy.orm import Session

from app.db import Base
from app.services.woocommerce.errors import SchemaDriftWarning

logger = logging.getLogger(__name__)


def detect_schema_drift(bind, metadata: MetaData | None = None) -> list[str]:
    metadata = metadata or Base.metadata
    inspector = inspect(bind)
    problems: list[str] = []
    for table in metadata.sorted_tables:
        if not inspector.has_table(table.name):
            problems.append(f"missing table {table.name}")
            continue
        existing = {column["name"] for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name not in existing:
                problems.append(f"missing column {table.name}.{column.name}")
    for problem in problems:
        logger.warning("schema_drift %s", problem)
        warnings.warn(problem, SchemaDriftWarning, stacklevel=2)
    return problems


def table_available(db: Session, table_name: str) -> bool:
    """True when the table exists; otherwise warn and return False."""
    if inspect(db.connection()).has_table(table_name):
        return True
    logger.warning("schema_drift missing table %s, feature skipped", table_name)
    warnings.warn(f"missing table {table_name}", SchemaDriftWarning, stacklevel=2)
    return False
