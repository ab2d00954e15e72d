from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.services.woocommerce.mapper import (
    ENTITY_CUSTOMER,
    ENTITY_ORDER,
    ENTITY_PRODUCT,
    ENTITY_VARIANT,
    decimal_str,
    text_or_none,
)

SALIENT_FIELDS: dict[str, tuple[str, ...]] = {
    ENTITY_PRODUCT: (
        "name",
        "sku",
        "status",
        "type",
        "regular_price",
        "sale_price",
        "manage_stock",
        "stock_quantity",
        "stock_status",
    ),
    ENTITY_VARIANT: ("sku", "regular_price", "sale_price", "manage_stock", "stock_quantity", "stock_status"),
    ENTITY_CUSTOMER: ("email", "full_name", "phone"),
    ENTITY_ORDER: ("status", "currency", "total"),
}

# Salient fields the local to remote payload can carry.
PUSHABLE_FIELDS: dict[str, frozenset[str]] = {
    ENTITY_PRODUCT: frozenset(SALIENT_FIELDS[ENTITY_PRODUCT]),
    ENTITY_VARIANT: frozenset(SALIENT_FIELDS[ENTITY_VARIANT]),
    ENTITY_CUSTOMER: frozenset({"email", "full_name", "phone"}),
    ENTITY_ORDER: frozenset({"status"}),
}

NUMERIC_FIELDS = frozenset({"price", "regular_price", "sale_price", "stock_quantity", "total"})


@dataclass(frozen=True)
class FieldDiff:
    field: str
    local: str | None
    remote: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "local": self.local, "remote": self.remote}


def normalize_value(field: str, value: Any) -> str | None:
    if field in NUMERIC_FIELDS:
        return decimal_str(value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if field == "email":
        text = text_or_none(value)
        return text.lower() if text else None
    return text_or_none(value)


def diff_fields(entity_type: str, local: Any, remote: dict[str, Any]) -> list[FieldDiff]:
    """Compare the salient fields of a local row against a mapped remote dict."""
    diffs = []
    for field in SALIENT_FIELDS.get(entity_type, ()):
        if field not in remote:
            continue
        local_value = local.get(field) if isinstance(local, dict) else getattr(local, field, None)
        left = normalize_value(field, local_value)
        right = normalize_value(field, remote.get(field))
        if left != right:
            diffs.append(FieldDiff(field=field, local=left, remote=right))
    return diffs


def pushable_diffs(entity_type: str, diffs: list[FieldDiff]) -> list[FieldDiff]:
    fields = PUSHABLE_FIELDS.get(entity_type, frozenset())
    return [diff for diff in diffs if diff.field in fields]
