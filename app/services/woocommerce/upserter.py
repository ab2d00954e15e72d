"""Idempotent local upserts keyed by WooCommerce ids.

Rows are matched by remote id first, then by a fallback key (sku for
products and variants, email for customers) among rows not yet linked.
Nothing here commits; callers own the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models.catalog import Customer, Product, ProductVariant, Sale
from app.services.woocommerce import mapper
from app.services.woocommerce.errors import SyncValidationError, WooSyncError

logger = logging.getLogger(__name__)

_DECIMAL_COLUMNS = frozenset({"price", "regular_price", "sale_price", "total"})

_MODELS = {
    mapper.ENTITY_PRODUCT: (Product, "woo_product_id"),
    mapper.ENTITY_VARIANT: (ProductVariant, "woo_variation_id"),
    mapper.ENTITY_CUSTOMER: (Customer, "woo_customer_id"),
    mapper.ENTITY_ORDER: (Sale, "woo_order_id"),
}

DELETED_STATUS = {
    mapper.ENTITY_PRODUCT: "trash",
    mapper.ENTITY_VARIANT: "trash",
    mapper.ENTITY_CUSTOMER: "deleted",
    mapper.ENTITY_ORDER: "deleted",
}


@dataclass
class UpsertResult:
    entity_type: str
    entity_id: int
    created: bool = False
    changed: bool = False


def model_for(entity_type: str):
    try:
        return _MODELS[entity_type]
    except KeyError:
        raise SyncValidationError(f"Unsupported entity type {entity_type!r}") from None


def _coerce(column: str, value: Any) -> Any:
    if column in _DECIMAL_COLUMNS and value is not None:
        return Decimal(str(value))
    return value


def _apply(entity: Any, values: dict[str, Any]) -> bool:
    changed = False
    for column, raw in values.items():
        value = _coerce(column, raw)
        if getattr(entity, column) != value:
            setattr(entity, column, value)
            changed = True
    return changed


class LocalUpserter:
    def __init__(self, db: Session, config: Settings | None = None):
        self.db = db
        self.settings = config or default_settings

    # ============ Lookups and link-back ============

    def get(self, entity_type: str, entity_id: int):
        model, _ = model_for(entity_type)
        return self.db.get(model, entity_id)

    def find_by_remote_id(self, entity_type: str, remote_id: int | None):
        if not remote_id:
            return None
        model, column = model_for(entity_type)
        return self.db.query(model).filter(getattr(model, column) == int(remote_id)).first()

    def remote_id_of(self, entity_type: str, entity_id: int) -> int | None:
        entity = self.get(entity_type, entity_id)
        if entity is None:
            return None
        _, column = model_for(entity_type)
        return getattr(entity, column)

    def link_remote_id(self, entity_type: str, entity_id: int, remote_id: int):
        """Store the remote id on the local entity.

        Returns the linked entity, or None when the local row no longer
        exists. The caller decides whether a missing link matters.
        """
        entity = self.get(entity_type, entity_id)
        if entity is None:
            return None
        _, column = model_for(entity_type)
        setattr(entity, column, int(remote_id))
        entity.woo_synced_at = datetime.now(UTC)
        self.db.flush()
        return entity

    def mark_deleted(self, entity_type: str, remote_id: int) -> UpsertResult | None:
        entity = self.find_by_remote_id(entity_type, remote_id)
        if entity is None:
            return None
        status = DELETED_STATUS[entity_type]
        changed = entity.status != status
        entity.status = status
        entity.woo_synced_at = datetime.now(UTC)
        self.db.flush()
        return UpsertResult(entity_type=entity_type, entity_id=entity.id, changed=changed)

    # ============ Upserts ============

    def upsert_product(self, values: dict[str, Any], variations: list[dict] | None = None) -> UpsertResult:
        remote_id = values.get("woo_product_id")
        product = self.find_by_remote_id(mapper.ENTITY_PRODUCT, remote_id)
        if product is None and values.get("sku"):
            product = (
                self.db.query(Product)
                .filter(Product.sku == values["sku"])
                .filter(Product.woo_product_id.is_(None))
                .first()
            )
        created = product is None
        if created:
            if not remote_id and not values.get("sku"):
                raise SyncValidationError("Product payload has neither id nor sku")
            product = Product(name=values.get("name") or "Woo Product")
            self.db.add(product)
        changed = _apply(product, values)
        product.woo_synced_at = datetime.now(UTC)
        self.db.flush()

        for variation in variations or []:
            result = self.upsert_variant(product.id, mapper.map_remote_variation(variation))
            changed = changed or result.changed or result.created
        return UpsertResult(mapper.ENTITY_PRODUCT, product.id, created=created, changed=changed and not created)

    def upsert_variant(self, product_id: int, values: dict[str, Any]) -> UpsertResult:
        remote_id = values.get("woo_variation_id")
        variant = self.find_by_remote_id(mapper.ENTITY_VARIANT, remote_id)
        if variant is None and values.get("sku"):
            variant = (
                self.db.query(ProductVariant)
                .filter(ProductVariant.product_id == product_id)
                .filter(ProductVariant.sku == values["sku"])
                .filter(ProductVariant.woo_variation_id.is_(None))
                .first()
            )
        created = variant is None
        if created:
            if not remote_id and not values.get("sku"):
                raise SyncValidationError("Variation payload has neither id nor sku")
            variant = ProductVariant(product_id=product_id)
            self.db.add(variant)
        changed = _apply(variant, {**values, "product_id": product_id})
        variant.woo_synced_at = datetime.now(UTC)
        self.db.flush()
        return UpsertResult(mapper.ENTITY_VARIANT, variant.id, created=created, changed=changed and not created)

    def _find_customer_by_email(self, email: str | None) -> Customer | None:
        if not email:
            return None
        return (
            self.db.query(Customer)
            .filter(func.lower(Customer.email) == email.lower())
            .filter(Customer.woo_customer_id.is_(None))
            .first()
        )

    def upsert_customer(self, values: dict[str, Any]) -> UpsertResult:
        remote_id = values.get("woo_customer_id")
        customer = self.find_by_remote_id(mapper.ENTITY_CUSTOMER, remote_id)
        if customer is None:
            customer = self._find_customer_by_email(values.get("email"))
        created = customer is None
        if created:
            if not remote_id and not values.get("email"):
                raise SyncValidationError("Customer payload has neither id nor email")
            customer = Customer(full_name=values.get("full_name") or "Woo Customer")
            self.db.add(customer)
        changed = _apply(customer, values)
        customer.woo_synced_at = datetime.now(UTC)
        self.db.flush()
        return UpsertResult(mapper.ENTITY_CUSTOMER, customer.id, created=created, changed=changed and not created)

    def upsert_order(self, values: dict[str, Any], customer: Customer | None = None) -> UpsertResult:
        remote_id = values.get("woo_order_id")
        if not remote_id:
            raise SyncValidationError("Order payload has no id")
        sale = self.find_by_remote_id(mapper.ENTITY_ORDER, remote_id)
        created = sale is None
        if created:
            sale = Sale(woo_order_id=remote_id)
            self.db.add(sale)
        if customer is not None:
            values = {**values, "customer_id": customer.id}
        changed = _apply(sale, values)
        sale.woo_synced_at = datetime.now(UTC)
        self.db.flush()
        return UpsertResult(mapper.ENTITY_ORDER, sale.id, created=created, changed=changed and not created)

    def ensure_customer_for_order(self, order: dict[str, Any], client=None) -> Customer | None:
        """Find or create the local customer an order belongs to.

        Guest checkouts (customer_id == 0) get a pseudo customer keyed by
        billing email or phone. Registered customers are linked by woo id and,
        when missing locally, either fetched (``woo_id`` mode) or synthesized
        from billing data (``email`` mode).
        """
        billing = order.get("billing") if isinstance(order.get("billing"), dict) else {}
        remote_customer_id = mapper.int_or_none(order.get("customer_id")) or 0

        if remote_customer_id > 0:
            existing = self.find_by_remote_id(mapper.ENTITY_CUSTOMER, remote_customer_id)
            if existing is not None:
                return existing
            if self.settings.woo_order_customer_mode == "woo_id" and client is not None:
                remote = client.get_customer(remote_customer_id)
                values = mapper.map_remote_customer(remote)
            else:
                values = mapper.map_remote_customer(
                    {
                        "id": remote_customer_id,
                        "email": billing.get("email"),
                        "first_name": billing.get("first_name"),
                        "last_name": billing.get("last_name"),
                        "billing": billing,
                        "shipping": order.get("shipping"),
                    }
                )
            result = self.upsert_customer(values)
            return self.db.get(Customer, result.entity_id)

        email = mapper.text_or_none(billing.get("email"))
        phone = mapper.text_or_none(billing.get("phone"))
        if not email and not phone:
            return None
        query = self.db.query(Customer)
        if email:
            query = query.filter(func.lower(Customer.email) == email.lower())
        else:
            query = query.filter(Customer.phone == phone)
        customer = query.first()
        if customer is not None:
            return customer

        values = mapper.map_remote_customer(
            {
                "email": email,
                "first_name": billing.get("first_name"),
                "last_name": billing.get("last_name"),
                "billing": billing,
                "shipping": order.get("shipping"),
            }
        )
        if not email and values["full_name"] == "Woo Customer":
            values["full_name"] = phone
        customer = Customer(**{key: value for key, value in values.items() if key != "woo_customer_id"})
        customer.status = "guest"
        self.db.add(customer)
        self.db.flush()
        logger.info("woo_guest_customer_created customer_id=%s order_id=%s", customer.id, order.get("id"))
        return customer

    def apply_remote(self, entity_type: str, data: dict[str, Any], client=None, variations=None) -> UpsertResult:
        """Map a full remote payload and upsert it."""
        if entity_type == mapper.ENTITY_PRODUCT:
            return self.upsert_product(mapper.map_remote_product(data), variations)
        if entity_type == mapper.ENTITY_CUSTOMER:
            return self.upsert_customer(mapper.map_remote_customer(data))
        if entity_type == mapper.ENTITY_ORDER:
            customer = None
            try:
                customer = self.ensure_customer_for_order(data, client)
            except WooSyncError as exc:
                logger.warning("woo_order_customer_link_failed order_id=%s error=%s", data.get("id"), exc)
            values = mapper.map_remote_order(data, self.settings.woo_default_currency)
            return self.upsert_order(values, customer)
        raise SyncValidationError(f"Unsupported entity type {entity_type!r}")
