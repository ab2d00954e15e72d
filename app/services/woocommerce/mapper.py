"""WooCommerce <-> local data mappers.

Pure functions, no I/O:
- product / variation / customer / order payload -> local column dicts
- local product / variant / customer rows -> Woo create/update payloads

Prices travel as decimal strings in both directions.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from app.services.woocommerce.errors import SyncValidationError

ENTITY_PRODUCT = "product"
ENTITY_VARIANT = "variant"
ENTITY_CUSTOMER = "customer"
ENTITY_ORDER = "order"

_TOPIC_PREFIXES = {
    "product.": ENTITY_PRODUCT,
    "order.": ENTITY_ORDER,
    "customer.": ENTITY_CUSTOMER,
}


def entity_type_for(topic: str | None, resource: str | None = None) -> str | None:
    """Derive the entity type from a topic prefix, falling back to the resource."""
    topic_norm = (topic or "").strip().lower()
    for prefix, entity_type in _TOPIC_PREFIXES.items():
        if topic_norm.startswith(prefix):
            return entity_type
    resource_norm = (resource or "").strip().lower()
    if resource_norm in (ENTITY_PRODUCT, ENTITY_ORDER, ENTITY_CUSTOMER):
        return resource_norm
    if resource_norm in ("variation", ENTITY_VARIANT):
        return ENTITY_VARIANT
    return None


# ============ Primitive helpers ============


def _get(row: Any, key: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(key, default)
    return getattr(row, key, default)


def text_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (str, int, float, Decimal)):
        return None
    text = str(value).strip()
    return text or None


def int_or_none(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return None


def decimal_str(value: Any) -> str | None:
    """Canonical decimal string: "10.00", 10 and Decimal("10.0000") all give "10"."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    normalized = number.normalize()
    if normalized == normalized.to_integral():
        normalized = normalized.quantize(Decimal(1))
    return format(normalized, "f")


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _list_or_none(value: Any) -> list | None:
    return list(value) if isinstance(value, (list, tuple)) else None


# ============ Normalizers ============


def normalize_categories(categories: Any) -> list[dict]:
    """Numeric ids pass through as {"id"}, name-only references become {"name"}."""
    out: list[dict] = []
    for category in _list_or_none(categories) or []:
        if isinstance(category, Mapping):
            category_id = int_or_none(category.get("id"))
            if category_id is not None:
                out.append({"id": category_id})
                continue
            name = text_or_none(category.get("name"))
            if name:
                out.append({"name": name})
            continue
        category_id = int_or_none(category)
        if category_id is not None:
            out.append({"id": category_id})
    return out


def normalize_image(image: Any, with_position: bool = True) -> dict:
    if not isinstance(image, Mapping):
        return {}
    item: dict[str, Any] = {}
    image_id = int_or_none(image.get("id"))
    if image_id is not None:
        item["id"] = image_id
    src = text_or_none(image.get("src"))
    if src:
        item["src"] = src
    for key in ("name", "alt"):
        if isinstance(image.get(key), str):
            item[key] = image[key]
    if with_position:
        position = int_or_none(image.get("position"))
        if position is not None:
            item["position"] = position
    return item


def normalize_images(images: Any) -> list[dict]:
    out = []
    for image in _list_or_none(images) or []:
        item = normalize_image(image)
        if item:
            out.append(item)
    return out


def normalize_attributes(attributes: Any) -> list[dict]:
    out = []
    for attribute in _list_or_none(attributes) or []:
        if not isinstance(attribute, Mapping):
            continue
        item: dict[str, Any] = {}
        attribute_id = int_or_none(attribute.get("id"))
        if attribute_id is not None:
            item["id"] = attribute_id
        name = text_or_none(attribute.get("name"))
        if name:
            item["name"] = name
        item["visible"] = to_bool(attribute["visible"]) if "visible" in attribute else True
        item["variation"] = to_bool(attribute["variation"]) if "variation" in attribute else False
        options = attribute.get("options")
        item["options"] = [
            option.strip() for option in options if isinstance(option, str) and option.strip()
        ] if isinstance(options, (list, tuple)) else []
        if "name" in item or "id" in item:
            out.append(item)
    return out


def normalize_variation_attributes(attributes: Any) -> list[dict]:
    """Variation attributes must be {"name", "option"} pairs.

    {name, value} and {attribute, value} spellings are accepted; pairs
    missing either half are dropped.
    """
    out = []
    for attribute in _list_or_none(attributes) or []:
        if not isinstance(attribute, Mapping):
            continue
        name = text_or_none(attribute.get("name")) or text_or_none(attribute.get("attribute"))
        option = text_or_none(attribute.get("option")) or text_or_none(attribute.get("value"))
        if name and option:
            out.append({"name": name, "option": option})
    return out


# ============ Remote -> local ============


def map_remote_product(data: Mapping[str, Any]) -> dict[str, Any]:
    woo_id = int_or_none(data.get("id")) or 0
    name = text_or_none(data.get("name"))
    if not name:
        name = f"Woo Product #{woo_id}" if woo_id > 0 else "Woo Product"
    return {
        "woo_product_id": woo_id or None,
        "type": text_or_none(data.get("type")) or "simple",
        "status": text_or_none(data.get("status")) or "publish",
        "sku": text_or_none(data.get("sku")),
        "name": name,
        "description": text_or_none(data.get("description")),
        "short_description": text_or_none(data.get("short_description")),
        "price": decimal_str(data.get("price")),
        "regular_price": decimal_str(data.get("regular_price")),
        "sale_price": decimal_str(data.get("sale_price")),
        "manage_stock": to_bool(data.get("manage_stock", False)),
        "stock_quantity": int_or_none(data.get("stock_quantity")),
        "stock_status": text_or_none(data.get("stock_status")),
        "categories": _list_or_none(data.get("categories")),
        "images": _list_or_none(data.get("images")),
        "attributes": _list_or_none(data.get("attributes")),
    }


def map_remote_variation(data: Mapping[str, Any]) -> dict[str, Any]:
    image = data.get("image")
    return {
        "woo_variation_id": int_or_none(data.get("id")),
        "sku": text_or_none(data.get("sku")),
        "status": text_or_none(data.get("status")) or "publish",
        "price": decimal_str(data.get("price")),
        "regular_price": decimal_str(data.get("regular_price")),
        "sale_price": decimal_str(data.get("sale_price")),
        "manage_stock": to_bool(data.get("manage_stock", False)),
        "stock_quantity": int_or_none(data.get("stock_quantity")),
        "stock_status": text_or_none(data.get("stock_status")),
        "attributes": _list_or_none(data.get("attributes")),
        "image": dict(image) if isinstance(image, Mapping) else None,
    }


def _full_name(first: Any, last: Any) -> str:
    return " ".join(part for part in (text_or_none(first), text_or_none(last)) if part)


def map_remote_customer(data: Mapping[str, Any]) -> dict[str, Any]:
    woo_id = int_or_none(data.get("id")) or 0
    billing = data.get("billing") if isinstance(data.get("billing"), Mapping) else {}
    email = text_or_none(data.get("email")) or text_or_none(billing.get("email"))
    full_name = _full_name(data.get("first_name"), data.get("last_name"))
    if not full_name:
        full_name = _full_name(billing.get("first_name"), billing.get("last_name"))
    if not full_name:
        full_name = email or (f"Woo Customer #{woo_id}" if woo_id > 0 else "Woo Customer")
    return {
        "woo_customer_id": woo_id or None,
        "email": email.lower() if email else None,
        "full_name": full_name,
        "phone": text_or_none(billing.get("phone")),
        "billing": dict(billing) if billing else None,
        "shipping": dict(data["shipping"]) if isinstance(data.get("shipping"), Mapping) else None,
    }


def map_remote_order(data: Mapping[str, Any], default_currency: str = "IRR") -> dict[str, Any]:
    customer_id = int_or_none(data.get("customer_id")) or 0
    return {
        "woo_order_id": int_or_none(data.get("id")),
        "status": text_or_none(data.get("status")) or "pending",
        "currency": text_or_none(data.get("currency")) or default_currency,
        "total": decimal_str(data.get("total")),
        "woo_customer_id": customer_id if customer_id > 0 else None,
        "line_items": _list_or_none(data.get("line_items")),
        "billing": dict(data["billing"]) if isinstance(data.get("billing"), Mapping) else None,
        "shipping": dict(data["shipping"]) if isinstance(data.get("shipping"), Mapping) else None,
        "payment_method": text_or_none(data.get("payment_method")),
        "date_created_remote": text_or_none(data.get("date_created")),
    }


def map_remote(topic_or_type: str, data: Mapping[str, Any], default_currency: str = "IRR") -> dict[str, Any]:
    """Map a remote payload to a local column dict by topic ("order.updated") or entity type."""
    entity_type = entity_type_for(topic_or_type) or entity_type_for(None, topic_or_type)
    if entity_type == ENTITY_PRODUCT:
        return map_remote_product(data)
    if entity_type == ENTITY_VARIANT:
        return map_remote_variation(data)
    if entity_type == ENTITY_CUSTOMER:
        return map_remote_customer(data)
    if entity_type == ENTITY_ORDER:
        return map_remote_order(data, default_currency)
    raise SyncValidationError(f"No mapping for topic {topic_or_type!r}")


# ============ Local -> remote ============


def _price_fields(row: Any, payload: dict[str, Any]) -> None:
    regular = decimal_str(_get(row, "regular_price"))
    if regular is None:
        regular = decimal_str(_get(row, "price"))
    if regular is not None:
        payload["regular_price"] = regular
    sale = decimal_str(_get(row, "sale_price"))
    if sale is not None:
        payload["sale_price"] = sale


def _stock_fields(row: Any, payload: dict[str, Any]) -> None:
    manage_stock = to_bool(_get(row, "manage_stock", False))
    payload["manage_stock"] = manage_stock
    if manage_stock:
        quantity = int_or_none(_get(row, "stock_quantity"))
        if quantity is not None:
            payload["stock_quantity"] = quantity
    stock_status = text_or_none(_get(row, "stock_status"))
    if stock_status:
        payload["stock_status"] = stock_status


def map_local_product_payload(row: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": text_or_none(_get(row, "name")) or "CRM Product",
        "type": text_or_none(_get(row, "type")) or "simple",
    }
    sku = text_or_none(_get(row, "sku"))
    if sku:
        payload["sku"] = sku
    for key in ("description", "short_description"):
        value = text_or_none(_get(row, key))
        if value is not None:
            payload[key] = value
    _price_fields(row, payload)
    _stock_fields(row, payload)
    categories = _get(row, "categories")
    if isinstance(categories, (list, tuple)):
        payload["categories"] = normalize_categories(categories)
    images = _get(row, "images")
    if isinstance(images, (list, tuple)):
        payload["images"] = normalize_images(images)
    attributes = _get(row, "attributes")
    if isinstance(attributes, (list, tuple)):
        payload["attributes"] = normalize_attributes(attributes)
    status = text_or_none(_get(row, "status"))
    if status:
        payload["status"] = status
    return payload


def map_local_variant_payload(row: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    sku = text_or_none(_get(row, "sku"))
    if sku:
        payload["sku"] = sku
    _price_fields(row, payload)
    _stock_fields(row, payload)
    attributes = _get(row, "attributes")
    if isinstance(attributes, (list, tuple)):
        payload["attributes"] = normalize_variation_attributes(attributes)
    image = normalize_image(_get(row, "image"), with_position=False)
    if image:
        payload["image"] = image
    return payload


def map_local_customer_payload(row: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    email = text_or_none(_get(row, "email"))
    if email:
        payload["email"] = email
    full_name = text_or_none(_get(row, "full_name")) or ""
    if full_name and full_name != email:
        first, _, last = full_name.partition(" ")
        payload["first_name"] = first
        payload["last_name"] = last
    billing = dict(_get(row, "billing") or {})
    phone = text_or_none(_get(row, "phone"))
    if phone:
        billing["phone"] = phone
    if billing:
        payload["billing"] = billing
    shipping = _get(row, "shipping")
    if isinstance(shipping, Mapping) and shipping:
        payload["shipping"] = dict(shipping)
    return payload


def map_local_order_payload(row: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    status = text_or_none(_get(row, "status"))
    if status:
        payload["status"] = status
    return payload


_LOCAL_MAPPERS = {
    ENTITY_PRODUCT: map_local_product_payload,
    ENTITY_VARIANT: map_local_variant_payload,
    ENTITY_CUSTOMER: map_local_customer_payload,
    ENTITY_ORDER: map_local_order_payload,
}


def map_local_to_remote_create(entity_type: str, row: Any) -> dict[str, Any]:
    mapper = _LOCAL_MAPPERS.get(entity_type)
    if mapper is None:
        raise SyncValidationError(f"Unsupported entity type {entity_type!r}")
    return mapper(row)


def map_local_to_remote_update(entity_type: str, row: Any) -> dict[str, Any]:
    # Woo accepts the full resource shape on PUT; local rows keep no change
    # log, so updates carry the same fields as creates.
    return map_local_to_remote_create(entity_type, row)
