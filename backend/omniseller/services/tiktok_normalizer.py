"""Map TikTok Shop product/order payloads onto canonical records.

Pure functions, no I/O. Every optional field degrades to a default instead of
raising, so one odd record never costs a store its whole page.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from omniseller.models.catalog import (
    CanonicalOrder,
    CanonicalProduct,
    OrderLineItem,
    OrderStatus,
    ProductStatus,
)


ORDER_STATUS_MAP: Dict[str, OrderStatus] = {
    "UNPAID": OrderStatus.UNPAID,
    "AWAITING_SHIPMENT": OrderStatus.PROCESSING,
    "AWAITING_COLLECTION": OrderStatus.PROCESSING,
    "IN_TRANSIT": OrderStatus.SHIPPED,
    "DELIVERED": OrderStatus.COMPLETED,
    "COMPLETED": OrderStatus.COMPLETED,
    "CANCELLED": OrderStatus.CANCELLED,
}

NO_SKU = "NO-SKU"
UNKNOWN_CUSTOMER = "Unknown buyer"


def map_order_status(external_status: Optional[str]) -> OrderStatus:
    if not isinstance(external_status, str):
        return OrderStatus.PROCESSING
    return ORDER_STATUS_MAP.get(external_status, OrderStatus.PROCESSING)


def _first(value: Any) -> Dict[str, Any]:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _from_epoch(value: Any) -> Optional[datetime]:
    seconds = _to_int(value)
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _sku_stock(sku: Dict[str, Any]) -> int:
    first = _first(sku.get("inventory"))
    if "quantity" in first:
        return _to_int(first["quantity"])
    return _to_int(sku.get("inventory_quantity"))


def _image_url(image: Dict[str, Any]) -> str:
    thumbs = image.get("thumb_urls")
    if isinstance(thumbs, list) and thumbs and isinstance(thumbs[0], str):
        return thumbs[0]
    for key in ("thumb_url", "url"):
        if isinstance(image.get(key), str):
            return image[key]
    urls = image.get("urls")
    if isinstance(urls, list) and urls and isinstance(urls[0], str):
        return urls[0]
    return ""


def normalize_product(raw: Dict[str, Any], store_id: str) -> CanonicalProduct:
    sku = _first(raw.get("skus"))
    price = _as_dict(sku.get("price"))
    return CanonicalProduct(
        id=str(raw.get("id") or ""),
        store_id=store_id,
        name=str(raw.get("title") or ""),
        sku=str(sku.get("seller_sku") or NO_SKU),
        price=_to_decimal(price.get("tax_exclusive_price")),
        stock_quantity=_sku_stock(sku),
        image_url=_image_url(_first(raw.get("main_images"))),
        units_sold=_to_int(raw.get("sales_count")),
        status=ProductStatus.ACTIVE if raw.get("status") == "ACTIVATE" else ProductStatus.INACTIVE,
    )


def normalize_line_item(raw: Dict[str, Any]) -> OrderLineItem:
    # The search payload has one line item per unit, without a quantity field.
    return OrderLineItem(
        product_id=str(raw.get("product_id") or raw.get("id") or ""),
        name=str(raw.get("product_name") or ""),
        quantity=1,
        price=_to_decimal(raw.get("sale_price")),
        image_url=raw.get("sku_image") if isinstance(raw.get("sku_image"), str) else "",
    )


def _customer_label(raw: Dict[str, Any]) -> str:
    recipient = _as_dict(raw.get("recipient_address"))
    return str(recipient.get("name") or raw.get("buyer_email") or UNKNOWN_CUSTOMER)


def normalize_order(raw: Dict[str, Any], seller_id: str, store_id: str) -> CanonicalOrder:
    created = _from_epoch(raw.get("create_time"))
    items = raw.get("line_items")
    return CanonicalOrder(
        id=str(raw.get("id") or ""),
        seller_id=seller_id,
        store_id=store_id,
        customer_label=_customer_label(raw),
        status=map_order_status(raw.get("status")),
        total_amount=_to_decimal(_as_dict(raw.get("payment")).get("total_amount")),
        created_at=created.date() if created else None,
        updated_at=_from_epoch(raw.get("update_time")),
        line_items=[normalize_line_item(i) for i in items if isinstance(i, dict)] if isinstance(items, list) else [],
    )


def normalize_products(data: Dict[str, Any], store_id: str) -> List[CanonicalProduct]:
    products = data.get("products")
    if not isinstance(products, list):
        return []
    return [normalize_product(p, store_id) for p in products if isinstance(p, dict)]


def normalize_orders(data: Dict[str, Any], seller_id: str, store_id: str) -> List[CanonicalOrder]:
    orders = data.get("orders")
    if not isinstance(orders, list):
        return []
    return [normalize_order(o, seller_id, store_id) for o in orders if isinstance(o, dict)]
