from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from omniseller.models.catalog import OrderStatus, ProductStatus
from omniseller.services.tiktok_normalizer import (
    NO_SKU,
    ORDER_STATUS_MAP,
    UNKNOWN_CUSTOMER,
    map_order_status,
    normalize_order,
    normalize_orders,
    normalize_product,
    normalize_products,
)


@pytest.mark.parametrize(
    "external, canonical",
    [
        ("UNPAID", OrderStatus.UNPAID),
        ("AWAITING_SHIPMENT", OrderStatus.PROCESSING),
        ("AWAITING_COLLECTION", OrderStatus.PROCESSING),
        ("IN_TRANSIT", OrderStatus.SHIPPED),
        ("DELIVERED", OrderStatus.COMPLETED),
        ("COMPLETED", OrderStatus.COMPLETED),
        ("CANCELLED", OrderStatus.CANCELLED),
    ],
)
def test_order_status_table(external, canonical):
    assert map_order_status(external) is canonical


@pytest.mark.parametrize("external", ["ON_HOLD", "PARTIALLY_SHIPPING", "", None, "unpaid", 42])
def test_unknown_order_status_maps_to_processing(external):
    assert map_order_status(external) is OrderStatus.PROCESSING


def test_status_table_has_exactly_seven_entries():
    assert len(ORDER_STATUS_MAP) == 7


def test_normalize_full_product():
    raw = {
        "id": "1729",
        "title": "Linen Shirt",
        "status": "ACTIVATE",
        "skus": [
            {
                "seller_sku": "LS-M",
                "price": {"tax_exclusive_price": "19.99", "currency": "USD"},
                "inventory": [{"quantity": 4}, {"quantity": 6}],
            },
            {"seller_sku": "LS-L"},
        ],
        "main_images": [{"thumb_urls": ["https://img.test/a.jpg", "https://img.test/b.jpg"]}],
        "sales_count": 12,
    }

    product = normalize_product(raw, "store-1")

    assert product.id == "1729"
    assert product.store_id == "store-1"
    assert product.name == "Linen Shirt"
    assert product.sku == "LS-M"
    assert product.price == Decimal("19.99")
    assert product.stock_quantity == 4
    assert product.image_url == "https://img.test/a.jpg"
    assert product.units_sold == 12
    assert product.status is ProductStatus.ACTIVE


def test_normalize_product_defaults_for_missing_fields():
    product = normalize_product({"id": "9", "title": "Bare", "status": "DRAFT"}, "store-2")

    assert product.sku == NO_SKU
    assert product.price == Decimal("0")
    assert product.stock_quantity == 0
    assert product.image_url == ""
    assert product.units_sold == 0
    assert product.status is ProductStatus.INACTIVE


def test_normalize_product_tolerates_bad_values():
    raw = {
        "id": 5,
        "title": "Odd",
        "skus": [{"price": {"tax_exclusive_price": "n/a"}, "inventory_quantity": "3"}],
        "main_images": [],
        "sales_count": None,
    }

    product = normalize_product(raw, "s")

    assert product.id == "5"
    assert product.price == Decimal("0")
    assert product.stock_quantity == 3
    assert product.units_sold == 0


def test_normalize_order():
    raw = {
        "id": "576",
        "status": "IN_TRANSIT",
        "create_time": 1700000000,
        "update_time": 1700003600,
        "payment": {"total_amount": "45.10", "currency": "USD"},
        "recipient_address": {"name": "Ada L."},
        "line_items": [
            {"product_id": "p1", "product_name": "Mug", "sale_price": "20.00", "sku_image": "https://img.test/m.jpg"},
            {"product_id": "p2", "product_name": "Tea", "sale_price": "25.10"},
        ],
    }

    order = normalize_order(raw, "seller-42", "store-1")

    assert order.id == "576"
    assert order.seller_id == "seller-42"
    assert order.store_id == "store-1"
    assert order.customer_label == "Ada L."
    assert order.status is OrderStatus.SHIPPED
    assert order.total_amount == Decimal("45.10")
    assert order.created_at == date(2023, 11, 14)
    assert order.updated_at == datetime(2023, 11, 14, 23, 13, 20, tzinfo=timezone.utc)
    assert [li.product_id for li in order.line_items] == ["p1", "p2"]
    assert all(li.quantity == 1 for li in order.line_items)
    assert order.line_items[0].image_url == "https://img.test/m.jpg"
    assert order.line_items[1].image_url == ""
    assert order.line_items[1].price == Decimal("25.10")


def test_normalize_order_defaults():
    order = normalize_order({"id": "1"}, "seller", "store")

    assert order.customer_label == UNKNOWN_CUSTOMER
    assert order.status is OrderStatus.PROCESSING
    assert order.total_amount == Decimal("0")
    assert order.created_at is None
    assert order.updated_at is None
    assert order.line_items == []


def test_normalize_order_falls_back_to_buyer_email():
    order = normalize_order({"id": "1", "buyer_email": "b@example.test"}, "seller", "store")
    assert order.customer_label == "b@example.test"


def test_page_helpers_keep_page_order_and_skip_junk():
    products = normalize_products({"products": [{"id": "a"}, "junk", {"id": "b"}]}, "s")
    orders = normalize_orders({"orders": [{"id": "o2"}, {"id": "o1"}]}, "seller", "s")

    assert [p.id for p in products] == ["a", "b"]
    assert [o.id for o in orders] == ["o2", "o1"]
    assert normalize_products({}, "s") == []
    assert normalize_orders({"orders": None}, "seller", "s") == []


@pytest.mark.parametrize("value", [5, True, "products", {"id": "x"}])
def test_page_helpers_ignore_non_list_pages(value):
    assert normalize_products({"products": value}, "s") == []
    assert normalize_orders({"orders": value}, "seller", "s") == []
