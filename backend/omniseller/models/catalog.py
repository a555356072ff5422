from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
import enum


class ProductStatus(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class OrderStatus(str, enum.Enum):
    UNPAID = "Unpaid"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class EntityKind(str, enum.Enum):
    PRODUCTS = "products"
    ORDERS = "orders"


class CanonicalProduct(BaseModel):
    id: str
    store_id: str
    name: str
    sku: str
    price: Decimal = Decimal("0")
    stock_quantity: int = 0
    image_url: str = ""
    units_sold: int = 0
    status: ProductStatus = ProductStatus.INACTIVE


class OrderLineItem(BaseModel):
    product_id: str
    name: str
    quantity: int = 1
    price: Decimal = Decimal("0")
    image_url: str = ""


class CanonicalOrder(BaseModel):
    id: str
    seller_id: str
    store_id: str
    customer_label: str
    status: OrderStatus
    total_amount: Decimal = Decimal("0")
    created_at: Optional[date] = None
    updated_at: Optional[datetime] = None
    line_items: List[OrderLineItem] = Field(default_factory=list)
