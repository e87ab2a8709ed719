"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata
for Alembic and for relationship resolution.
"""

from marketplace.database.base import AppendOnlyModel, Base, BaseModel
from marketplace.database.models.catalog import (
    Dropshipper,
    Product,
    ProductVariant,
    SourcingAgent,
    Supplier,
)
from marketplace.database.models.inventory import ChangeType, InventoryLedgerEntry
from marketplace.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentStatus,
)
from marketplace.database.models.payment import (
    Payment,
    PaymentMethod,
    PaymentRecordStatus,
    PaymentType,
)

__all__ = [
    "AppendOnlyModel",
    "Base",
    "BaseModel",
    "ChangeType",
    "Dropshipper",
    "InventoryLedgerEntry",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "Payment",
    "PaymentMethod",
    "PaymentRecordStatus",
    "PaymentStatus",
    "PaymentType",
    "Product",
    "ProductVariant",
    "SourcingAgent",
    "Supplier",
]
