"""
Inventory ledger model.

Each row records one stock change on a product or a variant: the
quantity before, the quantity after and the signed difference. Rows are
written once and never updated.
"""

import uuid
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import AppendOnlyModel


class ChangeType(str, Enum):
    """
    Reason for a stock change.

    Attributes:
        MANUAL: Absolute quantity set by the product owner
        ORDER: Decrement caused by an order item
        RETURN: Stock returned by a customer
        ADJUSTMENT: Signed correction (damage, recount)
        SYNC: Quantity pushed from an external storefront
    """

    MANUAL = "manual"
    ORDER = "order"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    SYNC = "sync"


class InventoryLedgerEntry(AppendOnlyModel):
    """
    Immutable audit record of one stock change.

    Attributes:
        product_id: Product whose stock (or whose variant's stock) changed
        variant_id: Variant whose stock changed, NULL for product-level stock
        previous_quantity: Quantity before the change (0 when untracked)
        new_quantity: Quantity after the change
        change_amount: new_quantity - previous_quantity
        order_id: Order that caused the change, for ORDER entries
        user_id: Acting user
    """

    __tablename__ = "inventory_ledger_entries"

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="RESTRICT"),
        nullable=True,
    )

    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    change_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    change_type: Mapped[ChangeType] = mapped_column(
        SQLEnum(
            ChangeType,
            name="inventory_change_type",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            create_constraint=True,
        ),
        nullable=False,
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_inventory_ledger_product_created", "product_id", "created_at"),
        Index("ix_inventory_ledger_variant_created", "variant_id", "created_at"),
        CheckConstraint(
            "change_amount = new_quantity - previous_quantity",
            name="ck_inventory_ledger_change_amount",
        ),
    )
