"""
Order models for the settlement lifecycle.

An order is created once, never deleted, and only moves through the
status state machine. Items snapshot price and commission terms at
creation so settlement reproduces the exact split computed then.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import AppendOnlyModel, BaseModel


class OrderStatus(str, Enum):
    """
    Order status enumeration for tracking order lifecycle.

    Attributes:
        PENDING: Order created, not yet picked up by the supplier
        PROCESSING: Supplier is preparing the shipment
        SHIPPED: Handed to the carrier
        DELIVERED: Received by the customer
        CANCELLED: Cancelled before delivery
        REFUNDED: Money returned to the customer
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """
        Create OrderStatus from string value.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except (AttributeError, ValueError):
            raise ValueError(f"Invalid order status: {value}")

    @property
    def is_terminal(self) -> bool:
        """Check if status settles the order."""
        return self in (
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        )


class PaymentStatus(str, Enum):
    """Customer payment state of an order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Order(BaseModel):
    """
    Order placed by a dropshipper's customer for a supplier's products.

    Attributes:
        order_number: Human-readable unique number (ORD-<timestamp>-<hex>)
        external_order_id: Storefront order id, unique when present
        subtotal: Sum of item line totals
        total: subtotal + shipping_cost + tax
        commission: Platform commission over all items
        sourcing_agent_commission: Agent commission over agent-owned items
        payout_amount: total - commission - sourcing_agent_commission
        settled_at: When settlement was first finalized
        version: Optimistic version counter bumped on every update
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Human-readable order number",
    )

    dropshipper_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("dropshippers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    supplier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    external_order_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Storefront order id used for webhook deduplication",
    )

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    tax: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    total: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    commission: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    sourcing_agent_commission: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    payout_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Amount owed to the supplier after commissions",
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="order_payment_status",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    tracking_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    tracking_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    shipping_method: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.position",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_orders_supplier_created", "supplier_id", "created_at"),
        Index("ix_orders_dropshipper_created", "dropshipper_id", "created_at"),
        CheckConstraint(
            "subtotal >= 0 AND shipping_cost >= 0 AND tax >= 0 AND total >= 0",
            name="ck_orders_amounts_non_negative",
        ),
        CheckConstraint(
            "total = subtotal + shipping_cost + tax",
            name="ck_orders_total_balances",
        ),
        CheckConstraint(
            "payout_amount = total - commission - sourcing_agent_commission",
            name="ck_orders_payout_balances",
        ),
    )

    @property
    def latest_history(self) -> Optional["OrderStatusHistory"]:
        return self.status_history[-1] if self.status_history else None


class OrderItem(BaseModel):
    """
    Line item with price and commission terms captured at order time.

    Attributes:
        supplier_id: Owning supplier of the product, if supplier-owned
        sourcing_agent_id: Owning sourcing agent, if agent-owned
        commission_rate: Platform percentage in effect at creation
        sourcing_agent_commission_rate: Agent percentage in effect at creation
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="RESTRICT"),
        nullable=True,
    )

    external_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    external_variant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    price: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    total: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    sourcing_agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )

    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=False,
    )

    sourcing_agent_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=True,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
    )


class OrderStatusHistory(AppendOnlyModel):
    """Append-only record of one accepted status transition."""

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Zero-based position in the order's history",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
    )

    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")
