"""
Catalog models: suppliers, sourcing agents, dropshippers, products, variants.

The settlement subsystem only reads these rows, with one exception: the
inventory ledger is the single writer of ``inventory_quantity`` on
products and variants.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel


class Supplier(BaseModel):
    """Supplier selling products through the marketplace."""

    __tablename__ = "suppliers"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
        comment="Account that owns the supplier profile",
    )

    company_name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class SourcingAgent(BaseModel):
    """
    Sourcing agent listing products on behalf of unlisted manufacturers.

    Attributes:
        commission_rate: Agent percentage of line revenue; when NULL the
            platform default applies
    """

    __tablename__ = "sourcing_agents"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=True,
        comment="Commission percentage earned on agent-owned products",
    )

    __table_args__ = (
        CheckConstraint(
            "commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)",
            name="ck_sourcing_agents_commission_rate",
        ),
    )


class Dropshipper(BaseModel):
    """Dropshipper reselling catalog products through an external storefront."""

    __tablename__ = "dropshippers"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )

    store_name: Mapped[str] = mapped_column(String(255), nullable=False)

    storefront_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Storefront domain used to match incoming webhooks",
    )


class Product(BaseModel):
    """
    Catalog product owned by exactly one supplier or sourcing agent.

    Attributes:
        price: Selling price used when an order item carries none
        commission_rate: Platform percentage of line revenue
        inventory_quantity: Tracked stock, NULL when untracked
        external_product_id: Product id on the dropshipper storefront
    """

    __tablename__ = "products"

    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    sourcing_agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("sourcing_agents.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    cost_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=True,
    )

    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=False,
        default=Decimal("3"),
        comment="Platform commission percentage",
    )

    inventory_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    external_product_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    sourcing_agent: Mapped[Optional["SourcingAgent"]] = relationship(
        "SourcingAgent",
        lazy="joined",
    )

    __table_args__ = (
        CheckConstraint(
            "(supplier_id IS NULL) <> (sourcing_agent_id IS NULL)",
            name="ck_products_single_owner",
        ),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="ck_products_commission_rate",
        ),
    )


class ProductVariant(BaseModel):
    """Purchasable variant of a product with its own price and stock."""

    __tablename__ = "product_variants"

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    cost_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=True,
    )

    inventory_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    external_variant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index(
            "ix_product_variants_external",
            "product_id",
            "external_variant_id",
        ),
        CheckConstraint("price >= 0", name="ck_product_variants_price_non_negative"),
    )
