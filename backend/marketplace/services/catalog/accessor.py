"""
Read-only access to catalog data needed for pricing and settlement.

Rows are converted to frozen snapshots at the boundary so the order,
inventory and webhook services never hold live ORM catalog objects.
Product ownership is expressed as a tagged ``ProductOwner`` instead of a
pair of nullable foreign keys.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import SettlementError
from marketplace.core.logging import get_logger
from marketplace.database.models.catalog import Dropshipper, Product, ProductVariant

logger = get_logger(__name__)


class CatalogAccessError(SettlementError):
    """Raised when catalog rows cannot be read."""


class OwnerKind(str, Enum):
    SUPPLIER = "supplier"
    SOURCING_AGENT = "sourcing_agent"


@dataclass(frozen=True)
class ProductOwner:
    """Owner of a product: exactly one supplier or one sourcing agent."""

    kind: OwnerKind
    id: uuid.UUID

    @classmethod
    def supplier(cls, supplier_id: uuid.UUID) -> "ProductOwner":
        return cls(OwnerKind.SUPPLIER, supplier_id)

    @classmethod
    def sourcing_agent(cls, sourcing_agent_id: uuid.UUID) -> "ProductOwner":
        return cls(OwnerKind.SOURCING_AGENT, sourcing_agent_id)


@dataclass(frozen=True)
class ProductSnapshot:
    """
    Pricing and ownership view of a product.

    Attributes:
        commission_rate: Platform percentage of line revenue
        sourcing_agent_rate: Configured rate of the owning agent, None when
            supplier-owned or when the agent has no rate configured
        inventory_quantity: Tracked stock, None when untracked
    """

    id: uuid.UUID
    name: str
    price: Decimal
    commission_rate: Decimal
    owner: ProductOwner
    sku: Optional[str] = None
    sourcing_agent_rate: Optional[Decimal] = None
    inventory_quantity: Optional[int] = None
    external_product_id: Optional[str] = None

    @property
    def supplier_id(self) -> Optional[uuid.UUID]:
        return self.owner.id if self.owner.kind == OwnerKind.SUPPLIER else None

    @property
    def sourcing_agent_id(self) -> Optional[uuid.UUID]:
        return self.owner.id if self.owner.kind == OwnerKind.SOURCING_AGENT else None

    @property
    def has_sourcing_agent(self) -> bool:
        return self.owner.kind == OwnerKind.SOURCING_AGENT


@dataclass(frozen=True)
class VariantSnapshot:
    id: uuid.UUID
    product_id: uuid.UUID
    name: str
    price: Decimal
    sku: Optional[str] = None
    inventory_quantity: Optional[int] = None
    external_variant_id: Optional[str] = None


@dataclass(frozen=True)
class DropshipperSnapshot:
    id: uuid.UUID
    store_name: str
    storefront_id: Optional[str] = None
    user_id: Optional[uuid.UUID] = None


def product_snapshot(product: Product) -> ProductSnapshot:
    """Build a snapshot from a product row with its agent loaded."""
    if product.supplier_id is not None:
        owner = ProductOwner.supplier(product.supplier_id)
        agent_rate = None
    else:
        owner = ProductOwner.sourcing_agent(product.sourcing_agent_id)
        agent = product.sourcing_agent
        agent_rate = agent.commission_rate if agent is not None else None

    return ProductSnapshot(
        id=product.id,
        name=product.name,
        sku=product.sku,
        price=product.price,
        commission_rate=product.commission_rate,
        owner=owner,
        sourcing_agent_rate=agent_rate,
        inventory_quantity=product.inventory_quantity,
        external_product_id=product.external_product_id,
    )


def variant_snapshot(variant: ProductVariant) -> VariantSnapshot:
    return VariantSnapshot(
        id=variant.id,
        product_id=variant.product_id,
        name=variant.name,
        sku=variant.sku,
        price=variant.price,
        inventory_quantity=variant.inventory_quantity,
        external_variant_id=variant.external_variant_id,
    )


class CatalogAccessor:
    """
    Catalog lookups backed by the database.

    Every method returns ``None`` for a miss; callers decide whether a miss
    is an error.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _first(self, stmt, operation: str, **context):
        try:
            result = await self.session.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(
                "Catalog lookup failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise CatalogAccessError(
                "Failed to read catalog",
                operation=operation,
                **context,
            ) from e

    async def get_product(self, product_id: uuid.UUID) -> Optional[ProductSnapshot]:
        product = await self._first(
            select(Product).where(Product.id == product_id),
            "get_product",
            product_id=str(product_id),
        )
        return product_snapshot(product) if product else None

    async def get_variant(self, variant_id: uuid.UUID) -> Optional[VariantSnapshot]:
        variant = await self._first(
            select(ProductVariant).where(ProductVariant.id == variant_id),
            "get_variant",
            variant_id=str(variant_id),
        )
        return variant_snapshot(variant) if variant else None

    async def find_product_by_external_id(
        self, external_product_id: str
    ) -> Optional[ProductSnapshot]:
        """Match a storefront product id against stored external ids."""
        product = await self._first(
            select(Product)
            .where(Product.external_product_id == external_product_id)
            .order_by(Product.created_at)
            .limit(1),
            "find_product_by_external_id",
            external_product_id=external_product_id,
        )
        return product_snapshot(product) if product else None

    async def find_variant_by_external_id(
        self,
        product_id: uuid.UUID,
        external_variant_id: str,
    ) -> Optional[VariantSnapshot]:
        variant = await self._first(
            select(ProductVariant)
            .where(
                ProductVariant.product_id == product_id,
                ProductVariant.external_variant_id == external_variant_id,
            )
            .limit(1),
            "find_variant_by_external_id",
            product_id=str(product_id),
            external_variant_id=external_variant_id,
        )
        return variant_snapshot(variant) if variant else None

    async def find_dropshipper_by_storefront(
        self, storefront_id: str
    ) -> Optional[DropshipperSnapshot]:
        dropshipper = await self._first(
            select(Dropshipper).where(Dropshipper.storefront_id == storefront_id),
            "find_dropshipper_by_storefront",
            storefront_id=storefront_id,
        )
        if dropshipper is None:
            return None
        return DropshipperSnapshot(
            id=dropshipper.id,
            store_name=dropshipper.store_name,
            storefront_id=dropshipper.storefront_id,
            user_id=dropshipper.user_id,
        )
