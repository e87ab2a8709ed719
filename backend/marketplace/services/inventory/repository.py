"""
Inventory data access with row locking and keyset-paged ledger reads.

Stock lives on ``products.inventory_quantity`` and
``product_variants.inventory_quantity``. Every read-modify-write of one
of those columns happens while the row is locked with ``SELECT ... FOR
UPDATE``; the lock is released when the surrounding transaction ends.
"""

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional, Sequence, Union

from sqlalchemy import or_, select, tuple_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import SettlementError
from marketplace.core.logging import get_logger
from marketplace.database.models.catalog import Product, ProductVariant
from marketplace.database.models.inventory import InventoryLedgerEntry
from marketplace.services.catalog.accessor import OwnerKind, ProductOwner

logger = get_logger(__name__)

StockRow = Union[Product, ProductVariant]


class InventoryRepositoryError(SettlementError):
    """Raised when inventory rows cannot be read or written."""


@dataclass(frozen=True)
class StockTarget:
    """Stock being changed: a variant when ``variant_id`` is set, else the product."""

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None

    def sort_key(self) -> tuple[str, str]:
        return (str(self.product_id), str(self.variant_id or ""))

    def describe(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "variant_id": str(self.variant_id) if self.variant_id else None,
        }


@dataclass(frozen=True)
class StockLevel:
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    name: str
    sku: Optional[str]
    quantity: Optional[int]


@dataclass(frozen=True)
class LedgerCursor:
    """Position after the last entry of a page, for keyset pagination."""

    created_at: datetime
    id: uuid.UUID


def _owner_clause(scope: Optional[ProductOwner]):
    if scope is None:
        return None
    if scope.kind == OwnerKind.SUPPLIER:
        return Product.supplier_id == scope.id
    return Product.sourcing_agent_id == scope.id


class InventoryRepository:
    """
    Repository for stock rows and inventory ledger entries.

    Methods raise ``InventoryRepositoryError`` for database failures; domain
    decisions (flooring, authorization) belong to ``InventoryLedger``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _wrap(self, e: SQLAlchemyError, message: str, **context) -> InventoryRepositoryError:
        logger.error(
            message,
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        return InventoryRepositoryError(message, **context)

    @asynccontextmanager
    async def locked(self, target: StockTarget) -> AsyncIterator[Optional[StockRow]]:
        """
        Lock the stock row for ``target`` and yield it.

        Yields None when the row does not exist. Only the stock table is
        named in ``FOR UPDATE OF``; eagerly joined owner rows stay unlocked.
        """
        if target.variant_id is not None:
            stmt = (
                select(ProductVariant)
                .where(
                    ProductVariant.id == target.variant_id,
                    ProductVariant.product_id == target.product_id,
                )
                .with_for_update(of=ProductVariant)
            )
        else:
            stmt = (
                select(Product)
                .where(Product.id == target.product_id)
                .with_for_update(of=Product)
            )

        try:
            result = await self.session.execute(stmt)
            row = result.scalars().first()
        except SQLAlchemyError as e:
            raise self._wrap(e, "Failed to lock stock row", **target.describe()) from e

        yield row

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Run the block in a nested transaction rolled back on error."""
        async with self.session.begin_nested():
            yield

    async def add_entry(self, entry: InventoryLedgerEntry) -> InventoryLedgerEntry:
        try:
            self.session.add(entry)
            await self.session.flush()
            return entry
        except SQLAlchemyError as e:
            raise self._wrap(
                e,
                "Failed to write inventory ledger entry",
                product_id=str(entry.product_id),
                change_type=entry.change_type.value,
            ) from e

    async def fetch_entries(
        self,
        product_id: Optional[uuid.UUID],
        variant_id: Optional[uuid.UUID],
        newest_first: bool,
        limit: int,
        after: Optional[LedgerCursor] = None,
    ) -> Sequence[InventoryLedgerEntry]:
        """
        Fetch one page of ledger entries ordered by (created_at, id).

        Args:
            product_id: Restrict to a product (including its variants)
            variant_id: Restrict to a single variant
            newest_first: Descending order when True
            limit: Page size
            after: Cursor of the last entry of the previous page
        """
        stmt = select(InventoryLedgerEntry)
        if variant_id is not None:
            stmt = stmt.where(InventoryLedgerEntry.variant_id == variant_id)
        if product_id is not None:
            stmt = stmt.where(InventoryLedgerEntry.product_id == product_id)

        key = tuple_(InventoryLedgerEntry.created_at, InventoryLedgerEntry.id)
        if after is not None:
            position = tuple_(after.created_at, after.id)
            stmt = stmt.where(key < position if newest_first else key > position)

        if newest_first:
            stmt = stmt.order_by(
                InventoryLedgerEntry.created_at.desc(),
                InventoryLedgerEntry.id.desc(),
            )
        else:
            stmt = stmt.order_by(
                InventoryLedgerEntry.created_at.asc(),
                InventoryLedgerEntry.id.asc(),
            )

        try:
            result = await self.session.execute(stmt.limit(limit))
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise self._wrap(
                e,
                "Failed to read inventory ledger",
                product_id=str(product_id) if product_id else None,
                variant_id=str(variant_id) if variant_id else None,
            ) from e

    async def recent_entries(
        self,
        scope: Optional[ProductOwner],
        limit: int = 10,
    ) -> Sequence[InventoryLedgerEntry]:
        stmt = (
            select(InventoryLedgerEntry)
            .join(Product, Product.id == InventoryLedgerEntry.product_id)
            .order_by(
                InventoryLedgerEntry.created_at.desc(),
                InventoryLedgerEntry.id.desc(),
            )
            .limit(limit)
        )
        clause = _owner_clause(scope)
        if clause is not None:
            stmt = stmt.where(clause)

        try:
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise self._wrap(e, "Failed to read recent inventory changes") from e

    async def list_stock_levels(
        self,
        scope: Optional[ProductOwner],
        threshold: Optional[int] = None,
    ) -> list[StockLevel]:
        """
        List product and variant stock, optionally only at or below a threshold.

        Rows with untracked (NULL) stock always match a threshold filter.
        """
        product_stmt = select(Product)
        variant_stmt = select(ProductVariant, Product).join(
            Product, Product.id == ProductVariant.product_id
        )

        clause = _owner_clause(scope)
        if clause is not None:
            product_stmt = product_stmt.where(clause)
            variant_stmt = variant_stmt.where(clause)

        if threshold is not None:
            product_stmt = product_stmt.where(
                or_(
                    Product.inventory_quantity.is_(None),
                    Product.inventory_quantity <= threshold,
                )
            )
            variant_stmt = variant_stmt.where(
                or_(
                    ProductVariant.inventory_quantity.is_(None),
                    ProductVariant.inventory_quantity <= threshold,
                )
            )

        try:
            products = (await self.session.execute(product_stmt.order_by(Product.name))).scalars().all()
            variants = (
                await self.session.execute(
                    variant_stmt.order_by(Product.name, ProductVariant.name)
                )
            ).all()
        except SQLAlchemyError as e:
            raise self._wrap(e, "Failed to list stock levels", threshold=threshold) from e

        levels = [
            StockLevel(
                product_id=product.id,
                variant_id=None,
                name=product.name,
                sku=product.sku,
                quantity=product.inventory_quantity,
            )
            for product in products
        ]
        levels.extend(
            StockLevel(
                product_id=product.id,
                variant_id=variant.id,
                name=f"{product.name} / {variant.name}",
                sku=variant.sku,
                quantity=variant.inventory_quantity,
            )
            for variant, product in variants
        )
        return levels


def entry_cursor(entry: InventoryLedgerEntry) -> LedgerCursor:
    return LedgerCursor(created_at=entry.created_at, id=entry.id)

