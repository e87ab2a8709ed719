"""
Inventory ledger: the single writer of product and variant stock.

Every stock change records an immutable ``InventoryLedgerEntry`` with the
quantity before and after. Order-driven decrements and signed adjustments
are floored at zero (a business policy: oversold stock reads as empty,
not negative); storefront syncs overwrite without a floor.
"""

import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterable, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import get_settings
from marketplace.core.errors import (
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    SettlementError,
)
from marketplace.core.identity import Requester
from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now
from marketplace.database.models.inventory import ChangeType, InventoryLedgerEntry
from marketplace.services.catalog.accessor import (
    CatalogAccessor,
    OwnerKind,
    ProductOwner,
    ProductSnapshot,
)
from marketplace.services.inventory.repository import (
    InventoryRepository,
    StockLevel,
    StockTarget,
    entry_cursor,
)

logger = get_logger(__name__)

RECENT_CHANGES_LIMIT = 10


class StockLine(Protocol):
    """Anything carrying a product, optional variant and quantity (e.g. OrderItem)."""

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    quantity: int


@dataclass(frozen=True)
class StockUpdate:
    target: StockTarget
    quantity: int


@dataclass(frozen=True)
class InventoryFailure:
    target: StockTarget
    reason: str


@dataclass
class InventoryApplication:
    """Outcome of applying an order's items to stock."""

    entries: list[InventoryLedgerEntry] = field(default_factory=list)
    failures: list[InventoryFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class LowStockItem:
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    name: str
    sku: Optional[str]
    quantity: Optional[int]
    threshold: int


@dataclass(frozen=True)
class InventoryStatistics:
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_variants: int
    low_stock_variants: int
    out_of_stock_variants: int
    recent_changes: list[InventoryLedgerEntry]


class LedgerLog:
    """
    Lazy, finite, restartable view over ledger entries.

    Each ``async for`` re-runs the query from the start and streams it in
    pages of ``page_size`` using a keyset cursor.
    """

    def __init__(
        self,
        repository: InventoryRepository,
        product_id: Optional[uuid.UUID],
        variant_id: Optional[uuid.UUID],
        newest_first: bool,
        page_size: int,
        authorize: Optional[Callable] = None,
    ):
        self._repository = repository
        self._product_id = product_id
        self._variant_id = variant_id
        self._newest_first = newest_first
        self._page_size = page_size
        self._authorize = authorize

    def __aiter__(self) -> AsyncIterator[InventoryLedgerEntry]:
        return self._stream()

    async def _stream(self) -> AsyncIterator[InventoryLedgerEntry]:
        if self._authorize is not None:
            await self._authorize()

        cursor = None
        while True:
            page = await self._repository.fetch_entries(
                self._product_id,
                self._variant_id,
                self._newest_first,
                self._page_size,
                after=cursor,
            )
            for entry in page:
                yield entry
            if len(page) < self._page_size:
                return
            cursor = entry_cursor(page[-1])

    async def to_list(self, limit: Optional[int] = None) -> list[InventoryLedgerEntry]:
        entries = []
        async for entry in self:
            entries.append(entry)
            if limit is not None and len(entries) >= limit:
                break
        return entries


def _floor_at_zero(value: int) -> int:
    return max(0, value)


class InventoryLedger:
    """
    Service applying stock changes and recording them in the ledger.

    Mutating calls check that the requester owns the product (the owning
    supplier, or the owning sourcing agent for agent-owned products);
    admins and the system identity may change any stock.
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        repository: Optional[InventoryRepository] = None,
        catalog: Optional[CatalogAccessor] = None,
    ):
        if repository is None or catalog is None:
            if session is None:
                raise ValueError("session is required when repository or catalog is omitted")
        self.repository = repository or InventoryRepository(session)
        self.catalog = catalog or CatalogAccessor(session)
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Resolution and authorization
    # ------------------------------------------------------------------

    async def _resolve(self, target: StockTarget) -> ProductSnapshot:
        product = await self.catalog.get_product(target.product_id)
        if product is None:
            raise NotFoundError("Product not found", **target.describe())

        if target.variant_id is not None:
            variant = await self.catalog.get_variant(target.variant_id)
            if variant is None or variant.product_id != product.id:
                raise NotFoundError("Product variant not found", **target.describe())

        return product

    @staticmethod
    def _authorize(product: ProductSnapshot, requester: Requester) -> None:
        if requester.is_privileged:
            return
        if product.owner.kind == OwnerKind.SUPPLIER and requester.acts_as_supplier(
            product.owner.id
        ):
            return
        if product.owner.kind == OwnerKind.SOURCING_AGENT and requester.acts_as_sourcing_agent(
            product.owner.id
        ):
            return
        raise ForbiddenError(
            "Not authorized to change stock of this product",
            product_id=str(product.id),
            **requester.describe(),
        )

    @staticmethod
    def _scope(requester: Requester) -> Optional[ProductOwner]:
        if requester.is_privileged:
            return None
        if requester.supplier_id is not None:
            return ProductOwner.supplier(requester.supplier_id)
        if requester.sourcing_agent_id is not None:
            return ProductOwner.sourcing_agent(requester.sourcing_agent_id)
        raise ForbiddenError(
            "Inventory is only visible to product owners",
            **requester.describe(),
        )

    # ------------------------------------------------------------------
    # Core read-modify-write
    # ------------------------------------------------------------------

    async def _change(
        self,
        target: StockTarget,
        compute: Callable[[int], int],
        change_type: ChangeType,
        requester: Requester,
        notes: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
    ) -> InventoryLedgerEntry:
        product = await self._resolve(target)
        self._authorize(product, requester)

        async with self.repository.locked(target) as row:
            if row is None:
                raise NotFoundError("Stock row not found", **target.describe())

            previous = row.inventory_quantity or 0
            new_quantity = compute(previous)
            row.inventory_quantity = new_quantity

            entry = InventoryLedgerEntry(
                id=uuid.uuid4(),
                product_id=target.product_id,
                variant_id=target.variant_id,
                previous_quantity=previous,
                new_quantity=new_quantity,
                change_amount=new_quantity - previous,
                change_type=change_type,
                order_id=order_id,
                user_id=requester.user_id,
                notes=notes,
                created_at=utc_now(),
            )
            await self.repository.add_entry(entry)

        logger.info(
            "Inventory updated",
            change_type=change_type.value,
            previous_quantity=previous,
            new_quantity=new_quantity,
            order_id=str(order_id) if order_id else None,
            **target.describe(),
        )
        return entry

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def apply_manual(
        self,
        target: StockTarget,
        new_quantity: int,
        requester: Requester,
        notes: Optional[str] = None,
    ) -> InventoryLedgerEntry:
        """
        Set stock to an absolute quantity.

        Raises:
            InvalidInputError: If new_quantity is negative
            NotFoundError: If the product or variant does not exist
            ForbiddenError: If the requester does not own the product
        """
        if new_quantity < 0:
            raise InvalidInputError(
                "Quantity cannot be negative",
                new_quantity=new_quantity,
                **target.describe(),
            )
        return await self._change(
            target,
            lambda _previous: new_quantity,
            ChangeType.MANUAL,
            requester,
            notes=notes or "Manual inventory update",
        )

    async def apply_order(
        self,
        items: Iterable[StockLine],
        order_id: uuid.UUID,
        requester: Requester,
    ) -> InventoryApplication:
        """
        Decrement stock for every order item, floored at zero.

        Items are applied in a stable (product, variant) order so that two
        orders touching the same rows lock them in the same sequence. Each
        item runs in its own savepoint: one failing item is reported in
        ``failures`` while the others are still applied.

        Args:
            items: Order items (product_id, variant_id, quantity)
            order_id: Order referenced by every entry
            requester: Acting identity recorded on the entries

        Returns:
            InventoryApplication with the written entries and the failures
        """
        application = InventoryApplication()
        lines = sorted(
            items,
            key=lambda line: StockTarget(line.product_id, line.variant_id).sort_key(),
        )

        for line in lines:
            target = StockTarget(line.product_id, line.variant_id)
            quantity = line.quantity
            try:
                async with self.repository.savepoint():
                    entry = await self._change(
                        target,
                        lambda previous: _floor_at_zero(previous - quantity),
                        ChangeType.ORDER,
                        requester,
                        notes=f"Order {order_id}",
                        order_id=order_id,
                    )
                application.entries.append(entry)
            except (SettlementError, SQLAlchemyError) as e:
                logger.warning(
                    "Failed to apply order item to inventory",
                    order_id=str(order_id),
                    quantity=quantity,
                    error=str(e),
                    error_type=type(e).__name__,
                    **target.describe(),
                )
                application.failures.append(InventoryFailure(target=target, reason=str(e)))

        return application

    async def apply_sync(
        self,
        target: StockTarget,
        new_quantity: int,
        source: str,
        requester: Requester,
    ) -> InventoryLedgerEntry:
        """Overwrite stock with a quantity reported by an external system."""
        return await self._change(
            target,
            lambda _previous: new_quantity,
            ChangeType.SYNC,
            requester,
            notes=f"Synced from {source}",
        )

    async def apply_adjustment(
        self,
        target: StockTarget,
        delta: int,
        change_type: ChangeType,
        requester: Requester,
        notes: Optional[str] = None,
    ) -> InventoryLedgerEntry:
        """
        Apply a signed correction such as a customer return, floored at zero.

        Raises:
            InvalidInputError: If change_type is not RETURN or ADJUSTMENT
        """
        if change_type not in (ChangeType.RETURN, ChangeType.ADJUSTMENT):
            raise InvalidInputError(
                "Adjustments must be of type return or adjustment",
                change_type=change_type.value,
            )
        return await self._change(
            target,
            lambda previous: _floor_at_zero(previous + delta),
            change_type,
            requester,
            notes=notes,
        )

    async def bulk_apply(
        self,
        updates: Sequence[StockUpdate],
        requester: Requester,
        notes: Optional[str] = None,
    ) -> list[InventoryLedgerEntry]:
        """
        Apply a batch of manual updates.

        Entries that cannot be resolved or that the requester may not change
        are skipped and omitted from the result.
        """
        entries = []
        for update in sorted(updates, key=lambda u: u.target.sort_key()):
            try:
                async with self.repository.savepoint():
                    entry = await self.apply_manual(
                        update.target,
                        update.quantity,
                        requester,
                        notes=notes or "Bulk inventory update",
                    )
                entries.append(entry)
            except (NotFoundError, ForbiddenError, InvalidInputError) as e:
                logger.info(
                    "Skipping bulk inventory update",
                    reason=type(e).__name__,
                    **update.target.describe(),
                )

        logger.info(
            "Bulk inventory update applied",
            requested=len(updates),
            applied=len(entries),
        )
        return entries

    def query_log(
        self,
        product_id: Optional[uuid.UUID] = None,
        variant_id: Optional[uuid.UUID] = None,
        newest_first: bool = True,
        requester: Optional[Requester] = None,
    ) -> LedgerLog:
        """
        Return a restartable async iterable over matching ledger entries.

        When a requester is given, ownership of the product is checked the
        first time iteration starts.

        Raises:
            InvalidInputError: If neither product_id nor variant_id is given
        """
        if product_id is None and variant_id is None:
            raise InvalidInputError("product_id or variant_id is required")

        authorize = None
        if requester is not None:

            async def authorize() -> None:
                resolved_product_id = product_id
                if resolved_product_id is None:
                    variant = await self.catalog.get_variant(variant_id)
                    if variant is None:
                        raise NotFoundError(
                            "Product variant not found", variant_id=str(variant_id)
                        )
                    resolved_product_id = variant.product_id
                product = await self._resolve(StockTarget(resolved_product_id))
                self._authorize(product, requester)

        return LedgerLog(
            self.repository,
            product_id,
            variant_id,
            newest_first,
            self.settings.ledger_page_size,
            authorize=authorize,
        )

    async def low_stock(
        self,
        requester: Requester,
        threshold: Optional[int] = None,
    ) -> list[LowStockItem]:
        """Products and variants at or below the threshold, or untracked."""
        if threshold is None:
            threshold = self.settings.low_stock_threshold
        if threshold < 0:
            raise InvalidInputError("Threshold cannot be negative", threshold=threshold)

        levels = await self.repository.list_stock_levels(self._scope(requester), threshold)
        return [
            LowStockItem(
                product_id=level.product_id,
                variant_id=level.variant_id,
                name=level.name,
                sku=level.sku,
                quantity=level.quantity,
                threshold=threshold,
            )
            for level in levels
        ]

    async def statistics(self, requester: Requester) -> InventoryStatistics:
        """Stock counts and the most recent changes in the requester's scope."""
        scope = self._scope(requester)
        threshold = self.settings.low_stock_threshold
        levels = await self.repository.list_stock_levels(scope)
        recent = await self.repository.recent_entries(scope, limit=RECENT_CHANGES_LIMIT)

        products = [level for level in levels if level.variant_id is None]
        variants = [level for level in levels if level.variant_id is not None]

        return InventoryStatistics(
            total_products=len(products),
            low_stock_products=_count_low(products, threshold),
            out_of_stock_products=_count_out(products),
            total_variants=len(variants),
            low_stock_variants=_count_low(variants, threshold),
            out_of_stock_variants=_count_out(variants),
            recent_changes=list(recent),
        )


def _count_low(levels: list[StockLevel], threshold: int) -> int:
    return sum(1 for level in levels if level.quantity is None or level.quantity <= threshold)


def _count_out(levels: list[StockLevel]) -> int:
    return sum(1 for level in levels if not level.quantity)
