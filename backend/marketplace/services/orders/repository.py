"""
Order data access repository.

Orders are inserted inside a savepoint so that a unique violation on the
order number or on the storefront order id can be told apart and retried
or resolved without aborting the request transaction. Status transitions
read the order under a row lock (``SELECT ... FOR UPDATE``).
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import ConflictError, SettlementError
from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order, OrderStatus

logger = get_logger(__name__)


class OrderRepositoryError(SettlementError):
    """Base exception for order repository errors."""


class DuplicateOrderNumberError(ConflictError):
    """Raised when a generated order number is already taken."""


class DuplicateExternalOrderError(ConflictError):
    """Raised when an order with the same storefront order id exists."""


def _violated_constraint(error: IntegrityError) -> str:
    orig = getattr(error, "orig", None)
    name = getattr(orig, "constraint_name", None)
    if name:
        return name
    return str(orig or error)


class OrderRepository:
    """
    Repository for order persistence.

    Provides async methods for inserting orders with their items and
    history, locked reads for transitions, and scoped listings.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(self, order: Order) -> Order:
        """
        Insert an order with its items and initial history.

        Raises:
            DuplicateOrderNumberError: If the order number is taken
            DuplicateExternalOrderError: If the storefront order id exists
            OrderRepositoryError: On any other database failure
        """
        try:
            async with self.session.begin_nested():
                self.session.add(order)
                await self.session.flush()
        except IntegrityError as e:
            constraint = _violated_constraint(e)
            if "external_order_id" in constraint:
                raise DuplicateExternalOrderError(
                    "Order already exists for this storefront order",
                    external_order_id=order.external_order_id,
                ) from e
            if "order_number" in constraint:
                raise DuplicateOrderNumberError(
                    "Order number already in use",
                    order_number=order.order_number,
                ) from e
            logger.error(
                "Order insert violated a constraint",
                order_number=order.order_number,
                constraint=constraint,
            )
            raise OrderRepositoryError(
                "Failed to create order",
                order_number=order.order_number,
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Database error creating order",
                order_number=order.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderRepositoryError(
                "Failed to create order",
                order_number=order.order_number,
            ) from e

        logger.debug("Order persisted", order_id=str(order.id), order_number=order.order_number)
        return order

    async def _scalar(self, stmt, message: str, **context):
        try:
            result = await self.session.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(message, error=str(e), error_type=type(e).__name__, **context)
            raise OrderRepositoryError(message, **context) from e

    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]:
        return await self._scalar(
            select(Order).where(Order.id == order_id),
            "Failed to load order",
            order_id=str(order_id),
        )

    async def get_order_by_external_id(self, external_order_id: str) -> Optional[Order]:
        return await self._scalar(
            select(Order).where(Order.external_order_id == external_order_id),
            "Failed to load order by external id",
            external_order_id=external_order_id,
        )

    async def order_number_exists(self, order_number: str) -> bool:
        count = await self._scalar(
            select(func.count()).select_from(Order).where(Order.order_number == order_number),
            "Failed to check order number",
            order_number=order_number,
        )
        return bool(count)

    async def list_orders(
        self,
        supplier_id: Optional[uuid.UUID] = None,
        dropshipper_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Sequence[Order]:
        """
        List orders newest first with optional ownership and status filters.

        Args:
            supplier_id: Restrict to one supplier's orders
            dropshipper_id: Restrict to one dropshipper's orders
            status: Restrict to a status
            skip: Rows to skip
            limit: Maximum rows to return
        """
        stmt = select(Order)
        if supplier_id is not None:
            stmt = stmt.where(Order.supplier_id == supplier_id)
        if dropshipper_id is not None:
            stmt = stmt.where(Order.dropshipper_id == dropshipper_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit)

        try:
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list orders",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderRepositoryError("Failed to list orders") from e

    @asynccontextmanager
    async def locked(self, order_id: uuid.UUID) -> AsyncIterator[Optional[Order]]:
        """
        Yield the order with its row locked for the rest of the transaction.

        ``populate_existing`` refreshes an order already in the identity map
        so the caller sees the committed state of a concurrent writer.
        """
        order = await self._scalar(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update(of=Order)
            .execution_options(populate_existing=True),
            "Failed to lock order",
            order_id=str(order_id),
        )
        yield order

    async def save(self, order: Order) -> Order:
        try:
            await self.session.flush()
            return order
        except SQLAlchemyError as e:
            logger.error(
                "Failed to save order",
                order_id=str(order.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderRepositoryError("Failed to save order", order_id=str(order.id)) from e
