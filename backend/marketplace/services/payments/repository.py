"""
Payment repository for settlement records.

Commission and refund records are identified by deterministic transaction
ids backed by a unique index; an insert that collides with an existing
id raises ``DuplicateTransactionError`` so the caller can treat it as
"already recorded".
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import ConflictError, SettlementError
from marketplace.core.logging import get_logger
from marketplace.database.models.payment import (
    Payment,
    PaymentRecordStatus,
    PaymentType,
)
from marketplace.services.catalog.accessor import OwnerKind, ProductOwner

logger = get_logger(__name__)


class PaymentRepositoryError(SettlementError):
    """Base exception for payment repository errors."""


class DuplicateTransactionError(ConflictError):
    """Raised when a payment with the same transaction id already exists."""


class PaymentRepository:
    """
    Repository for payment record data access.

    Every method wraps ``SQLAlchemyError`` into ``PaymentRepositoryError``
    with the identifiers involved as context.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_payment(self, payment: Payment) -> Payment:
        """
        Insert a payment record inside a savepoint.

        Raises:
            DuplicateTransactionError: If the transaction id is taken
            PaymentRepositoryError: If the insert fails otherwise
        """
        try:
            async with self.session.begin_nested():
                self.session.add(payment)
                await self.session.flush()
        except IntegrityError as e:
            raise DuplicateTransactionError(
                "Payment already recorded",
                transaction_id=payment.transaction_id,
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Payment creation failed",
                transaction_id=payment.transaction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentRepositoryError(
                "Payment creation failed",
                transaction_id=payment.transaction_id,
            ) from e

        logger.info(
            "Payment recorded",
            payment_id=str(payment.id),
            type=payment.type.value,
            amount=str(payment.amount),
            transaction_id=payment.transaction_id,
        )
        return payment

    async def transaction_exists(self, transaction_id: str) -> bool:
        try:
            result = await self.session.execute(
                select(func.count())
                .select_from(Payment)
                .where(Payment.transaction_id == transaction_id)
            )
            return bool(result.scalar())
        except SQLAlchemyError as e:
            logger.error(
                "Payment lookup failed",
                transaction_id=transaction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentRepositoryError(
                "Payment lookup failed",
                transaction_id=transaction_id,
            ) from e

    async def get_payments_by_order_id(
        self,
        order_id: uuid.UUID,
        payment_type: Optional[PaymentType] = None,
    ) -> list[Payment]:
        """
        Retrieve payments for an order, oldest first.

        Args:
            order_id: Order identifier
            payment_type: Restrict to one payment type
        """
        stmt = select(Payment).where(Payment.order_id == order_id)
        if payment_type is not None:
            stmt = stmt.where(Payment.type == payment_type)

        try:
            result = await self.session.execute(stmt.order_by(Payment.created_at.asc()))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Payment retrieval by order ID failed",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentRepositoryError(
                "Payment retrieval failed",
                order_id=str(order_id),
            ) from e

    async def list_commissions(
        self,
        payee: ProductOwner,
        start: datetime,
        end: datetime,
    ) -> list[Payment]:
        """Completed commission records of a payee created in [start, end], newest first."""
        payee_column = (
            Payment.supplier_id if payee.kind == OwnerKind.SUPPLIER else Payment.sourcing_agent_id
        )
        stmt = (
            select(Payment)
            .where(
                payee_column == payee.id,
                Payment.type == PaymentType.COMMISSION,
                Payment.status == PaymentRecordStatus.COMPLETED,
                Payment.created_at >= start,
                Payment.created_at <= end,
            )
            .order_by(Payment.created_at.desc())
        )

        try:
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Commission history retrieval failed",
                payee_kind=payee.kind.value,
                payee_id=str(payee.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentRepositoryError(
                "Commission history retrieval failed",
                payee_id=str(payee.id),
            ) from e

    async def save(self, payment: Payment) -> Payment:
        try:
            await self.session.flush()
            return payment
        except SQLAlchemyError as e:
            logger.error(
                "Payment update failed",
                payment_id=str(payment.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentRepositoryError(
                "Payment update failed",
                payment_id=str(payment.id),
            ) from e
