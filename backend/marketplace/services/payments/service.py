"""
Settlement ledger: commission, refund and subscription payment records.

Commission is recorded from the commission terms snapshotted on each
order item, so the per-payee records always add up to the order's
``commission`` and ``sourcing_agent_commission``. Recording is idempotent:
each record has a deterministic transaction id and an existing id is
never written twice, whether it is found up front or hit as a unique
violation from a concurrent writer.
"""

import uuid
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import get_settings
from marketplace.core.errors import InvalidInputError
from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now
from marketplace.database.models.order import Order, OrderStatus
from marketplace.database.models.payment import (
    Payment,
    PaymentMethod,
    PaymentRecordStatus,
    PaymentType,
)
from marketplace.services.catalog.accessor import OwnerKind, ProductOwner
from marketplace.services.commission.calculator import (
    ZERO,
    CommissionLine,
    line_commission,
    to_money,
)
from marketplace.services.payments.repository import (
    DuplicateTransactionError,
    PaymentRepository,
)

logger = get_logger(__name__)

RECENT_COMMISSIONS_LIMIT = 10

# A payee is the same "supplier xor sourcing agent" party that owns products.
Payee = ProductOwner


def commission_transaction_id(order_id: uuid.UUID, payee: Payee) -> str:
    prefix = "comm" if payee.kind == OwnerKind.SUPPLIER else "sa_comm"
    return f"{prefix}_{order_id}_{payee.id}"


def refund_transaction_id(original_transaction_id: str) -> str:
    return f"refund_{original_transaction_id}"


@dataclass(frozen=True)
class PlanSnapshot:
    id: uuid.UUID
    name: str
    price: Decimal
    currency: str
    interval: str = "monthly"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: uuid.UUID
    supplier_id: uuid.UUID
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD


@dataclass(frozen=True)
class ChartPoint:
    day: date
    amount: Decimal


@dataclass
class CommissionHistory:
    """Commission earned by one payee over a date range."""

    payee: Payee
    start: datetime
    end: datetime
    total_commission: Decimal = ZERO
    commission_count: int = 0
    recent: list[Payment] = field(default_factory=list)
    chart_data: list[ChartPoint] = field(default_factory=list)


class SettlementLedger:
    """
    Service writing settlement records for orders and subscriptions.

    The order service calls ``finalize`` whenever an order enters a
    terminal status.
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        repository: Optional[PaymentRepository] = None,
    ):
        if repository is None and session is None:
            raise ValueError("session is required when repository is omitted")
        self.repository = repository or PaymentRepository(session)
        self.settings = get_settings()

    async def _record_once(self, payment: Payment) -> Optional[Payment]:
        """Insert unless the transaction id exists; None when already recorded."""
        if await self.repository.transaction_exists(payment.transaction_id):
            logger.debug("Payment already recorded", transaction_id=payment.transaction_id)
            return None
        try:
            return await self.repository.create_payment(payment)
        except DuplicateTransactionError:
            logger.info(
                "Concurrent writer recorded payment first",
                transaction_id=payment.transaction_id,
            )
            return None

    def _split_by_payee(self, order: Order) -> tuple[dict, dict]:
        platform: dict[uuid.UUID, Decimal] = OrderedDict()
        agents: dict[uuid.UUID, Decimal] = OrderedDict()

        for item in order.items:
            breakdown = line_commission(
                CommissionLine(
                    unit_price=item.price,
                    quantity=item.quantity,
                    commission_rate=item.commission_rate,
                    sourcing_agent_rate=item.sourcing_agent_commission_rate,
                    has_sourcing_agent=item.sourcing_agent_id is not None,
                ),
                self.settings.default_sourcing_agent_rate,
            )
            supplier_id = item.supplier_id or order.supplier_id
            platform[supplier_id] = platform.get(supplier_id, ZERO) + breakdown.commission
            if item.sourcing_agent_id is not None:
                agents[item.sourcing_agent_id] = (
                    agents.get(item.sourcing_agent_id, ZERO)
                    + breakdown.sourcing_agent_commission
                )

        return platform, agents

    async def record_commission(self, order: Order) -> list[Payment]:
        """
        Record one completed commission record per supplier and per agent.

        Payees whose commission is zero get no record.

        Returns:
            Records created by this call (empty when already settled)
        """
        platform, agents = self._split_by_payee(order)
        candidates = [(Payee.supplier(sid), amount) for sid, amount in platform.items()]
        candidates.extend((Payee.sourcing_agent(aid), amount) for aid, amount in agents.items())

        created = []
        for payee, amount in candidates:
            if amount <= ZERO:
                continue
            payment = Payment(
                id=uuid.uuid4(),
                type=PaymentType.COMMISSION,
                amount=to_money(amount),
                currency=order.currency,
                status=PaymentRecordStatus.COMPLETED,
                payment_method=PaymentMethod.SYSTEM,
                supplier_id=payee.id if payee.kind == OwnerKind.SUPPLIER else None,
                sourcing_agent_id=payee.id if payee.kind == OwnerKind.SOURCING_AGENT else None,
                order_id=order.id,
                transaction_id=commission_transaction_id(order.id, payee),
                details={
                    "order_number": order.order_number,
                    "payee_kind": payee.kind.value,
                },
                created_at=utc_now(),
            )
            recorded = await self._record_once(payment)
            if recorded is not None:
                created.append(recorded)

        logger.info(
            "Commission recorded",
            order_id=str(order.id),
            created=len(created),
        )
        return created

    async def _reverse_commission(self, order: Order) -> list[Payment]:
        originals = await self.repository.get_payments_by_order_id(
            order.id, PaymentType.COMMISSION
        )

        created = []
        for original in originals:
            refund = Payment(
                id=uuid.uuid4(),
                type=PaymentType.REFUND,
                amount=original.amount,
                currency=original.currency,
                status=PaymentRecordStatus.COMPLETED,
                payment_method=PaymentMethod.SYSTEM,
                supplier_id=original.supplier_id,
                sourcing_agent_id=original.sourcing_agent_id,
                order_id=order.id,
                transaction_id=refund_transaction_id(original.transaction_id),
                details={
                    "order_number": order.order_number,
                    "reverses": original.transaction_id,
                    "reason": order.status.value,
                },
                created_at=utc_now(),
            )
            recorded = await self._record_once(refund)
            if recorded is not None:
                created.append(recorded)
            if original.status != PaymentRecordStatus.REFUNDED:
                original.status = PaymentRecordStatus.REFUNDED
                await self.repository.save(original)

        logger.info(
            "Commission reversed",
            order_id=str(order.id),
            created=len(created),
        )
        return created

    async def _warn_if_reversed(self, order: Order) -> None:
        # reversed commission stays reversed; a later delivery does not re-record it
        commissions = await self.repository.get_payments_by_order_id(
            order.id, PaymentType.COMMISSION
        )
        reversed_ids = [
            p.transaction_id for p in commissions if p.status == PaymentRecordStatus.REFUNDED
        ]
        if reversed_ids:
            logger.warning(
                "Delivered order has reversed commission",
                order_id=str(order.id),
                order_number=order.order_number,
                reversed=reversed_ids,
            )

    async def finalize(self, order: Order) -> list[Payment]:
        """
        Settle an order that entered a terminal status.

        Delivered orders get their commission recorded; cancelled and
        refunded orders get every existing commission record reversed.
        Safe to call any number of times.
        """
        if order.status == OrderStatus.DELIVERED:
            await self._warn_if_reversed(order)
            created = await self.record_commission(order)
        elif order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            created = await self._reverse_commission(order)
        else:
            return []

        if order.settled_at is None:
            order.settled_at = utc_now()
        return created

    async def record_subscription_charge(
        self,
        subscription: SubscriptionSnapshot,
        plan: PlanSnapshot,
    ) -> Payment:
        """
        Charge a supplier's subscription.

        The record is created pending and completed immediately with a
        generated transaction id; no payment gateway is involved.
        """
        if plan.price < 0:
            raise InvalidInputError("Plan price cannot be negative", plan_id=str(plan.id))

        payment = Payment(
            id=uuid.uuid4(),
            type=PaymentType.SUBSCRIPTION,
            amount=to_money(plan.price),
            currency=plan.currency.upper(),
            status=PaymentRecordStatus.PENDING,
            payment_method=subscription.payment_method,
            supplier_id=subscription.supplier_id,
            subscription_id=subscription.id,
            transaction_id=f"pending_{uuid.uuid4().hex}",
            details={"plan_name": plan.name, "interval": plan.interval},
            created_at=utc_now(),
        )
        await self.repository.create_payment(payment)

        payment.status = PaymentRecordStatus.COMPLETED
        payment.transaction_id = f"sub_{subscription.id.hex}_{uuid.uuid4().hex[:12]}"
        await self.repository.save(payment)

        logger.info(
            "Subscription charged",
            subscription_id=str(subscription.id),
            supplier_id=str(subscription.supplier_id),
            amount=str(payment.amount),
        )
        return payment

    async def history(
        self,
        payee: Payee,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CommissionHistory:
        """
        Summarize completed commission for a payee.

        Args:
            payee: Supplier or sourcing agent
            start: Range start, defaults to ``commission_history_days`` ago
            end: Range end, defaults to now
        """
        end = end or utc_now()
        start = start or end - timedelta(days=self.settings.commission_history_days)
        if start > end:
            raise InvalidInputError(
                "start must not be after end",
                start=start.isoformat(),
                end=end.isoformat(),
            )

        records = await self.repository.list_commissions(payee, start, end)

        per_day: dict[date, Decimal] = defaultdict(lambda: ZERO)
        total = ZERO
        for record in records:
            total += record.amount
            per_day[record.created_at.date()] += record.amount

        return CommissionHistory(
            payee=payee,
            start=start,
            end=end,
            total_commission=to_money(total),
            commission_count=len(records),
            recent=records[:RECENT_COMMISSIONS_LIMIT],
            chart_data=[
                ChartPoint(day=day, amount=to_money(amount))
                for day, amount in sorted(per_day.items())
            ],
        )
