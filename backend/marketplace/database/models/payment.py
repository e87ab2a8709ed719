"""
Payment records for commissions, subscription charges and refunds.

Commission records are keyed by a deterministic transaction id so that a
settlement can be retried or raced without producing a second record for
the same order and payee.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import BaseModel


class PaymentType(str, Enum):
    COMMISSION = "commission"
    SUBSCRIPTION = "subscription"
    REFUND = "refund"
    OTHER = "other"


class PaymentRecordStatus(str, Enum):
    """Lifecycle of a payment record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    SYSTEM = "system"
    OTHER = "other"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Payment(BaseModel):
    """
    Money movement owed to or charged from exactly one payee.

    Attributes:
        supplier_id: Payee when the record concerns a supplier
        sourcing_agent_id: Payee when the record concerns a sourcing agent
        transaction_id: Unique id; deterministic for commission and refund
            records (comm_<order>_<supplier>, sa_comm_<order>_<agent>,
            refund_<original>)
        details: Free-form context such as the order number or plan name
    """

    __tablename__ = "payments"

    type: Mapped[PaymentType] = mapped_column(
        SQLEnum(
            PaymentType,
            name="payment_type",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[PaymentRecordStatus] = mapped_column(
        SQLEnum(
            PaymentRecordStatus,
            name="payment_record_status",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentRecordStatus.PENDING,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentMethod.SYSTEM,
    )

    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=True,
    )

    sourcing_agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("sourcing_agents.id", ondelete="RESTRICT"),
        nullable=True,
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )

    transaction_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    __table_args__ = (
        CheckConstraint(
            "(supplier_id IS NULL) <> (sourcing_agent_id IS NULL)",
            name="ck_payments_single_payee",
        ),
        Index("ix_payments_supplier_created", "supplier_id", "created_at"),
        Index("ix_payments_agent_created", "sourcing_agent_id", "created_at"),
    )
