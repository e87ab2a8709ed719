"""
Settlement schemas for commission history and subscription charges.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.database.models.payment import (
    PaymentMethod,
    PaymentRecordStatus,
    PaymentType,
)


class PaymentRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: PaymentType
    amount: Decimal
    currency: str
    status: PaymentRecordStatus
    payment_method: PaymentMethod
    supplier_id: Optional[UUID] = None
    sourcing_agent_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    transaction_id: str
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class ChartPointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    amount: Decimal


class CommissionHistoryResponse(BaseModel):
    """Commission earned by the requester's supplier or sourcing agent profile."""

    payee_kind: str
    payee_id: UUID
    start: datetime
    end: datetime
    total_commission: Decimal
    commission_count: int
    recent: list[PaymentRecordResponse]
    chart_data: list[ChartPointResponse]


class SubscriptionChargeRequest(BaseModel):
    subscription_id: UUID
    supplier_id: UUID
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    plan_id: UUID
    plan_name: str = Field(..., min_length=1, max_length=255)
    plan_price: Decimal = Field(..., ge=0)
    currency: str = Field("TRY", min_length=3, max_length=3)
    interval: str = Field("monthly", max_length=20)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()
