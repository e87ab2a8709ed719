"""
Settlement API endpoints: commission history and subscription charges.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from marketplace.api.deps import AdminRequester, CurrentRequester, SettlementLedgerDep
from marketplace.core.errors import ForbiddenError, InvalidInputError
from marketplace.core.identity import Requester
from marketplace.core.logging import get_logger
from marketplace.schemas.payments import (
    ChartPointResponse,
    CommissionHistoryResponse,
    PaymentRecordResponse,
    SubscriptionChargeRequest,
)
from marketplace.services.payments.service import (
    Payee,
    PlanSnapshot,
    SubscriptionSnapshot,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _resolve_payee(
    requester: Requester,
    supplier_id: Optional[UUID],
    sourcing_agent_id: Optional[UUID],
) -> Payee:
    """Admins may name any payee; everyone else gets their own profile."""
    if supplier_id and sourcing_agent_id:
        raise InvalidInputError("Specify either supplier_id or sourcing_agent_id, not both")

    if requester.is_admin:
        if supplier_id:
            return Payee.supplier(supplier_id)
        if sourcing_agent_id:
            return Payee.sourcing_agent(sourcing_agent_id)

    if requester.supplier_id is not None and supplier_id in (None, requester.supplier_id):
        return Payee.supplier(requester.supplier_id)
    if requester.sourcing_agent_id is not None and sourcing_agent_id in (
        None,
        requester.sourcing_agent_id,
    ):
        return Payee.sourcing_agent(requester.sourcing_agent_id)

    raise ForbiddenError(
        "Commission history is only available to suppliers and sourcing agents",
        **requester.describe(),
    )


@router.get(
    "/commissions",
    response_model=CommissionHistoryResponse,
    summary="Commission history",
    description="Completed commission records with daily totals, last 30 days by default",
)
async def get_commission_history(
    requester: CurrentRequester,
    settlement: SettlementLedgerDep,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    supplier_id: Optional[UUID] = Query(None, description="Admin only"),
    sourcing_agent_id: Optional[UUID] = Query(None, description="Admin only"),
) -> CommissionHistoryResponse:
    payee = _resolve_payee(requester, supplier_id, sourcing_agent_id)
    history = await settlement.history(payee, start=start, end=end)

    logger.info(
        "Commission history retrieved",
        payee_kind=payee.kind.value,
        payee_id=str(payee.id),
        commission_count=history.commission_count,
    )

    return CommissionHistoryResponse(
        payee_kind=payee.kind.value,
        payee_id=payee.id,
        start=history.start,
        end=history.end,
        total_commission=history.total_commission,
        commission_count=history.commission_count,
        recent=[PaymentRecordResponse.model_validate(record) for record in history.recent],
        chart_data=[ChartPointResponse.model_validate(point) for point in history.chart_data],
    )


@router.post(
    "/subscriptions/charge",
    response_model=PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Charge a subscription",
)
async def charge_subscription(
    request: SubscriptionChargeRequest,
    requester: AdminRequester,
    settlement: SettlementLedgerDep,
) -> PaymentRecordResponse:
    payment = await settlement.record_subscription_charge(
        SubscriptionSnapshot(
            id=request.subscription_id,
            supplier_id=request.supplier_id,
            payment_method=request.payment_method,
        ),
        PlanSnapshot(
            id=request.plan_id,
            name=request.plan_name,
            price=request.plan_price,
            currency=request.currency,
            interval=request.interval,
        ),
    )

    logger.info(
        "Subscription charge recorded",
        subscription_id=str(request.subscription_id),
        transaction_id=payment.transaction_id,
        **requester.describe(),
    )

    return PaymentRecordResponse.model_validate(payment)
