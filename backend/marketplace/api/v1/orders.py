"""
Order API endpoints.

Creation, listing, retrieval, status transitions and shipping updates.
Domain errors raised by ``OrderService`` propagate to the application's
exception handler, which maps them to HTTP status codes.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from marketplace.api.deps import CurrentRequester, OrderServiceDep
from marketplace.core.logging import get_logger
from marketplace.schemas.orders import (
    OrderCreate,
    OrderCreatedResponse,
    OrderListResponse,
    OrderResponse,
    ShippingPatch,
    StatusUpdateRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
    description="Create an order with recomputed totals, commission and inventory deduction",
)
async def create_order(
    request: OrderCreate,
    requester: CurrentRequester,
    service: OrderServiceDep,
) -> OrderCreatedResponse:
    """
    Create a new order.

    Inventory problems do not fail the request; they are returned in
    ``warnings``.
    """
    logger.info(
        "Creating order",
        dropshipper_id=str(request.dropshipper_id),
        item_count=len(request.items),
        **requester.describe(),
    )

    result = await service.create_order(request, requester)

    return OrderCreatedResponse(
        order=OrderResponse.model_validate(result.order),
        created=result.created,
        warnings=result.warnings,
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="Orders of the requester's supplier or dropshipper, newest first",
)
async def list_orders(
    requester: CurrentRequester,
    service: OrderServiceDep,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by order status"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of records to return"),
) -> OrderListResponse:
    orders = await service.list_orders(requester, status=status_filter, skip=skip, limit=limit)

    logger.info(
        "Orders retrieved",
        count=len(orders),
        status_filter=status_filter,
        **requester.describe(),
    )

    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
)
async def get_order(
    order_id: UUID,
    requester: CurrentRequester,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.get_order(order_id, requester)
    return OrderResponse.model_validate(order)


@router.put(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    description="Transition an order; terminal statuses settle commission",
)
async def update_order_status(
    order_id: UUID,
    request: StatusUpdateRequest,
    requester: CurrentRequester,
    service: OrderServiceDep,
) -> OrderResponse:
    """
    Move an order to a new status.

    Repeating the current status with the same note is accepted and
    changes nothing.
    """
    logger.info(
        "Updating order status",
        order_id=str(order_id),
        new_status=request.status,
        **requester.describe(),
    )

    order = await service.transition_status(order_id, request.status, request.note, requester)
    return OrderResponse.model_validate(order)


@router.put(
    "/{order_id}/shipping",
    response_model=OrderResponse,
    summary="Update shipping details",
    description="Attach tracking details; a tracking number ships pending orders",
)
async def update_shipping(
    order_id: UUID,
    patch: ShippingPatch,
    requester: CurrentRequester,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.attach_shipping(order_id, patch, requester)
    return OrderResponse.model_validate(order)
