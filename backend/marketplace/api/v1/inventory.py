"""
Inventory API endpoints.

Stock updates by product owners, signed adjustments, the ledger of
changes, low-stock reporting and inventory statistics.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from marketplace.api.deps import CurrentRequester, InventoryLedgerDep
from marketplace.core.logging import get_logger
from marketplace.schemas.inventory import (
    AdjustmentRequest,
    BulkStockUpdateRequest,
    BulkStockUpdateResponse,
    InventoryStatisticsResponse,
    LedgerEntryResponse,
    LowStockItemResponse,
    StockUpdateRequest,
)
from marketplace.services.inventory.ledger import StockUpdate
from marketplace.services.inventory.repository import StockTarget

logger = get_logger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.put(
    "/stock",
    response_model=LedgerEntryResponse,
    summary="Set stock level",
)
async def update_stock(
    request: StockUpdateRequest,
    requester: CurrentRequester,
    ledger: InventoryLedgerDep,
) -> LedgerEntryResponse:
    entry = await ledger.apply_manual(
        StockTarget(request.product_id, request.variant_id),
        request.quantity,
        requester,
        notes=request.notes,
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post(
    "/bulk-update",
    response_model=BulkStockUpdateResponse,
    summary="Set several stock levels",
    description="Entries that cannot be resolved or are not owned by the requester are skipped",
)
async def bulk_update_stock(
    request: BulkStockUpdateRequest,
    requester: CurrentRequester,
    ledger: InventoryLedgerDep,
) -> BulkStockUpdateResponse:
    updates = [
        StockUpdate(StockTarget(item.product_id, item.variant_id), item.quantity)
        for item in request.items
    ]
    entries = await ledger.bulk_apply(updates, requester, notes=request.notes)

    return BulkStockUpdateResponse(
        requested=len(updates),
        applied=len(entries),
        entries=[LedgerEntryResponse.model_validate(entry) for entry in entries],
    )


@router.post(
    "/adjustments",
    response_model=LedgerEntryResponse,
    summary="Apply a stock adjustment",
    description="Signed change for returns and corrections; stock never drops below zero",
)
async def adjust_stock(
    request: AdjustmentRequest,
    requester: CurrentRequester,
    ledger: InventoryLedgerDep,
) -> LedgerEntryResponse:
    entry = await ledger.apply_adjustment(
        StockTarget(request.product_id, request.variant_id),
        request.delta,
        request.change_type,
        requester,
        notes=request.notes,
    )
    return LedgerEntryResponse.model_validate(entry)


@router.get(
    "/logs",
    response_model=list[LedgerEntryResponse],
    summary="Inventory ledger",
    description="Stock changes of a product or variant, newest first by default",
)
async def get_inventory_logs(
    requester: CurrentRequester,
    ledger: InventoryLedgerDep,
    product_id: Optional[UUID] = Query(None),
    variant_id: Optional[UUID] = Query(None),
    newest_first: bool = Query(True),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of entries"),
) -> list[LedgerEntryResponse]:
    log = ledger.query_log(
        product_id=product_id,
        variant_id=variant_id,
        newest_first=newest_first,
        requester=requester,
    )
    entries = await log.to_list(limit=limit)
    return [LedgerEntryResponse.model_validate(entry) for entry in entries]


@router.get(
    "/low-stock",
    response_model=list[LowStockItemResponse],
    summary="Low stock products and variants",
)
async def get_low_stock(
    requester: CurrentRequester,
    ledger: InventoryLedgerDep,
    threshold: Optional[int] = Query(None, ge=0),
) -> list[LowStockItemResponse]:
    items = await ledger.low_stock(requester, threshold=threshold)

    logger.info("Low stock report generated", count=len(items), **requester.describe())

    return [LowStockItemResponse.model_validate(item) for item in items]


@router.get(
    "/statistics",
    response_model=InventoryStatisticsResponse,
    summary="Inventory statistics",
)
async def get_inventory_statistics(
    requester: CurrentRequester,
    ledger: InventoryLedgerDep,
) -> InventoryStatisticsResponse:
    stats = await ledger.statistics(requester)
    return InventoryStatisticsResponse.model_validate(stats)
