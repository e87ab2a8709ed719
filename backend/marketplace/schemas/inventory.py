"""
Inventory Pydantic schemas for stock updates and ledger queries.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.database.models.inventory import ChangeType


class StockUpdateRequest(BaseModel):
    """Absolute stock level for a product or one of its variants."""

    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(..., ge=0, description="New absolute quantity")
    notes: Optional[str] = Field(None, max_length=1000)


class BulkStockItem(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(..., ge=0)


class BulkStockUpdateRequest(BaseModel):
    items: list[BulkStockItem] = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class AdjustmentRequest(BaseModel):
    """Signed correction such as a customer return or a recount."""

    product_id: UUID
    variant_id: Optional[UUID] = None
    delta: int = Field(..., description="Signed quantity change")
    change_type: ChangeType = ChangeType.ADJUSTMENT
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("change_type")
    @classmethod
    def validate_change_type(cls, v: ChangeType) -> ChangeType:
        if v not in (ChangeType.RETURN, ChangeType.ADJUSTMENT):
            raise ValueError("change_type must be 'return' or 'adjustment'")
        return v


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    previous_quantity: int
    new_quantity: int
    change_amount: int
    change_type: ChangeType
    order_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class BulkStockUpdateResponse(BaseModel):
    requested: int
    applied: int
    entries: list[LedgerEntryResponse]


class LowStockItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    variant_id: Optional[UUID] = None
    name: str
    sku: Optional[str] = None
    quantity: Optional[int] = None
    threshold: int


class InventoryStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_variants: int
    low_stock_variants: int
    out_of_stock_variants: int
    recent_changes: list[LedgerEntryResponse]
