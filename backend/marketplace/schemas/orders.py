"""
Order Pydantic schemas for API request/response validation.

Request schemas check types and shapes; business validation (required
customer data, positive quantities, totals that add up) is performed by
``OrderService`` so the same rules apply to API calls and to orders built
from storefront webhooks.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.database.models.order import OrderStatus, PaymentStatus


class ShippingAddress(BaseModel):
    """Delivery address stored on the order as JSON."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, max_length=255, description="Recipient name")
    address1: Optional[str] = Field(None, max_length=255)
    address2: Optional[str] = Field("", max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)


class OrderItemCreate(BaseModel):
    """Line item in an order creation request."""

    product_id: UUID = Field(..., description="Catalog product identifier")
    variant_id: Optional[UUID] = Field(None, description="Catalog variant identifier")
    quantity: int = Field(..., description="Units ordered")
    price: Optional[Decimal] = Field(
        None,
        description="Explicit unit price; defaults to the variant or product price",
    )
    name: Optional[str] = Field(None, max_length=255)
    sku: Optional[str] = Field(None, max_length=100)
    external_product_id: Optional[str] = Field(None, max_length=255)
    external_variant_id: Optional[str] = Field(None, max_length=255)


class OrderCreate(BaseModel):
    """
    Canonical order creation request.

    ``subtotal`` and ``total`` are optional; when supplied they must match
    the amounts recomputed from the items.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    dropshipper_id: UUID
    supplier_id: Optional[UUID] = Field(
        None,
        description="Supplier fulfilling the order; inferred from the items when omitted",
    )
    customer_name: str = Field("", max_length=255)
    customer_email: str = Field("", max_length=255)
    shipping_address: Optional[ShippingAddress] = None
    items: list[OrderItemCreate] = Field(default_factory=list)
    shipping_cost: Decimal = Field(Decimal("0.00"))
    tax: Decimal = Field(Decimal("0.00"))
    subtotal: Optional[Decimal] = None
    total: Optional[Decimal] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping_method: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    external_order_id: Optional[str] = Field(None, max_length=255)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="Target order status")
    note: Optional[str] = Field(None, max_length=1000)


class ShippingPatch(BaseModel):
    """
    Partial shipping update; only non-empty fields are applied.

    A tracking number on a pending or processing order moves it to
    shipped.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    tracking_number: Optional[str] = Field(None, max_length=255)
    tracking_url: Optional[str] = Field(None, max_length=1000)
    shipping_method: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return {
            field: value
            for field, value in self.model_dump().items()
            if value not in (None, "")
        }


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    external_product_id: Optional[str] = None
    external_variant_id: Optional[str] = None
    name: str
    sku: Optional[str] = None
    quantity: int
    price: Decimal
    total: Decimal


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    note: Optional[str] = None
    changed_by: Optional[UUID] = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Order as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    dropshipper_id: UUID
    supplier_id: UUID
    external_order_id: Optional[str] = None
    customer_name: str
    customer_email: str
    shipping_address: dict[str, Any]
    items: list[OrderItemResponse]
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    commission: Decimal
    sourcing_agent_commission: Decimal
    payout_amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    shipping_method: Optional[str] = None
    notes: Optional[str] = None
    settled_at: Optional[datetime] = None
    status_history: list[StatusHistoryResponse]
    created_at: Optional[datetime] = None


class OrderCreatedResponse(BaseModel):
    order: OrderResponse
    created: bool = True
    warnings: list[str] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    skip: int
    limit: int
