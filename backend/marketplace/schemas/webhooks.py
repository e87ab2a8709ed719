"""
Storefront webhook payload schemas.

Payloads follow the Shopify order and inventory webhook shapes. Unknown
fields are ignored and missing optional fields default to zero or empty
so that partially populated deliveries still parse.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _StorefrontModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class StorefrontLineItem(_StorefrontModel):
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    price: Decimal = Decimal("0")
    quantity: int = 0
    title: str = ""
    sku: Optional[str] = None


class StorefrontAddress(_StorefrontModel):
    first_name: str = ""
    last_name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    province: str = ""
    zip: str = ""
    country: str = ""
    phone: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class StorefrontCustomer(_StorefrontModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ShippingLine(_StorefrontModel):
    price: Decimal = Decimal("0")


class StorefrontOrderPayload(_StorefrontModel):
    """Order created on a dropshipper's storefront."""

    id: str = Field(..., description="Storefront order id")
    shop_domain: str = Field(..., description="Storefront identifier of the dropshipper")
    line_items: list[StorefrontLineItem] = Field(default_factory=list)
    shipping_address: StorefrontAddress = Field(default_factory=StorefrontAddress)
    customer: StorefrontCustomer = Field(default_factory=StorefrontCustomer)
    email: str = ""
    shipping_lines: list[ShippingLine] = Field(default_factory=list)
    total_tax: Decimal = Decimal("0")
    currency: Optional[str] = None
    note: Optional[str] = None
    financial_status: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else None

    @property
    def shipping_cost(self) -> Decimal:
        return self.shipping_lines[0].price if self.shipping_lines else Decimal("0")


class InventorySyncPayload(_StorefrontModel):
    """Stock level pushed by an external system for a storefront product."""

    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    source: str = "shopify"


class WebhookOrderResponse(BaseModel):
    order_id: UUID
    order_number: str
    created: bool
    warnings: list[str] = Field(default_factory=list)


class WebhookInventoryResponse(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    previous_quantity: Optional[int] = None
    new_quantity: int
