"""
Storefront webhook ingestion.

Translates Shopify-shaped order webhooks into canonical ``OrderCreate``
requests and hands them to ``OrderService`` under the system identity.
Ingestion is idempotent on the storefront order id: a replayed delivery
returns the order created by the first one.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import InvalidInputError, InvalidPayloadError, NotFoundError
from marketplace.core.identity import Requester
from marketplace.core.logging import get_logger
from marketplace.database.models.inventory import InventoryLedgerEntry
from marketplace.database.models.order import PaymentStatus
from marketplace.schemas.orders import OrderCreate, OrderItemCreate, ShippingAddress
from marketplace.schemas.webhooks import (
    InventorySyncPayload,
    StorefrontLineItem,
    StorefrontOrderPayload,
)
from marketplace.services.catalog.accessor import CatalogAccessor, ProductSnapshot
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.inventory.repository import StockTarget
from marketplace.services.orders.repository import (
    DuplicateExternalOrderError,
    OrderRepository,
)
from marketplace.services.orders.service import CreatedOrder, OrderService

logger = get_logger(__name__)


class WebhookIngestionAdapter:
    """Adapter between storefront webhooks and the order and inventory services."""

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        order_service: Optional[OrderService] = None,
        catalog: Optional[CatalogAccessor] = None,
        ledger: Optional[InventoryLedger] = None,
        repository: Optional[OrderRepository] = None,
    ):
        if session is None and None in (order_service, catalog, ledger, repository):
            raise ValueError("session is required when collaborators are omitted")
        self.catalog = catalog or CatalogAccessor(session)
        self.repository = repository or OrderRepository(session)
        self.ledger = ledger or InventoryLedger(session, catalog=self.catalog)
        self.order_service = order_service or OrderService(
            session,
            catalog=self.catalog,
            ledger=self.ledger,
            repository=self.repository,
        )

    async def _replayed(self, external_order_id: str) -> Optional[CreatedOrder]:
        existing = await self.repository.get_order_by_external_id(external_order_id)
        if existing is None:
            return None
        logger.info(
            "Storefront order already ingested",
            external_order_id=external_order_id,
            order_id=str(existing.id),
        )
        return CreatedOrder(order=existing, warnings=[], created=False)

    async def _resolve_item(
        self, line: StorefrontLineItem
    ) -> Optional[tuple[ProductSnapshot, OrderItemCreate]]:
        if not line.product_id or line.quantity <= 0:
            return None

        product = await self.catalog.find_product_by_external_id(line.product_id)
        if product is None:
            return None

        variant = None
        if line.variant_id:
            variant = await self.catalog.find_variant_by_external_id(product.id, line.variant_id)

        return product, OrderItemCreate(
            product_id=product.id,
            variant_id=variant.id if variant else None,
            quantity=line.quantity,
            # a zero price means the storefront did not report one
            price=line.price if line.price > 0 else None,
            name=line.title or None,
            sku=line.sku,
            external_product_id=line.product_id,
            external_variant_id=line.variant_id,
        )

    async def ingest(self, payload: StorefrontOrderPayload) -> CreatedOrder:
        """
        Create an order from a storefront webhook.

        Returns:
            CreatedOrder; ``created`` is False when the storefront order was
            already ingested

        Raises:
            NotFoundError: If no dropshipper owns the storefront
            InvalidPayloadError: If no line item matches the catalog, no
                supplier can be inferred, or the order data is incomplete
        """
        replay = await self._replayed(payload.id)
        if replay is not None:
            return replay

        dropshipper = await self.catalog.find_dropshipper_by_storefront(payload.shop_domain)
        if dropshipper is None:
            raise NotFoundError(
                "No dropshipper found for storefront",
                shop_domain=payload.shop_domain,
            )

        items = []
        supplier_id = None
        for line in payload.line_items:
            resolved = await self._resolve_item(line)
            if resolved is None:
                logger.warning(
                    "Dropping unmatched storefront line item",
                    external_order_id=payload.id,
                    external_product_id=line.product_id,
                    external_variant_id=line.variant_id,
                    quantity=line.quantity,
                )
                continue
            product, item = resolved
            supplier_id = supplier_id or product.supplier_id
            items.append(item)

        if not items:
            raise InvalidPayloadError(
                "No line items match the catalog",
                external_order_id=payload.id,
            )
        if supplier_id is None:
            raise InvalidPayloadError(
                "Could not infer a supplier from the line items",
                external_order_id=payload.id,
            )

        address = payload.shipping_address
        customer_name = payload.customer.full_name or address.full_name
        data = OrderCreate(
            dropshipper_id=dropshipper.id,
            supplier_id=supplier_id,
            external_order_id=payload.id,
            customer_name=customer_name,
            customer_email=payload.customer.email or payload.email,
            shipping_address=ShippingAddress(
                name=address.full_name or customer_name,
                address1=address.address1,
                address2=address.address2,
                city=address.city,
                state=address.province,
                zip=address.zip,
                country=address.country,
                phone=address.phone,
            ),
            items=items,
            shipping_cost=payload.shipping_cost,
            tax=payload.total_tax,
            currency=payload.currency,
            payment_status=(
                PaymentStatus.PAID
                if payload.financial_status == "paid"
                else PaymentStatus.PENDING
            ),
            notes=payload.note,
        )

        try:
            result = await self.order_service.create_order(data, Requester.system())
        except DuplicateExternalOrderError:
            replay = await self._replayed(payload.id)
            if replay is None:
                raise
            return replay
        except InvalidInputError as e:
            raise InvalidPayloadError(
                e.message, **{**e.context, "external_order_id": payload.id}
            ) from e

        logger.info(
            "Storefront order ingested",
            external_order_id=payload.id,
            order_id=str(result.order.id),
            dropped_items=len(payload.line_items) - len(items),
        )
        return result

    async def sync_inventory(self, payload: InventorySyncPayload) -> InventoryLedgerEntry:
        """
        Overwrite stock reported by an external system.

        Raises:
            NotFoundError: If the product or variant is not in the catalog
        """
        product = await self.catalog.find_product_by_external_id(payload.product_id)
        if product is None:
            raise NotFoundError(
                "Product not found for external id",
                external_product_id=payload.product_id,
            )

        variant_id = None
        if payload.variant_id:
            variant = await self.catalog.find_variant_by_external_id(product.id, payload.variant_id)
            if variant is None:
                raise NotFoundError(
                    "Product variant not found for external id",
                    external_product_id=payload.product_id,
                    external_variant_id=payload.variant_id,
                )
            variant_id = variant.id

        return await self.ledger.apply_sync(
            StockTarget(product.id, variant_id),
            payload.quantity,
            payload.source,
            Requester.system(),
        )
