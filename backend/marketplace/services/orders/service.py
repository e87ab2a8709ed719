"""
Order service orchestrating the order lifecycle.

Creation validates and prices items against the catalog, computes the
commission split, persists the order with its first history entry, then
applies inventory and publishes notifications. Status changes run under a
row lock on the order, append history, settle terminal orders and notify
the parties involved.

Validation and authorization happen before anything is written. Once the
order row is flushed, inventory, settlement and notification steps are
best effort: their failures are logged and, for inventory, reported back
as warnings.
"""

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import get_settings
from marketplace.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    SettlementError,
)
from marketplace.core.identity import Requester
from marketplace.core.logging import get_logger, log_performance
from marketplace.database.base import utc_now
from marketplace.database.models.order import Order, OrderItem, OrderStatus
from marketplace.schemas.orders import OrderCreate, OrderItemCreate, ShippingPatch
from marketplace.services.catalog.accessor import CatalogAccessor, ProductSnapshot, VariantSnapshot
from marketplace.services.commission.calculator import (
    CommissionLine,
    calculate_commission,
    compute_payout,
    resolve_agent_rate,
    to_money,
)
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.notifications.dispatcher import (
    CommitBoundPublisher,
    EventPublisher,
    OrderEventType,
    RecipientRole,
    get_dispatcher,
    order_events,
)
from marketplace.services.orders.repository import (
    DuplicateOrderNumberError,
    OrderRepository,
)
from marketplace.services.orders.state_machine import OrderStateMachine, TransitionResult
from marketplace.services.payments.service import SettlementLedger

logger = get_logger(__name__)

TRACKING_NOTE = "Tracking information added"
CUSTOMER_NOTIFIED_STATUSES = (
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
)
MAX_PAGE_SIZE = 100


@dataclass
class CreatedOrder:
    """Result of order creation or of an idempotent webhook replay."""

    order: Order
    warnings: list[str] = field(default_factory=list)
    created: bool = True


@dataclass(frozen=True)
class _PricedItem:
    item: OrderItem
    line: CommissionLine
    product: ProductSnapshot


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Return ``ORD-<UTC yyyymmddHHMMSS>-<6 hex>``."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


def _is_valid_email(value: str) -> bool:
    if value.count("@") != 1:
        return False
    local, domain = value.split("@")
    return bool(local) and "." in domain and not domain.startswith(".") and not domain.endswith(".")


class OrderService:
    """
    Order service orchestrating catalog, commission, inventory, settlement
    and notifications.

    Collaborators default to database-backed implementations built from
    ``session``; any of them can be passed in explicitly.
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        catalog: Optional[CatalogAccessor] = None,
        ledger: Optional[InventoryLedger] = None,
        settlement: Optional[SettlementLedger] = None,
        dispatcher: Optional[EventPublisher] = None,
        repository: Optional[OrderRepository] = None,
    ):
        if session is None and None in (catalog, ledger, settlement, repository, dispatcher):
            raise ValueError("session is required when collaborators are omitted")
        self.session = session
        self.repository = repository or OrderRepository(session)
        self.catalog = catalog or CatalogAccessor(session)
        self.ledger = ledger or InventoryLedger(session, catalog=self.catalog)
        self.settlement = settlement or SettlementLedger(session)
        # events leave for the dispatcher only after the session commits
        self.dispatcher = dispatcher or CommitBoundPublisher(session, get_dispatcher())
        self.state_machine = OrderStateMachine()
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    @staticmethod
    def _can_view(order: Order, requester: Requester) -> bool:
        return (
            requester.is_privileged
            or requester.acts_as_supplier(order.supplier_id)
            or requester.acts_as_dropshipper(order.dropshipper_id)
        )

    @staticmethod
    def _authorize_manage(order: Order, requester: Requester) -> None:
        if requester.is_privileged or requester.acts_as_supplier(order.supplier_id):
            return
        raise ForbiddenError(
            "Only the order's supplier or an admin can update this order",
            order_id=str(order.id),
            **requester.describe(),
        )

    @staticmethod
    def _authorize_create(
        requester: Requester,
        dropshipper_id: uuid.UUID,
        supplier_id: uuid.UUID,
    ) -> None:
        if (
            requester.is_privileged
            or requester.acts_as_dropshipper(dropshipper_id)
            or requester.acts_as_supplier(supplier_id)
        ):
            return
        raise ForbiddenError(
            "Not authorized to create orders for this dropshipper",
            dropshipper_id=str(dropshipper_id),
            **requester.describe(),
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_order_data(data: OrderCreate) -> None:
        """
        Validate required customer data, items and amounts.

        Raises:
            InvalidInputError: On the first rule that fails
        """
        if not data.customer_name or not data.customer_name.strip():
            raise InvalidInputError("Customer name is required")
        if not data.customer_email or not _is_valid_email(data.customer_email):
            raise InvalidInputError(
                "A valid customer email is required",
                customer_email=data.customer_email,
            )

        address = data.shipping_address
        if address is None:
            raise InvalidInputError("Shipping address is required")
        missing = [
            name for name in ("address1", "city", "country") if not getattr(address, name)
        ]
        if missing:
            raise InvalidInputError("Shipping address is incomplete", missing_fields=missing)

        if not data.items:
            raise InvalidInputError("Order must contain at least one item")
        for index, item in enumerate(data.items):
            if item.quantity <= 0:
                raise InvalidInputError(
                    "Item quantity must be positive",
                    item_index=index,
                    quantity=item.quantity,
                )
            if item.price is not None and item.price < 0:
                raise InvalidInputError(
                    "Item price cannot be negative",
                    item_index=index,
                    price=str(item.price),
                )

        for name in ("shipping_cost", "tax", "subtotal", "total"):
            value = getattr(data, name)
            if value is not None and value < 0:
                raise InvalidInputError(f"{name} cannot be negative", **{name: str(value)})

    async def _resolve(
        self, item: OrderItemCreate, index: int
    ) -> tuple[ProductSnapshot, Optional[VariantSnapshot]]:
        product = await self.catalog.get_product(item.product_id)
        if product is None:
            raise NotFoundError(
                "Product not found",
                product_id=str(item.product_id),
                item_index=index,
            )

        variant = None
        if item.variant_id is not None:
            variant = await self.catalog.get_variant(item.variant_id)
            if variant is None or variant.product_id != product.id:
                raise NotFoundError(
                    "Product variant not found",
                    product_id=str(item.product_id),
                    variant_id=str(item.variant_id),
                    item_index=index,
                )
        return product, variant

    async def _price_items(self, order_id: uuid.UUID, items: list[OrderItemCreate]) -> list[_PricedItem]:
        priced = []
        for position, item in enumerate(items):
            product, variant = await self._resolve(item, position)

            if item.price is not None:
                unit_price = to_money(item.price)
            elif variant is not None:
                unit_price = to_money(variant.price)
            else:
                unit_price = to_money(product.price)

            agent_rate = (
                resolve_agent_rate(
                    product.sourcing_agent_rate,
                    self.settings.default_sourcing_agent_rate,
                )
                if product.has_sourcing_agent
                else None
            )

            if item.name:
                name = item.name
            elif variant is not None:
                name = f"{product.name} - {variant.name}"
            else:
                name = product.name

            order_item = OrderItem(
                id=uuid.uuid4(),
                order_id=order_id,
                position=position,
                product_id=product.id,
                variant_id=variant.id if variant else None,
                external_product_id=item.external_product_id,
                external_variant_id=item.external_variant_id,
                name=name,
                sku=item.sku or (variant.sku if variant else None) or product.sku,
                quantity=item.quantity,
                price=unit_price,
                total=to_money(unit_price * item.quantity),
                supplier_id=product.supplier_id,
                sourcing_agent_id=product.sourcing_agent_id,
                commission_rate=Decimal(product.commission_rate),
                sourcing_agent_commission_rate=agent_rate,
            )
            line = CommissionLine(
                unit_price=unit_price,
                quantity=item.quantity,
                commission_rate=Decimal(product.commission_rate),
                sourcing_agent_rate=agent_rate,
                has_sourcing_agent=product.has_sourcing_agent,
            )
            priced.append(_PricedItem(item=order_item, line=line, product=product))
        return priced

    async def _persist_with_number(self, order: Order) -> Order:
        """Insert the order under a fresh order number, retrying collisions."""
        attempts = self.settings.order_number_max_attempts
        for attempt in range(1, attempts + 1):
            number = generate_order_number()
            if await self.repository.order_number_exists(number):
                logger.info("Order number collision", order_number=number, attempt=attempt)
                continue
            order.order_number = number
            try:
                return await self.repository.create_order(order)
            except DuplicateOrderNumberError:
                logger.info("Order number taken concurrently", order_number=number, attempt=attempt)

        raise ConflictError(
            "Could not allocate a unique order number",
            attempts=attempts,
        )

    async def create_order(self, data: OrderCreate, requester: Requester) -> CreatedOrder:
        """
        Create an order with pricing, commission, inventory and notifications.

        Args:
            data: Canonical order request
            requester: Acting identity

        Returns:
            CreatedOrder with the persisted order and any inventory warnings

        Raises:
            InvalidInputError: If required data is missing or totals disagree
            NotFoundError: If a product or variant does not exist
            ForbiddenError: If the requester may not create this order
            ConflictError: If no unique order number could be allocated, or
                the storefront order id already exists
        """
        self._validate_order_data(data)

        order_id = uuid.uuid4()
        priced = await self._price_items(order_id, data.items)

        supplier_id = data.supplier_id or next(
            (p.product.supplier_id for p in priced if p.product.supplier_id is not None),
            None,
        )
        if supplier_id is None:
            raise InvalidInputError("Order supplier could not be determined")

        self._authorize_create(requester, data.dropshipper_id, supplier_id)

        subtotal = to_money(sum((p.item.total for p in priced), Decimal("0")))
        shipping_cost = to_money(data.shipping_cost)
        tax = to_money(data.tax)
        total = subtotal + shipping_cost + tax

        if data.subtotal is not None and to_money(data.subtotal) != subtotal:
            raise InvalidInputError(
                "Subtotal does not match item totals",
                expected=str(subtotal),
                received=str(data.subtotal),
            )
        if data.total is not None and to_money(data.total) != total:
            raise InvalidInputError(
                "Total does not equal subtotal + shipping_cost + tax",
                expected=str(total),
                received=str(data.total),
            )

        breakdown = calculate_commission(
            [p.line for p in priced],
            self.settings.default_sourcing_agent_rate,
        )
        payout = compute_payout(total, breakdown)

        warnings: list[str] = []
        if payout < 0:
            warnings.append(f"Commission exceeds order total; payout is {payout}")
            logger.warning(
                "Negative payout computed",
                order_id=str(order_id),
                total=str(total),
                commission=str(breakdown.commission),
                sourcing_agent_commission=str(breakdown.sourcing_agent_commission),
            )

        order = Order(
            id=order_id,
            dropshipper_id=data.dropshipper_id,
            supplier_id=supplier_id,
            external_order_id=data.external_order_id,
            customer_name=data.customer_name.strip(),
            customer_email=data.customer_email.strip().lower(),
            shipping_address=data.shipping_address.model_dump(),
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax=tax,
            total=total,
            commission=breakdown.commission,
            sourcing_agent_commission=breakdown.sourcing_agent_commission,
            payout_amount=payout,
            currency=data.currency or self.settings.default_currency,
            payment_status=data.payment_status,
            shipping_method=data.shipping_method,
            notes=data.notes,
            created_at=utc_now(),
            items=[p.item for p in priced],
        )
        self.state_machine.initialize(order, requester.user_id)

        with log_performance(logger, "persist_order", order_id=str(order_id)):
            await self._persist_with_number(order)

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            total=str(order.total),
            commission=str(order.commission),
            item_count=len(order.items),
            **requester.describe(),
        )

        warnings.extend(await self._apply_inventory(order, requester))

        self.dispatcher.publish_many(
            order_events(
                OrderEventType.ORDER_CREATED,
                order,
                (RecipientRole.SUPPLIER, RecipientRole.DROPSHIPPER, RecipientRole.CUSTOMER),
            )
        )

        return CreatedOrder(order=order, warnings=warnings, created=True)

    async def _apply_inventory(self, order: Order, requester: Requester) -> list[str]:
        try:
            application = await self.ledger.apply_order(
                order.items,
                order.id,
                Requester.system(requester.user_id),
            )
        except (SettlementError, SQLAlchemyError) as e:
            logger.error(
                "Inventory application failed",
                order_id=str(order.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return [f"Inventory was not updated: {e}"]

        return [
            f"Inventory not updated for product {failure.target.product_id}: {failure.reason}"
            for failure in application.failures
        ]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, requester: Requester) -> Order:
        """
        Load an order visible to the requester.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the requester is not the owning supplier,
                the owning dropshipper or an admin
        """
        order = await self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        if not self._can_view(order, requester):
            raise ForbiddenError(
                "Not authorized to view this order",
                order_id=str(order_id),
                **requester.describe(),
            )
        return order

    async def list_orders(
        self,
        requester: Requester,
        status: Optional[Union[str, OrderStatus]] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> list[Order]:
        """List orders newest first within the requester's scope."""
        if skip < 0 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(
                "Invalid pagination parameters",
                skip=skip,
                limit=limit,
            )
        parsed_status = self.state_machine.parse_status(status) if status else None

        if requester.is_privileged:
            scope = {}
        elif requester.supplier_id is not None:
            scope = {"supplier_id": requester.supplier_id}
        elif requester.dropshipper_id is not None:
            scope = {"dropshipper_id": requester.dropshipper_id}
        else:
            raise ForbiddenError("Not authorized to list orders", **requester.describe())

        orders = await self.repository.list_orders(
            status=parsed_status,
            skip=skip,
            limit=limit,
            **scope,
        )
        return list(orders)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _settle(self, order: Order) -> None:
        try:
            await self.settlement.finalize(order)
        except (SettlementError, SQLAlchemyError) as e:
            logger.error(
                "Settlement failed",
                order_id=str(order.id),
                status=order.status.value,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _apply_transition(
        self,
        order: Order,
        status: OrderStatus,
        note: Optional[str],
        requester: Requester,
    ) -> TransitionResult:
        """Transition an order the caller holds locked, then settle if terminal."""
        result = self.state_machine.transition(order, status, note, requester.user_id)
        if result.applied:
            await self.repository.save(order)
            if status.is_terminal:
                await self._settle(order)
        return result

    def _notify_status_change(self, order: Order, result: TransitionResult) -> None:
        if not result.status_changed:
            return
        recipients = [RecipientRole.DROPSHIPPER]
        if order.status in CUSTOMER_NOTIFIED_STATUSES:
            recipients.append(RecipientRole.CUSTOMER)
        self.dispatcher.publish_many(
            order_events(
                OrderEventType.STATUS_CHANGED,
                order,
                recipients,
                previous_status=result.previous_status,
                tracking_number=order.tracking_number,
                tracking_url=order.tracking_url,
            )
        )

    async def transition_status(
        self,
        order_id: uuid.UUID,
        new_status: Union[str, OrderStatus],
        note: Optional[str],
        requester: Requester,
    ) -> Order:
        """
        Move an order to a new status.

        Concurrent calls for the same order are serialized by the order row
        lock. Repeating the current status with the latest note is a no-op.

        Raises:
            InvalidInputError: If the status is unknown
            NotFoundError: If the order does not exist
            ForbiddenError: If the requester is not the owning supplier or an admin
        """
        status = self.state_machine.parse_status(new_status)

        async with self.repository.locked(order_id) as order:
            if order is None:
                raise NotFoundError("Order not found", order_id=str(order_id))
            self._authorize_manage(order, requester)
            result = await self._apply_transition(order, status, note, requester)

        self._notify_status_change(order, result)
        return order

    async def attach_shipping(
        self,
        order_id: uuid.UUID,
        patch: ShippingPatch,
        requester: Requester,
    ) -> Order:
        """
        Apply shipping details; a tracking number ships a pending or
        processing order.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the requester is not the owning supplier or an admin
        """
        changes = patch.changes()

        async with self.repository.locked(order_id) as order:
            if order is None:
                raise NotFoundError("Order not found", order_id=str(order_id))
            self._authorize_manage(order, requester)

            for name, value in changes.items():
                setattr(order, name, value)

            result = None
            if patch.tracking_number and order.status in (
                OrderStatus.PENDING,
                OrderStatus.PROCESSING,
            ):
                result = await self._apply_transition(
                    order, OrderStatus.SHIPPED, TRACKING_NOTE, requester
                )
            if result is None or not result.applied:
                await self.repository.save(order)

        logger.info(
            "Shipping details updated",
            order_id=str(order.id),
            fields=sorted(changes),
        )

        if result is not None:
            self._notify_status_change(order, result)
        if patch.tracking_number:
            self.dispatcher.publish_many(
                order_events(
                    OrderEventType.SHIPPING_UPDATED,
                    order,
                    (RecipientRole.DROPSHIPPER, RecipientRole.CUSTOMER),
                    tracking_number=order.tracking_number,
                    tracking_url=order.tracking_url,
                )
            )
        return order
