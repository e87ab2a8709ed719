"""
Test suite for OrderService business logic.

Covers order creation (pricing, commission, totals, inventory and
notifications), authorization, listing and status/shipping updates
including settlement of terminal orders and concurrent transitions.
"""

import asyncio
import re
import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest
import pytest_asyncio

from marketplace.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from marketplace.core.identity import Requester, Role
from marketplace.database.models.inventory import ChangeType
from marketplace.database.models.order import OrderStatus, PaymentStatus
from marketplace.database.models.payment import PaymentRecordStatus, PaymentType
from marketplace.schemas.orders import OrderCreate, ShippingPatch
from marketplace.services.inventory.repository import StockTarget
from marketplace.services.notifications.dispatcher import OrderEventType, RecipientRole
from marketplace.services.orders.service import TRACKING_NOTE, generate_order_number
from tests.fakes import dropshipper_user, supplier_user


# ============================================================================
# Helpers
# ============================================================================


def order_request(dropshipper_id: uuid.UUID, items: list[dict], **overrides) -> OrderCreate:
    data = {
        "dropshipper_id": dropshipper_id,
        "customer_name": "Ayse Yilmaz",
        "customer_email": "Ayse@Example.com",
        "shipping_address": {
            "name": "Ayse Yilmaz",
            "address1": "Istiklal Cd. 1",
            "city": "Istanbul",
            "country": "TR",
        },
        "items": items,
    }
    data.update(overrides)
    return OrderCreate(**data)


@pytest.fixture
def dropshipper(marketplace):
    return marketplace.dropshipper(storefront_id="shop.example.com")


@pytest.fixture
def product(marketplace, supplier_id):
    """Supplier-owned product at 100.00 with 5% commission and 10 in stock."""
    return marketplace.product(price="100.00", commission_rate="5", quantity=10, supplier_id=supplier_id)


@pytest_asyncio.fixture
async def created_order(order_service, dropshipper, product, admin_requester):
    result = await order_service.create_order(
        order_request(
            dropshipper.id,
            [{"product_id": product.id, "quantity": 2}],
            shipping_cost=Decimal("10.00"),
        ),
        admin_requester,
    )
    return result.order


# ============================================================================
# Order Number Tests
# ============================================================================


class TestGenerateOrderNumber:
    def test_format(self):
        assert re.fullmatch(r"ORD-\d{14}-[0-9A-F]{6}", generate_order_number())


# ============================================================================
# Creation Tests
# ============================================================================


@pytest.mark.asyncio
class TestCreateOrder:
    """Tests for order creation."""

    async def test_totals_commission_and_payout(
        self, order_service, dropshipper, product, admin_requester, supplier_id
    ):
        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": product.id, "quantity": 2}],
                shipping_cost=Decimal("10.00"),
            ),
            admin_requester,
        )
        order = result.order

        assert result.created
        assert result.warnings == []
        assert order.supplier_id == supplier_id
        assert order.subtotal == Decimal("200.00")
        assert order.total == Decimal("210.00")
        assert order.commission == Decimal("10.00")
        assert order.sourcing_agent_commission == Decimal("0.00")
        assert order.payout_amount == Decimal("200.00")
        assert order.currency == "TRY"
        assert order.customer_email == "ayse@example.com"
        assert order.payment_status == PaymentStatus.PENDING
        assert re.fullmatch(r"ORD-\d{14}-[0-9A-F]{6}", order.order_number)

    async def test_initial_history_is_pending(self, created_order):
        assert created_order.status == OrderStatus.PENDING
        assert len(created_order.status_history) == 1
        assert created_order.status_history[0].status == OrderStatus.PENDING
        assert created_order.status_history[0].note == "Order created"

    async def test_item_snapshot(self, created_order, product, supplier_id):
        item = created_order.items[0]

        assert item.product_id == product.id
        assert item.name == "Widget"
        assert item.price == Decimal("100.00")
        assert item.total == Decimal("200.00")
        assert item.supplier_id == supplier_id
        assert item.commission_rate == Decimal("5")
        assert item.sourcing_agent_commission_rate is None

    async def test_inventory_decremented(self, created_order, inventory_repository, product):
        assert inventory_repository.quantity(StockTarget(product.id)) == 8

        entry = inventory_repository.entries[0]
        assert entry.change_type == ChangeType.ORDER
        assert entry.change_amount == -2
        assert entry.order_id == created_order.id

    async def test_creation_notifies_all_parties(self, created_order, dispatcher):
        events = dispatcher.of_type(OrderEventType.ORDER_CREATED)

        assert {e.recipient_role for e in events} == {
            RecipientRole.SUPPLIER,
            RecipientRole.DROPSHIPPER,
            RecipientRole.CUSTOMER,
        }
        assert all(e.order_id == created_order.id for e in events)

    async def test_variant_price_and_name(
        self, order_service, marketplace, dropshipper, product, admin_requester
    ):
        variant = marketplace.variant(product, price="120.00", quantity=5, name="Large")

        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": product.id, "variant_id": variant.id, "quantity": 1}],
            ),
            admin_requester,
        )

        item = result.order.items[0]
        assert item.price == Decimal("120.00")
        assert item.name == "Widget - Large"
        assert result.order.subtotal == Decimal("120.00")

    async def test_explicit_item_price_wins(
        self, order_service, dropshipper, product, admin_requester
    ):
        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": product.id, "quantity": 1, "price": "80.00", "name": "Promo"}],
            ),
            admin_requester,
        )

        assert result.order.items[0].price == Decimal("80.00")
        assert result.order.items[0].name == "Promo"
        assert result.order.commission == Decimal("4.00")

    async def test_sourcing_agent_commission(
        self, order_service, marketplace, dropshipper, admin_requester, supplier_id
    ):
        agent_product = marketplace.product(
            price="50.00",
            commission_rate="4",
            sourcing_agent_id=uuid.uuid4(),
        )

        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": agent_product.id, "quantity": 2}],
                supplier_id=supplier_id,
            ),
            admin_requester,
        )
        order = result.order

        assert order.commission == Decimal("4.00")
        assert order.sourcing_agent_commission == Decimal("10.00")
        assert order.payout_amount == Decimal("86.00")
        assert order.items[0].sourcing_agent_commission_rate == Decimal("10")
        assert order.items[0].sourcing_agent_id == agent_product.sourcing_agent_id

    async def test_configured_agent_rate_is_snapshotted(
        self, order_service, marketplace, dropshipper, admin_requester, supplier_id
    ):
        agent_product = marketplace.product(
            price="100.00",
            commission_rate="5",
            sourcing_agent_id=uuid.uuid4(),
            agent_rate="15",
        )

        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": agent_product.id, "quantity": 1}],
                supplier_id=supplier_id,
            ),
            admin_requester,
        )

        assert result.order.items[0].sourcing_agent_commission_rate == Decimal("15")
        assert result.order.sourcing_agent_commission == Decimal("15.00")

    async def test_agent_only_order_needs_supplier(
        self, order_service, marketplace, dropshipper, admin_requester
    ):
        agent_product = marketplace.product(sourcing_agent_id=uuid.uuid4())

        with pytest.raises(InvalidInputError):
            await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": agent_product.id, "quantity": 1}]),
                admin_requester,
            )

    async def test_negative_payout_is_warned(
        self, order_service, marketplace, dropshipper, admin_requester, supplier_id
    ):
        agent_product = marketplace.product(
            price="10.00",
            commission_rate="100",
            sourcing_agent_id=uuid.uuid4(),
        )

        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": agent_product.id, "quantity": 1}],
                supplier_id=supplier_id,
            ),
            admin_requester,
        )

        assert result.order.payout_amount == Decimal("-1.00")
        assert any("payout" in warning for warning in result.warnings)

    async def test_matching_client_totals_accepted(
        self, order_service, dropshipper, product, admin_requester
    ):
        result = await order_service.create_order(
            order_request(
                dropshipper.id,
                [{"product_id": product.id, "quantity": 2}],
                shipping_cost="10.00",
                tax="5.00",
                subtotal="200.00",
                total="215.00",
            ),
            admin_requester,
        )

        assert result.order.total == Decimal("215.00")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"subtotal": "199.99"},
            {"total": "200.00", "shipping_cost": "10.00"},
        ],
    )
    async def test_mismatched_totals_rejected(
        self, order_service, order_repository, dropshipper, product, admin_requester, overrides
    ):
        with pytest.raises(InvalidInputError):
            await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": product.id, "quantity": 2}], **overrides),
                admin_requester,
            )
        assert order_repository.orders == {}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"customer_name": " "},
            {"customer_email": "not-an-email"},
            {"shipping_address": None},
            {"shipping_address": {"address1": "x", "city": "", "country": "TR"}},
            {"shipping_cost": "-1"},
        ],
    )
    async def test_invalid_order_data(
        self, order_service, dropshipper, product, admin_requester, overrides
    ):
        with pytest.raises(InvalidInputError):
            await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}], **overrides),
                admin_requester,
            )

    async def test_order_without_items_rejected(
        self, order_service, order_repository, dropshipper, admin_requester
    ):
        with pytest.raises(InvalidInputError, match="at least one item"):
            await order_service.create_order(order_request(dropshipper.id, []), admin_requester)
        assert order_repository.orders == {}

    async def test_zero_quantity_rejected(
        self, order_service, dropshipper, product, admin_requester
    ):
        with pytest.raises(InvalidInputError):
            await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": product.id, "quantity": 0}]),
                admin_requester,
            )

    async def test_unknown_product(self, order_service, dropshipper, admin_requester):
        with pytest.raises(NotFoundError):
            await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": uuid.uuid4(), "quantity": 1}]),
                admin_requester,
            )

    async def test_variant_of_other_product(
        self, order_service, marketplace, dropshipper, product, admin_requester
    ):
        other = marketplace.product()
        variant = marketplace.variant(other)

        with pytest.raises(NotFoundError):
            await order_service.create_order(
                order_request(
                    dropshipper.id,
                    [{"product_id": product.id, "variant_id": variant.id, "quantity": 1}],
                ),
                admin_requester,
            )

    async def test_dropshipper_may_create_own_order(
        self, order_service, dropshipper, product
    ):
        result = await order_service.create_order(
            order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}]),
            dropshipper_user(dropshipper.id),
        )

        assert result.order.dropshipper_id == dropshipper.id

    async def test_unrelated_requester_forbidden(
        self, order_service, order_repository, dropshipper, product
    ):
        with pytest.raises(ForbiddenError):
            await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}]),
                dropshipper_user(uuid.uuid4()),
            )
        assert order_repository.orders == {}

    async def test_stock_shortfall_floors_at_zero(
        self, order_service, marketplace, dropshipper, admin_requester, supplier_id
    ):
        scarce = marketplace.product(quantity=3, supplier_id=supplier_id)

        result = await order_service.create_order(
            order_request(dropshipper.id, [{"product_id": scarce.id, "quantity": 5}]),
            admin_requester,
        )

        assert result.warnings == []
        assert marketplace.inventory.quantity(StockTarget(scarce.id)) == 0
        assert marketplace.inventory.entries[-1].change_amount == -3

    async def test_inventory_failure_becomes_warning(
        self, order_service, inventory_repository, dropshipper, product, admin_requester
    ):
        inventory_repository.fail_on.add(StockTarget(product.id))

        result = await order_service.create_order(
            order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}]),
            admin_requester,
        )

        assert result.created
        assert len(result.warnings) == 1
        assert str(product.id) in result.warnings[0]
        assert inventory_repository.quantity(StockTarget(product.id)) == 10

    async def test_inventory_entries_record_acting_user(
        self, order_service, inventory_repository, dropshipper, product
    ):
        requester = dropshipper_user(dropshipper.id)

        await order_service.create_order(
            order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}]),
            requester,
        )

        assert inventory_repository.entries[0].user_id == requester.user_id

    async def test_order_number_collision_retried(
        self, order_service, order_repository, dropshipper, product, admin_requester
    ):
        order_repository.taken_numbers.add("ORD-20240101000000-AAAAAA")

        with patch(
            "marketplace.services.orders.service.generate_order_number",
            side_effect=["ORD-20240101000000-AAAAAA", "ORD-20240101000000-BBBBBB"],
        ):
            result = await order_service.create_order(
                order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}]),
                admin_requester,
            )

        assert result.order.order_number == "ORD-20240101000000-BBBBBB"

    async def test_order_number_attempts_exhausted(
        self, order_service, order_repository, dropshipper, product, admin_requester, settings
    ):
        order_repository.taken_numbers.add("ORD-20240101000000-AAAAAA")

        with patch(
            "marketplace.services.orders.service.generate_order_number",
            return_value="ORD-20240101000000-AAAAAA",
        ):
            with pytest.raises(ConflictError) as exc_info:
                await order_service.create_order(
                    order_request(dropshipper.id, [{"product_id": product.id, "quantity": 1}]),
                    admin_requester,
                )

        assert exc_info.value.context["attempts"] == settings.order_number_max_attempts


# ============================================================================
# Read Tests
# ============================================================================


@pytest.mark.asyncio
class TestReadOrders:
    async def test_get_missing_order(self, order_service, admin_requester):
        with pytest.raises(NotFoundError):
            await order_service.get_order(uuid.uuid4(), admin_requester)

    async def test_owners_can_view(self, order_service, created_order, supplier_id):
        by_supplier = await order_service.get_order(created_order.id, supplier_user(supplier_id))
        by_dropshipper = await order_service.get_order(
            created_order.id, dropshipper_user(created_order.dropshipper_id)
        )

        assert by_supplier is created_order
        assert by_dropshipper is created_order

    async def test_other_supplier_cannot_view(self, order_service, created_order):
        with pytest.raises(ForbiddenError):
            await order_service.get_order(created_order.id, supplier_user(uuid.uuid4()))

    async def test_list_scoped_to_supplier(self, order_service, created_order, supplier_id):
        own = await order_service.list_orders(supplier_user(supplier_id))
        other = await order_service.list_orders(supplier_user(uuid.uuid4()))

        assert [o.id for o in own] == [created_order.id]
        assert other == []

    async def test_list_filters_by_status(self, order_service, created_order, admin_requester):
        assert await order_service.list_orders(admin_requester, status="shipped") == []
        assert len(await order_service.list_orders(admin_requester, status="pending")) == 1

    @pytest.mark.parametrize("skip,limit", [(-1, 20), (0, 0), (0, 101)])
    async def test_list_rejects_bad_pagination(self, order_service, admin_requester, skip, limit):
        with pytest.raises(InvalidInputError):
            await order_service.list_orders(admin_requester, skip=skip, limit=limit)

    async def test_list_requires_profile(self, order_service):
        requester = Requester(user_id=uuid.uuid4(), role=Role.SUPPLIER)

        with pytest.raises(ForbiddenError):
            await order_service.list_orders(requester)


# ============================================================================
# Transition Tests
# ============================================================================


@pytest.mark.asyncio
class TestTransitionStatus:
    """Tests for status transitions, settlement and notifications."""

    async def test_invalid_status_checked_first(self, order_service, admin_requester):
        with pytest.raises(InvalidInputError):
            await order_service.transition_status(uuid.uuid4(), "lost", None, admin_requester)

    async def test_missing_order(self, order_service, admin_requester):
        with pytest.raises(NotFoundError):
            await order_service.transition_status(uuid.uuid4(), "shipped", None, admin_requester)

    async def test_dropshipper_cannot_update(self, order_service, created_order):
        with pytest.raises(ForbiddenError):
            await order_service.transition_status(
                created_order.id,
                "shipped",
                None,
                dropshipper_user(created_order.dropshipper_id),
            )

    async def test_supplier_moves_order(
        self, order_service, order_repository, created_order, supplier_id
    ):
        requester = supplier_user(supplier_id)

        order = await order_service.transition_status(
            created_order.id, "processing", "Packed", requester
        )

        assert order.status == OrderStatus.PROCESSING
        assert order.latest_history.note == "Packed"
        assert order.latest_history.changed_by == requester.user_id
        assert order_repository.saves == 1

    async def test_repeat_is_noop(self, order_service, order_repository, dispatcher, created_order, admin_requester):
        await order_service.transition_status(created_order.id, "processing", None, admin_requester)
        events_before = len(dispatcher.events)

        await order_service.transition_status(created_order.id, "processing", None, admin_requester)

        assert len(created_order.status_history) == 2
        assert order_repository.saves == 1
        assert len(dispatcher.events) == events_before

    async def test_status_change_notifications(self, order_service, dispatcher, created_order, admin_requester):
        await order_service.transition_status(created_order.id, "processing", None, admin_requester)
        processing = dispatcher.of_type(OrderEventType.STATUS_CHANGED)

        assert [e.recipient_role for e in processing] == [RecipientRole.DROPSHIPPER]
        assert processing[0].context["previous_status"] == OrderStatus.PENDING

        await order_service.transition_status(created_order.id, "shipped", None, admin_requester)
        shipped = dispatcher.of_type(OrderEventType.STATUS_CHANGED)[1:]

        assert {e.recipient_role for e in shipped} == {
            RecipientRole.DROPSHIPPER,
            RecipientRole.CUSTOMER,
        }

    async def test_delivered_records_commission_once(
        self, order_service, payment_repository, created_order, admin_requester, supplier_id
    ):
        await order_service.transition_status(created_order.id, "delivered", None, admin_requester)
        await order_service.transition_status(created_order.id, "delivered", "Signed by customer", admin_requester)

        commissions = payment_repository.of_type(PaymentType.COMMISSION)
        assert len(commissions) == 1
        assert commissions[0].amount == Decimal("10.00")
        assert commissions[0].supplier_id == supplier_id
        assert commissions[0].transaction_id == f"comm_{created_order.id}_{supplier_id}"
        assert created_order.settled_at is not None

    async def test_cancel_after_delivery_reverses_commission(
        self, order_service, payment_repository, created_order, admin_requester
    ):
        await order_service.transition_status(created_order.id, "delivered", None, admin_requester)
        await order_service.transition_status(created_order.id, "cancelled", None, admin_requester)

        commission = payment_repository.of_type(PaymentType.COMMISSION)[0]
        refunds = payment_repository.of_type(PaymentType.REFUND)

        assert commission.status == PaymentRecordStatus.REFUNDED
        assert len(refunds) == 1
        assert refunds[0].amount == commission.amount
        assert refunds[0].transaction_id == f"refund_{commission.transaction_id}"

    async def test_cancel_without_commission_writes_nothing(
        self, order_service, payment_repository, created_order, admin_requester
    ):
        await order_service.transition_status(created_order.id, "cancelled", None, admin_requester)

        assert payment_repository.payments == []
        assert created_order.settled_at is not None

    async def test_concurrent_transitions_serialized(
        self, order_service, payment_repository, created_order, admin_requester
    ):
        await asyncio.gather(
            *(
                order_service.transition_status(created_order.id, "delivered", None, admin_requester)
                for _ in range(5)
            )
        )

        assert [h.status for h in created_order.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.DELIVERED,
        ]
        assert len(payment_repository.of_type(PaymentType.COMMISSION)) == 1

    async def test_concurrent_distinct_transitions_keep_history_ordered(
        self, order_service, created_order, admin_requester
    ):
        await asyncio.gather(
            order_service.transition_status(created_order.id, "processing", None, admin_requester),
            order_service.transition_status(created_order.id, "shipped", None, admin_requester),
        )

        history = created_order.status_history
        assert [h.position for h in history] == [0, 1, 2]
        assert history[-1].status == created_order.status


# ============================================================================
# Shipping Tests
# ============================================================================


@pytest.mark.asyncio
class TestAttachShipping:
    async def test_tracking_number_ships_pending_order(
        self, order_service, dispatcher, created_order, admin_requester
    ):
        order = await order_service.attach_shipping(
            created_order.id,
            ShippingPatch(tracking_number="TRK123", tracking_url="https://track.example/TRK123"),
            admin_requester,
        )

        assert order.status == OrderStatus.SHIPPED
        assert order.tracking_number == "TRK123"
        assert order.latest_history.note == TRACKING_NOTE

        shipping_events = dispatcher.of_type(OrderEventType.SHIPPING_UPDATED)
        assert {e.recipient_role for e in shipping_events} == {
            RecipientRole.DROPSHIPPER,
            RecipientRole.CUSTOMER,
        }
        assert shipping_events[0].context["tracking_number"] == "TRK123"
        assert len(dispatcher.of_type(OrderEventType.STATUS_CHANGED)) == 2

    async def test_tracking_on_delivered_order_keeps_status(
        self, order_service, created_order, admin_requester
    ):
        await order_service.transition_status(created_order.id, "delivered", None, admin_requester)

        order = await order_service.attach_shipping(
            created_order.id, ShippingPatch(tracking_number="TRK9"), admin_requester
        )

        assert order.status == OrderStatus.DELIVERED
        assert order.tracking_number == "TRK9"

    async def test_method_only_does_not_transition(
        self, order_service, order_repository, dispatcher, created_order, admin_requester
    ):
        order = await order_service.attach_shipping(
            created_order.id, ShippingPatch(shipping_method="Express"), admin_requester
        )

        assert order.status == OrderStatus.PENDING
        assert order.shipping_method == "Express"
        assert order_repository.saves == 1
        assert dispatcher.of_type(OrderEventType.SHIPPING_UPDATED) == []

    async def test_empty_fields_are_ignored(self, order_service, created_order, admin_requester):
        created_order.tracking_url = "https://track.example/old"

        await order_service.attach_shipping(
            created_order.id, ShippingPatch(tracking_url="", notes="Fragile"), admin_requester
        )

        assert created_order.tracking_url == "https://track.example/old"
        assert created_order.notes == "Fragile"

    async def test_other_supplier_forbidden(self, order_service, created_order):
        with pytest.raises(ForbiddenError):
            await order_service.attach_shipping(
                created_order.id,
                ShippingPatch(tracking_number="X"),
                supplier_user(uuid.uuid4()),
            )
