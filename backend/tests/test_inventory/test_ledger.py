"""
Tests for the inventory ledger service.

Covers manual, order, sync and adjustment changes, ownership checks,
bulk updates, the restartable ledger log, low-stock reporting and
statistics.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from marketplace.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from marketplace.core.identity import Requester
from marketplace.database.models.inventory import ChangeType
from marketplace.services.inventory.ledger import LedgerLog, StockUpdate
from marketplace.services.inventory.repository import StockTarget
from tests.fakes import agent_user, dropshipper_user, ledger_entry, supplier_user


@pytest.fixture
def product(marketplace, supplier_id):
    return marketplace.product(quantity=10, supplier_id=supplier_id)


@pytest.fixture
def owner(supplier_id) -> Requester:
    return supplier_user(supplier_id)


def order_line(product_id, quantity, variant_id=None):
    return SimpleNamespace(product_id=product_id, variant_id=variant_id, quantity=quantity)


# ============================================================================
# Manual Updates
# ============================================================================


@pytest.mark.asyncio
class TestApplyManual:
    async def test_sets_absolute_quantity(self, ledger, inventory_repository, product, owner):
        entry = await ledger.apply_manual(StockTarget(product.id), 4, owner)

        assert entry.previous_quantity == 10
        assert entry.new_quantity == 4
        assert entry.change_amount == -6
        assert entry.change_type == ChangeType.MANUAL
        assert entry.user_id == owner.user_id
        assert entry.notes == "Manual inventory update"
        assert inventory_repository.quantity(StockTarget(product.id)) == 4

    async def test_negative_quantity_rejected(self, ledger, product, owner):
        with pytest.raises(InvalidInputError):
            await ledger.apply_manual(StockTarget(product.id), -1, owner)

    async def test_untracked_stock_treated_as_zero(self, ledger, marketplace, supplier_id, owner):
        untracked = marketplace.product(quantity=None, supplier_id=supplier_id)

        entry = await ledger.apply_manual(StockTarget(untracked.id), 3, owner)

        assert entry.previous_quantity == 0
        assert entry.change_amount == 3

    async def test_unknown_product(self, ledger, admin_requester):
        with pytest.raises(NotFoundError):
            await ledger.apply_manual(StockTarget(uuid.uuid4()), 1, admin_requester)

    async def test_variant_must_belong_to_product(self, ledger, marketplace, product, admin_requester):
        foreign = marketplace.variant(marketplace.product())

        with pytest.raises(NotFoundError):
            await ledger.apply_manual(StockTarget(product.id, foreign.id), 1, admin_requester)

    async def test_variant_stock_tracked_separately(
        self, ledger, marketplace, inventory_repository, product, owner
    ):
        variant = marketplace.variant(product, quantity=5)

        await ledger.apply_manual(StockTarget(product.id, variant.id), 2, owner)

        assert inventory_repository.quantity(StockTarget(product.id, variant.id)) == 2
        assert inventory_repository.quantity(StockTarget(product.id)) == 10

    @pytest.mark.parametrize(
        "make_requester",
        [
            lambda: supplier_user(uuid.uuid4()),
            lambda: dropshipper_user(uuid.uuid4()),
            lambda: agent_user(uuid.uuid4()),
        ],
    )
    async def test_non_owner_forbidden(self, ledger, inventory_repository, product, make_requester):
        with pytest.raises(ForbiddenError):
            await ledger.apply_manual(StockTarget(product.id), 1, make_requester())

        assert inventory_repository.entries == []

    async def test_sourcing_agent_owns_its_products(self, ledger, marketplace):
        agent_id = uuid.uuid4()
        agent_product = marketplace.product(sourcing_agent_id=agent_id, quantity=1)

        entry = await ledger.apply_manual(StockTarget(agent_product.id), 7, agent_user(agent_id))

        assert entry.new_quantity == 7


# ============================================================================
# Order Application
# ============================================================================


@pytest.mark.asyncio
class TestApplyOrder:
    async def test_shortfall_floors_at_zero(self, ledger, marketplace, inventory_repository, supplier_id):
        scarce = marketplace.product(quantity=3, supplier_id=supplier_id)
        order_id = uuid.uuid4()

        application = await ledger.apply_order(
            [order_line(scarce.id, 5)], order_id, Requester.system()
        )

        entry = application.entries[0]
        assert application.succeeded
        assert entry.previous_quantity == 3
        assert entry.new_quantity == 0
        assert entry.change_amount == -3
        assert entry.change_type == ChangeType.ORDER
        assert entry.order_id == order_id
        assert entry.notes == f"Order {order_id}"

    async def test_failed_item_does_not_block_others(
        self, ledger, marketplace, inventory_repository, product, supplier_id
    ):
        other = marketplace.product(quantity=4, supplier_id=supplier_id)
        missing = uuid.uuid4()

        application = await ledger.apply_order(
            [order_line(product.id, 1), order_line(missing, 1), order_line(other.id, 2)],
            uuid.uuid4(),
            Requester.system(),
        )

        assert len(application.entries) == 2
        assert [f.target.product_id for f in application.failures] == [missing]
        assert inventory_repository.quantity(StockTarget(product.id)) == 9
        assert inventory_repository.quantity(StockTarget(other.id)) == 2

    async def test_failed_write_rolls_back_row(self, ledger, inventory_repository, product):
        inventory_repository.fail_on.add(StockTarget(product.id))

        application = await ledger.apply_order(
            [order_line(product.id, 4)], uuid.uuid4(), Requester.system()
        )

        assert not application.succeeded
        assert inventory_repository.quantity(StockTarget(product.id)) == 10
        assert inventory_repository.entries == []

    async def test_concurrent_orders_never_lose_updates(self, ledger, inventory_repository, product):
        await asyncio.gather(
            *(
                ledger.apply_order([order_line(product.id, 1)], uuid.uuid4(), Requester.system())
                for _ in range(6)
            )
        )

        assert inventory_repository.quantity(StockTarget(product.id)) == 4
        previous = sorted(e.previous_quantity for e in inventory_repository.entries)
        assert previous == [5, 6, 7, 8, 9, 10]


# ============================================================================
# Sync and Adjustments
# ============================================================================


@pytest.mark.asyncio
class TestSyncAndAdjust:
    async def test_sync_overwrites_without_floor(self, ledger, inventory_repository, product):
        entry = await ledger.apply_sync(StockTarget(product.id), -2, "shopify", Requester.system())

        assert entry.change_type == ChangeType.SYNC
        assert entry.new_quantity == -2
        assert entry.notes == "Synced from shopify"
        assert inventory_repository.quantity(StockTarget(product.id)) == -2

    async def test_return_adds_stock(self, ledger, product, owner):
        entry = await ledger.apply_adjustment(
            StockTarget(product.id), 2, ChangeType.RETURN, owner, notes="RMA-1"
        )

        assert entry.new_quantity == 12
        assert entry.change_type == ChangeType.RETURN

    async def test_adjustment_floors_at_zero(self, ledger, product, owner):
        entry = await ledger.apply_adjustment(StockTarget(product.id), -50, ChangeType.ADJUSTMENT, owner)

        assert entry.new_quantity == 0
        assert entry.change_amount == -10

    @pytest.mark.parametrize("change_type", [ChangeType.ORDER, ChangeType.SYNC, ChangeType.MANUAL])
    async def test_other_change_types_rejected(self, ledger, product, owner, change_type):
        with pytest.raises(InvalidInputError):
            await ledger.apply_adjustment(StockTarget(product.id), 1, change_type, owner)


# ============================================================================
# Bulk Updates
# ============================================================================


@pytest.mark.asyncio
class TestBulkApply:
    async def test_skips_unknown_and_foreign_products(
        self, ledger, marketplace, inventory_repository, product, owner
    ):
        foreign = marketplace.product(quantity=5)

        entries = await ledger.bulk_apply(
            [
                StockUpdate(StockTarget(product.id), 3),
                StockUpdate(StockTarget(uuid.uuid4()), 3),
                StockUpdate(StockTarget(foreign.id), 1),
                StockUpdate(StockTarget(product.id), -1),
            ],
            owner,
        )

        assert len(entries) == 1
        assert entries[0].notes == "Bulk inventory update"
        assert inventory_repository.quantity(StockTarget(product.id)) == 3
        assert inventory_repository.quantity(StockTarget(foreign.id)) == 5


# ============================================================================
# Ledger Log
# ============================================================================


@pytest.mark.asyncio
class TestQueryLog:
    async def test_requires_a_filter(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.query_log()

    async def test_pages_newest_first_and_restarts(self, inventory_repository):
        product_id = uuid.uuid4()
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entries = [ledger_entry(product_id, base + timedelta(minutes=i)) for i in range(5)]
        inventory_repository.entries.extend(entries)
        inventory_repository.entries.append(ledger_entry(uuid.uuid4(), base))

        log = LedgerLog(inventory_repository, product_id, None, newest_first=True, page_size=2)

        first = [entry async for entry in log]
        second = await log.to_list()

        assert first == list(reversed(entries))
        assert second == first

    async def test_oldest_first_with_limit(self, inventory_repository):
        product_id = uuid.uuid4()
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entries = [ledger_entry(product_id, base + timedelta(seconds=i)) for i in range(4)]
        inventory_repository.entries.extend(reversed(entries))

        log = LedgerLog(inventory_repository, product_id, None, newest_first=False, page_size=3)

        assert await log.to_list(limit=2) == entries[:2]

    async def test_sees_entries_written_between_iterations(self, ledger, product, owner):
        log = ledger.query_log(product_id=product.id, requester=owner)

        assert await log.to_list() == []
        await ledger.apply_manual(StockTarget(product.id), 1, owner)
        assert len(await log.to_list()) == 1

    async def test_ownership_checked_on_iteration(self, ledger, product):
        log = ledger.query_log(product_id=product.id, requester=supplier_user(uuid.uuid4()))

        with pytest.raises(ForbiddenError):
            await log.to_list()

    async def test_variant_only_filter(self, ledger, marketplace, product, owner):
        variant = marketplace.variant(product)
        await ledger.apply_manual(StockTarget(product.id), 1, owner)
        await ledger.apply_manual(StockTarget(product.id, variant.id), 1, owner)

        entries = await ledger.query_log(variant_id=variant.id, requester=owner).to_list()

        assert [e.variant_id for e in entries] == [variant.id]


# ============================================================================
# Reporting
# ============================================================================


@pytest.mark.asyncio
class TestReporting:
    async def test_low_stock_includes_untracked(self, ledger, marketplace, supplier_id, owner):
        marketplace.product(quantity=50, supplier_id=supplier_id, name="Plenty")
        marketplace.product(quantity=2, supplier_id=supplier_id, name="Scarce")
        marketplace.product(quantity=None, supplier_id=supplier_id, name="Untracked")

        items = await ledger.low_stock(owner, threshold=5)

        assert {item.name for item in items} == {"Scarce", "Untracked"}
        assert all(item.threshold == 5 for item in items)

    async def test_low_stock_scoped_to_owner(self, ledger, marketplace, owner):
        marketplace.product(quantity=0, name="Foreign")

        assert await ledger.low_stock(owner) == []

    async def test_negative_threshold_rejected(self, ledger, owner):
        with pytest.raises(InvalidInputError):
            await ledger.low_stock(owner, threshold=-1)

    async def test_dropshipper_has_no_inventory_scope(self, ledger):
        with pytest.raises(ForbiddenError):
            await ledger.low_stock(dropshipper_user(uuid.uuid4()))

    async def test_statistics(self, ledger, marketplace, supplier_id, owner, admin_requester):
        product = marketplace.product(quantity=0, supplier_id=supplier_id)
        marketplace.product(quantity=3, supplier_id=supplier_id)
        marketplace.product(quantity=20, supplier_id=supplier_id)
        marketplace.variant(product, quantity=None)
        marketplace.product(quantity=0)
        await ledger.apply_manual(StockTarget(product.id), 0, owner, notes="Recount")

        stats = await ledger.statistics(owner)

        assert stats.total_products == 3
        assert stats.low_stock_products == 2
        assert stats.out_of_stock_products == 1
        assert stats.total_variants == 1
        assert stats.low_stock_variants == 1
        assert stats.out_of_stock_variants == 1
        assert [e.notes for e in stats.recent_changes] == ["Recount"]

        everything = await ledger.statistics(admin_requester)
        assert everything.total_products == 4
