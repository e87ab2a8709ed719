"""
Tests for the SQL issued by the database-backed repositories.

Statements are captured from a mocked session and compiled with the
PostgreSQL dialect, so row locks, keyset pagination and constraint
mapping are checked without a running database.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from marketplace.database.models.order import Order
from marketplace.database.models.payment import Payment, PaymentType
from marketplace.services.inventory.repository import (
    InventoryRepository,
    InventoryRepositoryError,
    LedgerCursor,
    StockTarget,
)
from marketplace.services.orders.repository import (
    DuplicateExternalOrderError,
    DuplicateOrderNumberError,
    OrderRepository,
    OrderRepositoryError,
)
from marketplace.services.payments.repository import (
    DuplicateTransactionError,
    PaymentRepository,
)


class ConstraintViolation(Exception):
    """Driver error carrying the violated constraint name, as asyncpg does."""

    def __init__(self, constraint_name: str):
        super().__init__(f'duplicate key value violates unique constraint "{constraint_name}"')
        self.constraint_name = constraint_name


def integrity_error(constraint_name: str) -> IntegrityError:
    return IntegrityError("INSERT", {}, ConstraintViolation(constraint_name))


@asynccontextmanager
async def savepoint():
    yield


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock(return_value=MagicMock())
    session.flush = AsyncMock()
    session.begin_nested = MagicMock(side_effect=lambda: savepoint())
    return session


def executed_sql(session: MagicMock) -> str:
    statement = session.execute.await_args.args[0]
    return str(statement.compile(dialect=postgresql.dialect()))


# ============================================================================
# Row Locks
# ============================================================================


@pytest.mark.asyncio
class TestRowLocks:
    async def test_product_lock_names_only_products(self, session):
        async with InventoryRepository(session).locked(StockTarget(uuid.uuid4())):
            pass

        sql = executed_sql(session)
        # the eager sourcing agent join is on the nullable side of an outer join
        assert "LEFT OUTER JOIN sourcing_agents" in sql
        assert sql.endswith("FOR UPDATE OF products")

    async def test_variant_lock_names_only_variants(self, session):
        target = StockTarget(uuid.uuid4(), variant_id=uuid.uuid4())

        async with InventoryRepository(session).locked(target):
            pass

        sql = executed_sql(session)
        assert "product_variants.product_id" in sql
        assert sql.endswith("FOR UPDATE OF product_variants")

    async def test_order_lock_names_only_orders(self, session):
        async with OrderRepository(session).locked(uuid.uuid4()):
            pass

        assert executed_sql(session).endswith("FOR UPDATE OF orders")

    async def test_lock_failure_is_wrapped(self, session):
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("gone"))

        with pytest.raises(InventoryRepositoryError):
            async with InventoryRepository(session).locked(StockTarget(uuid.uuid4())):
                pass


# ============================================================================
# Ledger Pagination
# ============================================================================


@pytest.mark.asyncio
class TestLedgerPagination:
    async def test_first_page_newest_first(self, session):
        await InventoryRepository(session).fetch_entries(
            product_id=uuid.uuid4(), variant_id=None, newest_first=True, limit=50
        )

        sql = executed_sql(session)
        assert "inventory_ledger_entries.product_id = " in sql
        assert "(inventory_ledger_entries.created_at, inventory_ledger_entries.id)" not in sql
        assert (
            "ORDER BY inventory_ledger_entries.created_at DESC, inventory_ledger_entries.id DESC"
            in sql
        )
        assert "LIMIT" in sql

    async def test_next_page_continues_after_cursor(self, session):
        cursor = LedgerCursor(created_at=datetime.now(timezone.utc), id=uuid.uuid4())

        await InventoryRepository(session).fetch_entries(
            product_id=None, variant_id=uuid.uuid4(), newest_first=True, limit=50, after=cursor
        )

        sql = executed_sql(session)
        assert "inventory_ledger_entries.variant_id = " in sql
        assert "(inventory_ledger_entries.created_at, inventory_ledger_entries.id) < (" in sql

    async def test_oldest_first_pages_forward(self, session):
        cursor = LedgerCursor(created_at=datetime.now(timezone.utc), id=uuid.uuid4())

        await InventoryRepository(session).fetch_entries(
            product_id=uuid.uuid4(), variant_id=None, newest_first=False, limit=50, after=cursor
        )

        sql = executed_sql(session)
        assert "(inventory_ledger_entries.created_at, inventory_ledger_entries.id) > (" in sql
        assert (
            "ORDER BY inventory_ledger_entries.created_at ASC, inventory_ledger_entries.id ASC"
            in sql
        )


# ============================================================================
# Constraint Mapping
# ============================================================================


@pytest.mark.asyncio
class TestConstraintMapping:
    async def test_external_order_id_collision(self, session):
        session.flush.side_effect = integrity_error("ix_orders_external_order_id")
        order = Order(order_number="ORD-20240101000000-ABCDEF", external_order_id="820982911946154508")

        with pytest.raises(DuplicateExternalOrderError) as exc_info:
            await OrderRepository(session).create_order(order)

        assert exc_info.value.context["external_order_id"] == "820982911946154508"
        session.begin_nested.assert_called_once()

    async def test_order_number_collision(self, session):
        session.flush.side_effect = integrity_error("ix_orders_order_number")

        with pytest.raises(DuplicateOrderNumberError):
            await OrderRepository(session).create_order(Order(order_number="ORD-20240101000000-ABCDEF"))

    async def test_other_constraint_is_repository_error(self, session):
        session.flush.side_effect = integrity_error("ck_orders_total_non_negative")

        with pytest.raises(OrderRepositoryError):
            await OrderRepository(session).create_order(Order(order_number="ORD-20240101000000-ABCDEF"))

    async def test_transaction_id_collision(self, session):
        session.flush.side_effect = integrity_error("ix_payments_transaction_id")
        payment = Payment(
            transaction_id="commission_abc",
            type=PaymentType.COMMISSION,
            amount=Decimal("10.00"),
        )

        with pytest.raises(DuplicateTransactionError) as exc_info:
            await PaymentRepository(session).create_payment(payment)

        assert exc_info.value.context["transaction_id"] == "commission_abc"
