"""
Pytest configuration and shared test fixtures.

Environment variables are set before the application package is imported
so cached settings pick up the test configuration. Service fixtures wire
the real services to the in-memory collaborators from ``tests.fakes``.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-that-is-at-least-32-chars")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

import uuid
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from marketplace.core.config import get_settings
from marketplace.core.identity import Requester
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.orders.service import OrderService
from marketplace.services.payments.service import SettlementLedger
from tests.fakes import (
    FakeCatalog,
    FakeInventoryRepository,
    FakeOrderRepository,
    FakePaymentRepository,
    Marketplace,
    RecordingDispatcher,
    admin,
)


@pytest.fixture
def settings():
    """Process-wide settings instance."""
    return get_settings()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def inventory_repository() -> FakeInventoryRepository:
    return FakeInventoryRepository()


@pytest.fixture
def order_repository() -> FakeOrderRepository:
    return FakeOrderRepository()


@pytest.fixture
def payment_repository() -> FakePaymentRepository:
    return FakePaymentRepository()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def marketplace(catalog, inventory_repository) -> Marketplace:
    """
    Builder registering products, variants and dropshippers.

    Example:
        def test_something(marketplace):
            product = marketplace.product(price="50.00", quantity=3)
    """
    return Marketplace(catalog, inventory_repository)


@pytest.fixture
def ledger(catalog, inventory_repository) -> InventoryLedger:
    return InventoryLedger(repository=inventory_repository, catalog=catalog)


@pytest.fixture
def settlement(payment_repository) -> SettlementLedger:
    return SettlementLedger(repository=payment_repository)


@pytest.fixture
def order_service(
    catalog,
    ledger,
    settlement,
    dispatcher,
    order_repository,
) -> OrderService:
    """OrderService wired to in-memory collaborators."""
    return OrderService(
        catalog=catalog,
        ledger=ledger,
        settlement=settlement,
        dispatcher=dispatcher,
        repository=order_repository,
    )


@pytest.fixture
def admin_requester() -> Requester:
    return admin()


@pytest.fixture
def supplier_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def test_client() -> Generator[TestClient, None, None]:
    """
    Synchronous test client for the FastAPI application.

    Dependency overrides set by a test are cleared afterwards.
    """
    from marketplace.main import app

    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
