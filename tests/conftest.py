"""
Pytest fixtures for the FloorOps test suite.
"""

import os
from datetime import datetime, timedelta, timezone

# Test environment: in-memory store, no retry pauses
os.environ["ENV_MODE"] = "development"
os.environ["DEBUG"] = "false"
os.environ["AUDIT_RETRY_DELAY_SECONDS"] = "0"
os.environ["AUTO_REJECT_TIMEOUT_SECONDS"] = "10"
os.environ["STORE_FAILURE_RATE"] = "0"

import pytest

from floorops.core.config import get_settings
from floorops.schemas import Order, OrderCreate, OrderItem, OrderStatus
from floorops.services.audit_ledger import AuditLedger
from floorops.services.claim_coordinator import ClaimCoordinator
from floorops.services.order_repository import OrderRepository
from floorops.services.store import InMemoryStoreAdapter, reset_store_adapter

get_settings.cache_clear()

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock: every call is one millisecond after the last."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(milliseconds=1)
        return self.now


@pytest.fixture(autouse=True)
def fresh_factories():
    """Every test starts with a fresh settings object and store instance."""
    get_settings.cache_clear()
    reset_store_adapter()
    yield
    reset_store_adapter()


@pytest.fixture
def store():
    """In-memory document store."""
    return InMemoryStoreAdapter()


@pytest.fixture
def repository(store):
    return OrderRepository(store)


@pytest.fixture
def ledger(store):
    return AuditLedger(store, retry_delay=0)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def coordinator(repository, ledger, clock):
    """Coordinator over the in-memory store with a 10 s auto-reject timeout."""
    return ClaimCoordinator(repository, ledger, clock=clock, auto_reject_timeout=10.0)


@pytest.fixture
def make_item():
    """Factory for order items."""
    def _make(catalog_id: str, quantity: int = 1, unit_price: float = 10.0, name: str = None) -> OrderItem:
        return OrderItem(
            catalog_id=catalog_id,
            name=name or catalog_id.title(),
            unit_price=unit_price,
            quantity=quantity,
        )
    return _make


@pytest.fixture
def order_request(make_item):
    """Factory for order placement requests."""
    def _make(table_number: int = 12, items=None, floor: int = 1) -> OrderCreate:
        return OrderCreate(
            table_number=table_number,
            floor=floor,
            seating_type="Table",
            items=items or [make_item("plov", 2, 45.0), make_item("tea", 1, 8.0)],
        )
    return _make


@pytest.fixture
def make_order(make_item):
    """Factory for Order models built directly (no store)."""
    counter = {"n": 0}

    def _make(
        status: OrderStatus = OrderStatus.PENDING,
        claimed_by: str = None,
        last_rejected_by: str = None,
        has_new_items: bool = False,
        minutes_ago: int = 0,
        order_id: str = None,
    ) -> Order:
        counter["n"] += 1
        created_at = BASE_TIME - timedelta(minutes=minutes_ago)
        return Order(
            id=order_id or f"order_{counter['n']}",
            table_number=counter["n"],
            items=[make_item("plov")],
            status=status,
            claimed_by=claimed_by,
            claimed_by_name=claimed_by.title() if claimed_by else None,
            last_rejected_by=last_rejected_by,
            has_new_items=has_new_items,
            created_at=created_at,
            delivered_at=created_at if status == OrderStatus.DELIVERED else None,
        )
    return _make
