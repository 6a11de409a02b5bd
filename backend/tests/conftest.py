"""Pytest configuration and fixtures."""

import itertools
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from order_sync.core.exceptions import NetworkError, RemoteBackendError
from order_sync.db.base import Base
from order_sync.models import KeyValueEntry  # noqa: F401 - registers the table
from order_sync.schemas.order import CartLine, ChangeRecord, HistoryEntry, LedgerEntry
from order_sync.services.change_cache import LocalChangeCache
from order_sync.services.loyalty_cache import LoyaltyBalanceCache
from order_sync.services.network_monitor import NetworkStateMonitor
from order_sync.services.offline_orders import OfflineOrderStore
from order_sync.services.orchestrator import OrderLifecycleOrchestrator
from order_sync.services.remote.base import RemoteBackend
from order_sync.services.storage import InMemoryKeyValueStore, SqlKeyValueStore
from order_sync.services.sync_queue import PendingSyncQueue

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class FakeRemoteBackend(RemoteBackend):
    """
    In-memory stand-in for the remote system of record.

    ``fail_on`` maps a method name to an exception to raise (every call) and
    ``fail_times`` limits how many calls fail before it starts succeeding.
    ``calls`` records (method, args) for every successful call.
    """

    def __init__(self):
        self.reachable = True
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.items: Dict[str, List[CartLine]] = {}
        self.history: List[HistoryEntry] = []
        self.change_records: Dict[str, List[ChangeRecord]] = {}
        self.ledger: Dict[str, LedgerEntry] = {}
        self.loyalty: Dict[str, int] = {}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}
        self.fail_times: Dict[str, int] = {}
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _call(self, name: str, *args) -> None:
        error = self.fail_on.get(name)
        if error is not None:
            remaining = self.fail_times.get(name)
            if remaining is None or remaining > 0:
                if remaining is not None:
                    self.fail_times[name] = remaining - 1
                raise error
        if not self.reachable:
            raise NetworkError(f"{name}: backend unreachable")
        self.calls.append((name, args))

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def ping(self) -> bool:
        return self.reachable

    async def create_order(self, fields):
        self._call("create_order", fields)
        order_id = self._next_id("order")
        self.orders[order_id] = dict(fields)
        self.items[order_id] = []
        return order_id

    async def update_order(self, order_id, fields):
        self._call("update_order", order_id, fields)
        self.orders.setdefault(order_id, {}).update(fields)

    async def insert_order_items(self, order_id, items):
        self._call("insert_order_items", order_id, items)
        self.items.setdefault(order_id, []).extend(items)

    async def delete_order_items(self, order_id):
        self._call("delete_order_items", order_id)
        self.items[order_id] = []

    async def create_history_entry(self, order_id, action, details):
        self._call("create_history_entry", order_id, action, details)
        entry = HistoryEntry(id=self._next_id("hist"), order_id=order_id, action=action, details=details)
        self.history.append(entry)
        return entry.id

    async def insert_change_records(self, history_id, records):
        self._call("insert_change_records", history_id, records)
        self.change_records.setdefault(history_id, []).extend(records)

    async def get_latest_history_entry(self, order_id):
        self._call("get_latest_history_entry", order_id)
        entries = [h for h in self.history if h.order_id == order_id]
        return entries[-1] if entries else None

    async def list_change_records(self, history_id):
        self._call("list_change_records", history_id)
        return list(self.change_records.get(history_id, []))

    async def find_ledger_entry(self, order_id) -> Optional[LedgerEntry]:
        self._call("find_ledger_entry", order_id)
        return next((e for e in self.ledger.values() if e.order_id == order_id), None)

    async def delete_ledger_entry(self, entry_id):
        self._call("delete_ledger_entry", entry_id)
        self.ledger.pop(entry_id, None)

    async def insert_ledger_entry(self, entry):
        self._call("insert_ledger_entry", entry)
        entry_id = self._next_id("ledger")
        self.ledger[entry_id] = entry.model_copy(update={"id": entry_id})
        return entry_id

    async def get_customer_balance(self, customer_id):
        self._call("get_customer_balance", customer_id)
        return sum(
            (e.amount for e in self.ledger.values() if e.customer_id == customer_id),
            Decimal("0"),
        )

    async def get_loyalty_balance(self, customer_id):
        self._call("get_loyalty_balance", customer_id)
        return self.loyalty.get(customer_id, 0)

    async def award_loyalty_points(self, customer_id, order_id, points):
        self._call("award_loyalty_points", customer_id, order_id, points)
        self.loyalty[customer_id] = self.loyalty.get(customer_id, 0) + points
        return self.loyalty[customer_id]

    async def redeem_loyalty_points(self, customer_id, order_id, points):
        self._call("redeem_loyalty_points", customer_id, order_id, points)
        if points > self.loyalty.get(customer_id, 0):
            raise RemoteBackendError("insufficient points", status_code=409)
        self.loyalty[customer_id] -= points
        return self.loyalty[customer_id]


def make_line(name: str, quantity: int, unit_price: str = "5.00", variant: Optional[str] = None) -> CartLine:
    return CartLine(product_name=name, variant_name=variant, quantity=quantity, unit_price=Decimal(unit_price))


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sql_store(db_engine) -> SqlKeyValueStore:
    return SqlKeyValueStore(sessionmaker(autocommit=False, autoflush=False, bind=db_engine))


@pytest.fixture
def remote() -> FakeRemoteBackend:
    return FakeRemoteBackend()


@pytest.fixture
def queue(store) -> PendingSyncQueue:
    return PendingSyncQueue(store)


@pytest.fixture
def offline_orders(store) -> OfflineOrderStore:
    return OfflineOrderStore(store)


@pytest.fixture
def change_cache(store) -> LocalChangeCache:
    return LocalChangeCache(store)


@pytest.fixture
def monitor(remote, queue, offline_orders) -> NetworkStateMonitor:
    return NetworkStateMonitor(
        remote.ping,
        lambda: queue.unsynced_count() + offline_orders.unsynced_count(),
        poll_interval=0.01,
    )


@pytest.fixture
def orchestrator(remote, monitor, change_cache, queue, offline_orders, store) -> OrderLifecycleOrchestrator:
    return OrderLifecycleOrchestrator(
        remote=remote,
        monitor=monitor,
        change_cache=change_cache,
        queue=queue,
        offline_orders=offline_orders,
        loyalty_cache=LoyaltyBalanceCache(store),
    )


@pytest.fixture(scope="function")
def client(orchestrator) -> Generator[TestClient, None, None]:
    """Test client wired to the in-memory orchestrator and fake backend."""
    from order_sync.main import app

    orchestrator.monitor.poll_interval = 3600
    app.state.orchestrator = orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.state.orchestrator = None
