"""
Pytest fixtures for the inventory ledger test suite.

Provides:
- A fresh database per test (temporary SQLite file, or DATABASE_URL)
- Sessions, a deterministic clock and a ledger writer
- Reference data factories (warehouses, SKUs, pallet configurations)
- Structured log capture

Environment Variables:
- DATABASE_URL: run against this database instead of a temporary SQLite
  file.  Tests marked ``postgres`` are skipped unless it points at
  PostgreSQL.
"""

import json
import logging
import os
from datetime import UTC, date, datetime
from io import StringIO
from uuid import UUID

import pytest

from inventory_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from inventory_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.dtos import TransactionInput, TransactionType
from inventory_kernel.domain.policy import LedgerPolicy
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.models.warehouse import Sku, Warehouse, WarehouseSkuConfig
from inventory_kernel.services.transaction_writer import InventoryTransactionWriter

# Test actor ID for all test operations
TEST_ACTOR_ID = UUID("5f0c6a52-8d0e-4b8e-9a53-0d7c1e2f3a41")

# The deterministic clock's "now"; every business date in the suite is on
# or before TODAY.
TEST_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=UTC)
TODAY = TEST_NOW.date()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for locks"
    )


def pytest_collection_modifyitems(config, items):
    if os.environ.get("DATABASE_URL", "").startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, writer):
            writer.create_transaction(...)
            logs = captured_logs()
            assert any(r["message"] == "create_transaction_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url(tmp_path) -> str:
    """DATABASE_URL if set, otherwise a SQLite file private to the test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Engine with tables, triggers and ORM immutability listeners installed."""
    eng = init_engine_from_url(
        get_database_url(tmp_path), pool_size=10, max_overflow=10, pool_timeout=10
    )
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def policy():
    return LedgerPolicy(lock_timeout_seconds=2.0, lock_poll_interval_seconds=0.01)


@pytest.fixture
def writer(session, clock, policy):
    return InventoryTransactionWriter(session, clock=clock, policy=policy)


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Reference data factories
# =============================================================================


@pytest.fixture
def create_warehouse(session):
    def _create(code: str = "WH1", name: str | None = None, is_active: bool = True) -> Warehouse:
        warehouse = Warehouse(code=code, name=name or f"Warehouse {code}", is_active=is_active)
        session.add(warehouse)
        session.commit()
        return warehouse

    return _create


@pytest.fixture
def create_sku(session):
    def _create(sku_code: str = "SKU-001", units_per_carton: int = 12) -> Sku:
        sku = Sku(sku_code=sku_code, description=f"{sku_code} test item", units_per_carton=units_per_carton)
        session.add(sku)
        session.commit()
        return sku

    return _create


@pytest.fixture
def create_config(session):
    def _create(
        warehouse: Warehouse,
        sku: Sku,
        storage: int = 10,
        shipping: int = 20,
        effective_date: date = date(2024, 1, 1),
        end_date: date | None = None,
    ) -> WarehouseSkuConfig:
        config = WarehouseSkuConfig(
            warehouse_id=warehouse.id,
            sku_id=sku.id,
            storage_cartons_per_pallet=storage,
            shipping_cartons_per_pallet=shipping,
            effective_date=effective_date,
            end_date=end_date,
        )
        session.add(config)
        session.commit()
        return config

    return _create


@pytest.fixture
def warehouse(create_warehouse):
    return create_warehouse("WH1", "Main Warehouse")


@pytest.fixture
def sku(create_sku):
    return create_sku("SKU-001", units_per_carton=12)


@pytest.fixture
def configured(warehouse, sku, create_config):
    """WH1 / SKU-001 with 10 cartons per storage pallet, 20 per shipping pallet."""
    create_config(warehouse, sku, storage=10, shipping=20)
    return warehouse, sku


# =============================================================================
# Movement helpers
# =============================================================================


def make_input(
    warehouse,
    sku,
    transaction_type: TransactionType,
    cartons: int,
    transaction_date: date = TODAY,
    batch_lot: str | None = "LOT-A",
    **kwargs,
) -> TransactionInput:
    movement = TransactionType(transaction_type)
    quantities = {"cartons_in": cartons} if movement.is_inbound else {"cartons_out": cartons}
    return TransactionInput(
        warehouse_id=warehouse.id,
        sku_id=sku.id,
        transaction_type=movement,
        transaction_date=transaction_date,
        batch_lot=batch_lot,
        **quantities,
        **kwargs,
    )


@pytest.fixture
def receive(writer, test_actor_id):
    def _receive(warehouse, sku, cartons, transaction_date=TODAY, batch_lot="LOT-A", **kwargs):
        return writer.create_transaction(
            make_input(
                warehouse, sku, TransactionType.RECEIVE, cartons,
                transaction_date=transaction_date, batch_lot=batch_lot, **kwargs,
            ),
            test_actor_id,
        )

    return _receive


@pytest.fixture
def ship(writer, test_actor_id):
    def _ship(warehouse, sku, cartons, transaction_date=TODAY, batch_lot="LOT-A", **kwargs):
        return writer.create_transaction(
            make_input(
                warehouse, sku, TransactionType.SHIP, cartons,
                transaction_date=transaction_date, batch_lot=batch_lot, **kwargs,
            ),
            test_actor_id,
        )

    return _ship
