"""
Per-key mutual exclusion.

Two writers on the same (warehouse, SKU, batch) key can never both read a
stale balance and both succeed.  Locks are transaction-scoped, wait for a
bounded time and are swept from the in-process registry once released.

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from inventory_kernel.db.engine import is_postgres
from inventory_kernel.domain.balance import LedgerKey
from inventory_kernel.domain.dtos import TransactionType
from inventory_kernel.domain.policy import LedgerPolicy
from inventory_kernel.exceptions import InsufficientInventoryError, LockTimeoutError
from inventory_kernel.selectors.balance_selector import BalanceSelector
from inventory_kernel.selectors.transaction_selector import TransactionSelector
from inventory_kernel.services.lock_service import (
    LedgerLockService,
    LockBackend,
    local_lock_registry,
)
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.services.transaction_writer import InventoryTransactionWriter
from inventory_kernel.utils.hashing import advisory_lock_key
from tests.conftest import make_input

pytestmark = pytest.mark.slow_locks


class TestLockKeys:
    def test_keys_are_deterministic_and_63_bit(self):
        key = advisory_lock_key("wh", "sku", "LOT-A")
        assert key == advisory_lock_key("wh", "sku", "LOT-A")
        assert 0 <= key < 2**63
        assert key != advisory_lock_key("wh", "sku", "LOT-B")

    def test_ledger_key_lock_parts(self, warehouse, sku):
        key = LedgerKey(warehouse.id, sku.id, "LOT-A")
        assert LedgerLockService.lock_key(*key.lock_parts()) == advisory_lock_key(
            warehouse.id, sku.id, "LOT-A"
        )

    def test_auto_backend_resolves_by_dialect(self, session):
        service = LedgerLockService(session)
        expected = LockBackend.ADVISORY if is_postgres() else LockBackend.LOCAL
        assert service.backend is expected


class TestLockLifecycle:
    def test_reentrant_within_one_transaction(self, session):
        locks = LedgerLockService(session, timeout_seconds=0.2)
        first = locks.acquire("wh", "sku", "LOT-A")
        assert locks.acquire("wh", "sku", "LOT-A") == first
        assert locks.held_keys() == {first}
        session.rollback()
        assert locks.held_keys() == frozenset()

    def test_acquire_many_takes_keys_in_ascending_order(self, session):
        locks = LedgerLockService(session, timeout_seconds=0.2)
        parts = [("wh", "sku", f"LOT-{n}") for n in range(5)]
        keys = locks.acquire_many(parts)
        assert keys == sorted(keys)
        assert locks.held_keys() == set(keys)
        session.rollback()

    def test_exclusive_access_holds_the_key_while_running(self, session):
        locks = LedgerLockService(session, timeout_seconds=0.2)
        expected = LedgerLockService.lock_key("wh", "sku", "LOT-X")

        def body():
            assert expected in locks.held_keys()
            return "done"

        assert locks.with_exclusive_access("wh", "sku", "LOT-X", body) == "done"
        assert expected in locks.held_keys()
        session.commit()
        assert locks.held_keys() == frozenset()

    def test_second_session_times_out_with_retryable_error(self, session, session_factory):
        holder = LedgerLockService(session, timeout_seconds=0.2, poll_interval_seconds=0.01)
        holder.acquire("wh", "sku", "LOT-A")

        other_session = session_factory()
        try:
            waiter = LedgerLockService(
                other_session, timeout_seconds=0.2, poll_interval_seconds=0.01
            )
            with pytest.raises(LockTimeoutError) as exc_info:
                waiter.acquire("wh", "sku", "LOT-A")
            assert exc_info.value.retryable
            assert exc_info.value.code == "LOCK_TIMEOUT"
            assert exc_info.value.lock_name == "wh:sku:LOT-A"
        finally:
            other_session.rollback()
            other_session.close()
        session.rollback()

    def test_commit_releases_for_the_next_session(self, session, session_factory):
        LedgerLockService(session, timeout_seconds=0.2).acquire("wh", "sku", "LOT-A")
        session.commit()

        other_session = session_factory()
        try:
            other = LedgerLockService(other_session, timeout_seconds=0.2)
            other.acquire("wh", "sku", "LOT-A")
        finally:
            other_session.rollback()
            other_session.close()

    def test_registry_is_swept_after_release(self, session, db_engine):
        if session.get_bind().dialect.name == "postgresql":
            pytest.skip("in-process registry is only used off PostgreSQL")
        before = len(local_lock_registry)
        locks = LedgerLockService(session, timeout_seconds=0.2)
        key = locks.acquire("wh", "sku", "LOT-SWEEP")
        assert key in local_lock_registry
        session.commit()
        assert key not in local_lock_registry
        assert len(local_lock_registry) == before

    def test_timed_out_waiter_leaves_no_entry_behind(self, session, session_factory):
        if session.get_bind().dialect.name == "postgresql":
            pytest.skip("in-process registry is only used off PostgreSQL")
        key = LedgerLockService(session, timeout_seconds=0.1).acquire("wh", "sku", "LOT-T")

        other_session = session_factory()
        try:
            with pytest.raises(LockTimeoutError):
                LedgerLockService(other_session, timeout_seconds=0.05).acquire("wh", "sku", "LOT-T")
        finally:
            other_session.close()

        session.rollback()
        assert key not in local_lock_registry

    def test_writer_times_out_on_a_busy_key(
        self, session, session_factory, clock, configured, receive, test_actor_id
    ):
        warehouse, sku = configured
        receive(warehouse, sku, 10)

        blocker = session_factory()
        try:
            LedgerLockService(blocker).acquire(
                *LedgerKey(warehouse.id, sku.id, "LOT-A").lock_parts()
            )
            writer = InventoryTransactionWriter(
                session,
                clock=clock,
                policy=LedgerPolicy(lock_timeout_seconds=0.1, lock_poll_interval_seconds=0.01),
            )
            with pytest.raises(LockTimeoutError):
                writer.create_transaction(
                    make_input(warehouse, sku, TransactionType.SHIP, 1), test_actor_id
                )
        finally:
            blocker.rollback()
            blocker.close()

    @pytest.mark.postgres
    def test_advisory_lock_blocks_other_connections(self, session, session_factory):
        locks = LedgerLockService(session, backend=LockBackend.ADVISORY, timeout_seconds=0.2)
        locks.acquire("wh", "sku", "LOT-PG")

        other_session = session_factory()
        try:
            waiter = LedgerLockService(
                other_session, backend=LockBackend.ADVISORY, timeout_seconds=0.2,
                poll_interval_seconds=0.01,
            )
            with pytest.raises(LockTimeoutError):
                waiter.acquire("wh", "sku", "LOT-PG")
        finally:
            other_session.rollback()
            other_session.close()
        session.rollback()


class TestConcurrentWriters:
    def test_concurrent_ships_never_oversell(
        self, session, session_factory, clock, configured, receive, test_actor_id
    ):
        warehouse, sku = configured
        receive(warehouse, sku, 10)
        policy = LedgerPolicy(lock_timeout_seconds=20.0, lock_poll_interval_seconds=0.01)
        start = threading.Barrier(6)

        def ship_four(_):
            worker_session = session_factory()
            try:
                writer = InventoryTransactionWriter(worker_session, clock=clock, policy=policy)
                start.wait()
                try:
                    writer.create_transaction(
                        make_input(warehouse, sku, TransactionType.SHIP, 4), test_actor_id
                    )
                    return "shipped"
                except InsufficientInventoryError:
                    return "rejected"
            finally:
                worker_session.close()

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(ship_four, range(6)))

        assert outcomes.count("shipped") == 2
        assert outcomes.count("rejected") == 4

        session.expire_all()
        balance = BalanceSelector(session, clock).project(warehouse.id, sku.id, "LOT-A")
        assert balance.current_cartons == 2

    def test_concurrent_receipts_get_distinct_sequence_numbers(
        self, session, session_factory, clock, configured, create_sku, test_actor_id
    ):
        warehouse, _ = configured
        skus = [create_sku(f"SKU-C{i}") for i in range(5)]
        policy = LedgerPolicy(lock_timeout_seconds=20.0, lock_poll_interval_seconds=0.01)
        start = threading.Barrier(len(skus))

        def receive_one(item_sku):
            worker_session = session_factory()
            try:
                writer = InventoryTransactionWriter(worker_session, clock=clock, policy=policy)
                start.wait()
                return writer.create_transaction(
                    make_input(warehouse, item_sku, TransactionType.RECEIVE, 1), test_actor_id
                ).transaction_id
            finally:
                worker_session.close()

        with ThreadPoolExecutor(max_workers=len(skus)) as pool:
            transaction_ids = list(pool.map(receive_one, skus))

        assert sorted(transaction_ids) == [f"WH1-REC-20240315-{n:03d}" for n in range(1, 6)]
        assert TransactionSelector(session).count() == 5
        assert SequenceService(session).current_value(
            SequenceService.transaction_sequence_name("WH1", "20240315")
        ) == 5
