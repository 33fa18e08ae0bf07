"""
LedgerLockService -- per-key mutual exclusion for ledger mutations.

Responsibility:
    Serializes concurrent mutations to the same (warehouse, SKU, batch) key.
    The lock is scoped to the caller's database transaction: it is released
    when that transaction commits or rolls back, never earlier.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by InventoryTransactionWriter around every write and by the
    reconciliation service around its check-then-insert of a new run.

Invariants enforced:
    - At most one in-flight mutation per key.  Two writers can never both
      read a stale balance and both succeed.
    - Bounded wait: acquisition gives up after the configured timeout with
      a retryable LockTimeoutError instead of blocking indefinitely.
    - Deterministic keys: SHA-256 of "warehouse:sku:batch", first eight
      bytes masked to a non-negative 63-bit integer.
    - Multiple keys are always taken in ascending key order.
    - Re-entrant within one session transaction.

Backends:
    advisory -- PostgreSQL ``pg_try_advisory_xact_lock`` polled until the
        deadline.  Works across processes and instances.
    local    -- in-process keyed locks, for SQLite and single-process
        deployments only.  Entries are reference-counted and swept when no
        holder or waiter remains.  Do not use when several processes write
        to the same database.
    auto     -- advisory on PostgreSQL, local otherwise.

Failure modes:
    - LockTimeoutError (retryable, 409) when the wait exceeds the timeout.
    - ValueError when the advisory backend is requested on a database
      without advisory locks.

Audit relevance:
    Acquisitions and timeouts are logged with the key, the lock name and
    the wait time so contention hot spots are visible.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import event, text
from sqlalchemy.orm import Session, SessionTransaction

from inventory_kernel.exceptions import LockTimeoutError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.utils.hashing import advisory_lock_key

logger = get_logger("services.lock")

T = TypeVar("T")

_HELD_KEYS = "inventory_kernel.held_lock_keys"
_LOCAL_KEYS = "inventory_kernel.local_lock_keys"

RECONCILIATION_LOCK_PARTS = ("reconciliation", "INVENTORY")


class LockBackend(str, Enum):
    AUTO = "auto"
    ADVISORY = "advisory"
    LOCAL = "local"


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class KeyedLockRegistry:
    """
    In-process map of lock key -> mutex.

    An entry exists only while some session holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[int, _Entry] = {}

    def acquire(self, key: int, timeout: float) -> bool:
        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.refs += 1
        acquired = entry.lock.acquire(timeout=max(timeout, 0))
        if not acquired:
            self._unref(key, entry)
        return acquired

    def release(self, key: int) -> None:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry.lock.release()
            entry.refs -= 1
            if entry.refs == 0:
                del self._entries[key]

    def _unref(self, key: int, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, key: int) -> bool:
        with self._guard:
            return key in self._entries


local_lock_registry = KeyedLockRegistry()


def _release_session_locks(session: Session, transaction: SessionTransaction) -> None:
    """Release this session's locks when its outermost transaction ends."""
    if transaction.parent is not None:
        return
    session.info.pop(_HELD_KEYS, None)
    local_keys = session.info.pop(_LOCAL_KEYS, None)
    if local_keys:
        for key in local_keys:
            local_lock_registry.release(key)
        logger.debug("local_locks_released", extra={"lock_count": len(local_keys)})


if not event.contains(Session, "after_transaction_end", _release_session_locks):
    event.listen(Session, "after_transaction_end", _release_session_locks)


class LedgerLockService:
    """
    Transaction-scoped locks keyed by ledger key.

    Contract:
        Locks taken through this service are held until the session's
        current transaction ends.  The caller owns that transaction.
    """

    def __init__(
        self,
        session: Session,
        timeout_seconds: float = 5.0,
        poll_interval_seconds: float = 0.05,
        backend: LockBackend | str = LockBackend.AUTO,
    ):
        self.session = session
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.backend = self._resolve_backend(LockBackend(backend))

    def _resolve_backend(self, backend: LockBackend) -> LockBackend:
        dialect = self.session.get_bind().dialect.name
        if backend is LockBackend.AUTO:
            return LockBackend.ADVISORY if dialect == "postgresql" else LockBackend.LOCAL
        if backend is LockBackend.ADVISORY and dialect != "postgresql":
            raise ValueError(f"Advisory locks are not available on {dialect}")
        return backend

    @staticmethod
    def lock_key(*parts: Any) -> int:
        return advisory_lock_key(*parts)

    def held_keys(self) -> frozenset[int]:
        return frozenset(self.session.info.get(_HELD_KEYS, ()))

    def acquire(self, *parts: Any) -> int:
        """
        Acquire the lock for a tuple of key parts.  Returns the lock key.

        Raises:
            LockTimeoutError: if the lock is not acquired within the timeout.
        """
        key = advisory_lock_key(*parts)
        name = ":".join(str(p) for p in parts)
        held = self.session.info.setdefault(_HELD_KEYS, set())
        if key in held:
            return key

        # Begin the session transaction so its end releases the lock.
        self.session.connection()

        started = time.monotonic()
        if self.backend is LockBackend.ADVISORY:
            self._acquire_advisory(key, name, started)
        else:
            self._acquire_local(key, name)
        held.add(key)

        logger.debug(
            "lock_acquired",
            extra={
                "lock_name": name,
                "lock_key": key,
                "backend": self.backend.value,
                "wait_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return key

    def acquire_many(self, parts_list: list[tuple[Any, ...]]) -> list[int]:
        """Acquire several locks in ascending key order."""
        ordered = sorted(parts_list, key=lambda parts: advisory_lock_key(*parts))
        return [self.acquire(*parts) for parts in ordered]

    def with_exclusive_access(
        self,
        warehouse_id: Any,
        sku_id: Any,
        batch_lot: str,
        fn: Callable[[], T],
    ) -> T:
        """Run fn while holding the key's lock; the lock outlives fn until commit."""
        self.acquire(warehouse_id, sku_id, batch_lot)
        return fn()

    def _acquire_advisory(self, key: int, name: str, started: float) -> None:
        deadline = started + self.timeout_seconds
        while True:
            acquired = self.session.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": key}
            ).scalar()
            if acquired:
                return
            if time.monotonic() >= deadline:
                self._timeout(key, name)
            time.sleep(self.poll_interval_seconds)

    def _acquire_local(self, key: int, name: str) -> None:
        if not local_lock_registry.acquire(key, self.timeout_seconds):
            self._timeout(key, name)
        self.session.info.setdefault(_LOCAL_KEYS, []).append(key)

    def _timeout(self, key: int, name: str) -> None:
        logger.warning(
            "lock_timeout",
            extra={
                "lock_name": name,
                "lock_key": key,
                "backend": self.backend.value,
                "timeout_seconds": self.timeout_seconds,
            },
        )
        raise LockTimeoutError(name, key, self.timeout_seconds)
