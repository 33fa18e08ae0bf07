"""Write-side kernel services: ledger writer, store, locks, sequences, audit."""

from inventory_kernel.services.auditor_service import AuditorService
from inventory_kernel.services.lock_service import (
    KeyedLockRegistry,
    LedgerLockService,
    LockBackend,
    local_lock_registry,
)
from inventory_kernel.services.sequence_service import SequenceCounter, SequenceService
from inventory_kernel.services.transaction_store import TransactionStore
from inventory_kernel.services.transaction_writer import InventoryTransactionWriter

__all__ = [
    "AuditorService",
    "InventoryTransactionWriter",
    "KeyedLockRegistry",
    "LedgerLockService",
    "LockBackend",
    "SequenceCounter",
    "SequenceService",
    "TransactionStore",
    "local_lock_registry",
]
