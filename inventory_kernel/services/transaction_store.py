"""
TransactionStore -- the only write primitive of the inventory ledger.

Responsibility:
    Appends InventoryTransaction rows.  Exposes update() and delete() only
    so that callers reaching for them get the standing "method not allowed"
    answer as a typed error instead of an AttributeError.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by InventoryTransactionWriter after every check has passed.

Invariants enforced:
    - Append-only: no code path in the kernel mutates a stored transaction.
      The ORM listeners and DB triggers back this up for code that bypasses
      the store.

Failure modes:
    - ImmutabilityViolationError (405) from update() / delete(), always.
    - IntegrityError from append() on a duplicate transaction_id or CHECK
      violation (the writer's validation makes both unreachable).
"""

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.services.base import BaseService

logger = get_logger("services.transaction_store")


class TransactionStore(BaseService[InventoryTransaction]):
    """Append-only store.  Flushes; never commits."""

    def append(self, transaction: InventoryTransaction) -> InventoryTransaction:
        self.session.add(transaction)
        self.session.flush()
        logger.info(
            "transaction_appended",
            extra={
                "transaction_id": transaction.transaction_id,
                "transaction_type": transaction.movement_type.value,
                "warehouse_id": str(transaction.warehouse_id),
                "sku_id": str(transaction.sku_id),
                "batch_lot": transaction.batch_lot,
                "cartons_in": transaction.cartons_in,
                "cartons_out": transaction.cartons_out,
            },
        )
        return transaction

    def update(self, transaction: InventoryTransaction, **changes) -> None:
        self._reject(transaction, "UPDATE")

    def delete(self, transaction: InventoryTransaction) -> None:
        self._reject(transaction, "DELETE")

    def _reject(self, transaction: InventoryTransaction, operation: str) -> None:
        logger.warning(
            "transaction_mutation_rejected",
            extra={"transaction_id": transaction.transaction_id, "operation": operation},
        )
        raise ImmutabilityViolationError(
            entity_type="InventoryTransaction",
            entity_id=transaction.transaction_id,
            reason="Inventory transactions cannot be changed; record an adjustment instead",
        )
