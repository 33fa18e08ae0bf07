"""Read-only selectors over the ledger and reconciliation output."""

from inventory_kernel.selectors.balance_selector import (
    AvailabilityCheck,
    BalanceSelector,
    SkuInventorySummary,
)
from inventory_kernel.selectors.reconciliation_selector import ReconciliationSelector
from inventory_kernel.selectors.transaction_selector import (
    HistoryEntry,
    LedgerKeyStats,
    TransactionSelector,
)

__all__ = [
    "TransactionSelector",
    "HistoryEntry",
    "LedgerKeyStats",
    "BalanceSelector",
    "AvailabilityCheck",
    "SkuInventorySummary",
    "ReconciliationSelector",
]
