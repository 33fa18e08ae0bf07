"""
Inventory Kernel

An event-sourced, append-only inventory ledger with:
- Immutable stock-movement transactions
- Balances derived by replaying the ledger (never stored)
- Per-key advisory locking around every mutation
- Reconciliation of derived balances against the non-negativity invariant
- Full auditability via hash chain
"""

__version__ = "0.1.0"
