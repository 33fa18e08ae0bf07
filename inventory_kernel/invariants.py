"""
Ledger Invariants Contract.

These invariants are structural law.  They are hardcoded in the transaction
writer, the lock service and the database triggers.  No setting in
inventory_config may override them.

This module exists solely to declare these invariants explicitly.  The
enforcement is distributed across InventoryTransactionWriter,
LedgerLockService, SequenceService, the immutability listeners and the
database triggers.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Configuration may influence *how much* is accepted (quantity bounds,
    duplicate window, pallet fallback policy), but never *whether* these
    rules apply.
    """

    IMMUTABILITY = "immutability"
    """Inventory transactions are append-only.  No UPDATE or DELETE on
    ledger rows.  Enforced by db/immutability.py and the SQL triggers."""

    CONSERVATION = "conservation"
    """A key's balance equals its cartons in minus its cartons out.
    Enforced by the fold in domain/balance.py; nothing stores a balance."""

    NON_NEGATIVE_OUTBOUND = "non_negative_outbound"
    """An outbound movement never exceeds the stock projected as of its
    date.  Enforced by InventoryTransactionWriter under the key lock."""

    MUTUAL_EXCLUSION = "mutual_exclusion"
    """At most one in-flight mutation per (warehouse, SKU, batch) key.
    Enforced by LedgerLockService."""

    NO_BACKDATING = "no_backdating"
    """A transaction date is never earlier than the warehouse's latest
    transaction date.  Enforced by InventoryTransactionWriter."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Transaction id suffixes and audit sequence numbers are strictly
    increasing.  Enforced by SequenceService with locked counter rows."""

    CAPTURED_RATIOS = "captured_ratios"
    """Units-per-carton and pallet ratios are captured at write time and
    never re-derived from live configuration."""


# All invariants as a frozenset for programmatic checks.
ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# The kernel package may not import from these packages.
# Enforced by tests/architecture/test_layer_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "inventory_services",
    "inventory_config",
    "inventory_engines",
)
