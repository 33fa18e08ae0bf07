"""
LedgerPolicy -- the tunable limits the transaction writer enforces.

Responsibility:
    Carries quantity bounds, the duplicate-submission window, the batch-lot
    sentinel, the pallet fallback policy and the lock timings into the
    kernel without the kernel importing inventory_config.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  inventory_config.bridges builds one
    from YAML settings; tests construct it directly.
"""

from dataclasses import dataclass
from enum import Enum


class PalletFallbackPolicy(str, Enum):
    """What the writer does when no pallet ratio is known for a key."""

    # Write with no captured ratio; reads fall back to 1 and flag UNCONFIGURED.
    FLAG = "flag"
    # Reject the write with PalletConfigurationMissingError.
    STRICT = "strict"


@dataclass(frozen=True)
class LedgerPolicy:
    max_cartons: int = 99_999
    max_pallets: int = 9_999
    max_batch_lot_length: int = 100
    duplicate_window_seconds: int = 60
    default_batch_lot: str = "NONE"
    pallet_fallback: PalletFallbackPolicy = PalletFallbackPolicy.FLAG
    lock_backend: str = "auto"
    lock_timeout_seconds: float = 5.0
    lock_poll_interval_seconds: float = 0.05
