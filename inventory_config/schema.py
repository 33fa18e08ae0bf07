"""
LedgerSettings schema.

The typed, frozen form of the YAML settings.  The loader parses
``defaults.yaml`` plus any overlay into these types; bridges.py converts
them into the kernel and engine inputs that consume them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

LOCK_BACKENDS = ("auto", "advisory", "local")
PALLET_FALLBACK_POLICIES = ("flag", "strict")


@dataclass(frozen=True)
class LockSettings:
    backend: str = "auto"
    timeout_seconds: float = 5.0
    poll_interval_seconds: float = 0.05


@dataclass(frozen=True)
class ValidationSettings:
    max_cartons: int = 99_999
    max_pallets: int = 9_999
    max_batch_lot_length: int = 100
    duplicate_window_seconds: int = 60
    default_batch_lot: str = "NONE"


@dataclass(frozen=True)
class PalletSettings:
    # flag: balances fall back to 1 carton/pallet and are marked UNCONFIGURED
    # strict: writes without a known ratio are rejected
    fallback_policy: str = "flag"


@dataclass(frozen=True)
class ReconciliationSettings:
    critical_threshold: int = 100
    high_threshold: int = 50
    medium_threshold: int = 10
    history_sample_size: int = 10
    progress_interval: int = 100


@dataclass(frozen=True)
class LedgerSettings:
    """Everything configurable about the ledger, resolved and validated."""

    database_url: str = "sqlite:///inventory_ledger.db"
    lock: LockSettings = field(default_factory=LockSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    pallets: PalletSettings = field(default_factory=PalletSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    checksum: str = ""
    sources: tuple[str, ...] = ()
