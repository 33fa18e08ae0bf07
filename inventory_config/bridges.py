"""
Config -> kernel / engine bridges.

Functions that convert LedgerSettings into the inputs the kernel and the
engines consume.  They live in inventory_config (the producer) because the
kernel must never import inventory_config.

Usage:
    from inventory_config.bridges import build_ledger_policy

    settings = get_active_settings()
    writer = InventoryTransactionWriter(session, policy=build_ledger_policy(settings))
"""

from __future__ import annotations

from inventory_config.schema import LedgerSettings
from inventory_engines.reconciliation import SeverityThresholds
from inventory_kernel.domain.policy import LedgerPolicy, PalletFallbackPolicy


def build_ledger_policy(settings: LedgerSettings) -> LedgerPolicy:
    """Build the writer's LedgerPolicy from validation, pallet and lock settings."""
    validation = settings.validation
    return LedgerPolicy(
        max_cartons=validation.max_cartons,
        max_pallets=validation.max_pallets,
        max_batch_lot_length=validation.max_batch_lot_length,
        duplicate_window_seconds=validation.duplicate_window_seconds,
        default_batch_lot=validation.default_batch_lot,
        pallet_fallback=PalletFallbackPolicy(settings.pallets.fallback_policy),
        lock_backend=settings.lock.backend,
        lock_timeout_seconds=settings.lock.timeout_seconds,
        lock_poll_interval_seconds=settings.lock.poll_interval_seconds,
    )


def build_severity_thresholds(settings: LedgerSettings) -> SeverityThresholds:
    r = settings.reconciliation
    return SeverityThresholds(
        critical=r.critical_threshold,
        high=r.high_threshold,
        medium=r.medium_threshold,
    )
