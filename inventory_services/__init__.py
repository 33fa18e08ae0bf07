"""
inventory_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure reconciliation engine
    with database sessions, settings and outbound notification.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        inventory_services/ -> inventory_engines/  (allowed)
        inventory_services/ -> inventory_kernel/   (allowed)
        inventory_services/ -> inventory_config/   (allowed)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)
        inventory_engines/  -> inventory_services/ (FORBIDDEN)
"""

from inventory_services.notifications import AdminNotifier, LoggingAdminNotifier
from inventory_services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    InventoryReconciliationService,
    JobHistoryEntry,
    ReconciliationJobResult,
    run_reconciliation_job,
)

__all__ = [
    "AdminNotifier",
    "InventoryReconciliationService",
    "JobHistoryEntry",
    "LoggingAdminNotifier",
    "ReconciliationJobResult",
    "SYSTEM_ACTOR_ID",
    "run_reconciliation_job",
]
