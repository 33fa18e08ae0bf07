"""Domain models for the inventory kernel."""

from inventory_kernel.domain.dtos import INBOUND_TYPES, OUTBOUND_TYPES, TransactionType
from inventory_kernel.models.audit_event import AuditAction, AuditEvent
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.models.reconciliation import (
    DiscrepancySeverity,
    ReconciliationDiscrepancy,
    ReconciliationReport,
    ReconciliationReportType,
    ReconciliationStatus,
)
from inventory_kernel.models.warehouse import Sku, Warehouse, WarehouseSkuConfig

__all__ = [
    "Warehouse",
    "Sku",
    "WarehouseSkuConfig",
    "InventoryTransaction",
    "TransactionType",
    "INBOUND_TYPES",
    "OUTBOUND_TYPES",
    "ReconciliationReport",
    "ReconciliationDiscrepancy",
    "ReconciliationReportType",
    "ReconciliationStatus",
    "DiscrepancySeverity",
    "AuditEvent",
    "AuditAction",
    "import_all_models",
]


def import_all_models() -> None:
    """Import every ORM module so Base.metadata holds all tables."""
    import inventory_kernel.models.audit_event  # noqa: F401
    import inventory_kernel.models.inventory_transaction  # noqa: F401
    import inventory_kernel.models.reconciliation  # noqa: F401
    import inventory_kernel.models.warehouse  # noqa: F401
    import inventory_kernel.services.sequence_service  # noqa: F401
