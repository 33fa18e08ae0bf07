"""
ORM-level immutability enforcement (layer 1 of 2).

Stock records must be tamper-proof.  A ledger row that changes after the
fact silently rewrites every balance projected from it, so corrections are
new ADJUST_IN / ADJUST_OUT rows and never edits.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy sessions
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/<dialect>/*.sql (database triggers)
    - Catches raw SQL and bulk UPDATE / DELETE statements
    - Fires AT the database level, independent of application code

Protected entities:

Entity                     | When immutable                        | Why
---------------------------|---------------------------------------|-------------------------------
InventoryTransaction       | ALWAYS (from creation)                | Replay must be well defined
ReconciliationDiscrepancy  | ALWAYS (from creation)                | Findings of a finished run
AuditEvent                 | ALWAYS (from creation)                | Hash chain
ReconciliationReport       | Once status left IN_PROGRESS; never   | Completed / failed runs are
                           | deletable                             | historical record

The report check looks at the *previous* status through SQLAlchemy's
attribute history, so the run's own IN_PROGRESS -> COMPLETED / FAILED
transition is allowed and anything after it is not.

Usage:

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that must perform a forbidden operation on purpose call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_inventory_transaction_update(mapper, connection, target):
    _block(
        "InventoryTransaction",
        target,
        "UPDATE",
        "Inventory transactions are immutable; record an adjustment instead",
    )


def _check_inventory_transaction_delete(mapper, connection, target):
    _block(
        "InventoryTransaction",
        target,
        "DELETE",
        "Inventory transactions cannot be deleted; record an adjustment instead",
    )


def _check_discrepancy_update(mapper, connection, target):
    _block(
        "ReconciliationDiscrepancy",
        target,
        "UPDATE",
        "Reconciliation discrepancies are immutable once recorded",
    )


def _check_discrepancy_delete(mapper, connection, target):
    _block(
        "ReconciliationDiscrepancy",
        target,
        "DELETE",
        "Reconciliation discrepancies cannot be deleted",
    )


def _check_audit_event_update(mapper, connection, target):
    _block(
        "AuditEvent",
        target,
        "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _check_report_update(mapper, connection, target):
    """
    Allow updates only while the stored status is IN_PROGRESS.
    """
    from inventory_kernel.models.reconciliation import ReconciliationStatus

    history = get_history(target, "status")
    if history.deleted:
        previous = history.deleted[0]
    elif history.unchanged:
        previous = history.unchanged[0]
    else:
        previous = target.status

    if ReconciliationStatus(previous) is not ReconciliationStatus.IN_PROGRESS:
        _block(
            "ReconciliationReport",
            target,
            "UPDATE",
            f"Reconciliation report is {ReconciliationStatus(previous).value} and can no longer change",
        )


def _check_report_delete(mapper, connection, target):
    _block(
        "ReconciliationReport",
        target,
        "DELETE",
        "Reconciliation reports are retained; deletion is an external retention concern",
    )


def _listeners():
    from inventory_kernel.models.audit_event import AuditEvent
    from inventory_kernel.models.inventory_transaction import InventoryTransaction
    from inventory_kernel.models.reconciliation import (
        ReconciliationDiscrepancy,
        ReconciliationReport,
    )

    return [
        (InventoryTransaction, "before_update", _check_inventory_transaction_update),
        (InventoryTransaction, "before_delete", _check_inventory_transaction_delete),
        (ReconciliationDiscrepancy, "before_update", _check_discrepancy_update),
        (ReconciliationDiscrepancy, "before_delete", _check_discrepancy_delete),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (ReconciliationReport, "before_update", _check_report_update),
        (ReconciliationReport, "before_delete", _check_report_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after the models are importable and before any
    database operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove every immutability listener.

    WARNING: tests only.  Never call this in production code.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
