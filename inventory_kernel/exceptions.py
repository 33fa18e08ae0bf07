"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A stock ledger must tell its callers exactly what went wrong so they can
self-correct: how many cartons are actually available, which date a backdated
movement collided with, whether a conflict is worth retrying.  Generic
exceptions force callers to parse messages, which is fragile and untestable.

Every error in this module:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Has an HTTP_STATUS hint for the API layer that translates it
  4. Has a RETRYABLE flag (only lock contention is retryable)
  5. Carries structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        writer.create_transaction(data, actor_id)
    except Exception as e:
        if "Available" in str(e):   # FRAGILE - message might change
            ...

Example - RIGHT way (what this module enables):
    try:
        writer.create_transaction(data, actor_id)
    except InsufficientInventoryError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)
    except LockTimeoutError:
        retry_with_backoff()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from InventoryKernelError:

    InventoryKernelError (base)
    |
    +-- TransactionValidationError
    |   +-- FutureTransactionDateError
    |   +-- PalletConfigurationMissingError
    |
    +-- NotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- SkuNotFoundError
    |   +-- ReconciliationReportNotFoundError
    |
    +-- InventoryError
    |   +-- InsufficientInventoryError
    |   +-- BackdatedTransactionError
    |   +-- DuplicateTransactionError
    |
    +-- ConcurrencyError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ReconciliationError
        +-- ReconciliationInProgressError
        +-- ReconciliationFailedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | HTTP | When Raised
----------------|-------------------------------|------|---------------------------------
Validation      | VALIDATION_ERROR              | 400  | Malformed movement input
                | FUTURE_TRANSACTION_DATE       | 400  | Date after server's today
                | PALLET_CONFIGURATION_MISSING  | 400  | Strict policy, no pallet ratio
----------------|-------------------------------|------|---------------------------------
Not found       | WAREHOUSE_NOT_FOUND           | 404  | Unknown warehouse
                | SKU_NOT_FOUND                 | 404  | Unknown SKU
                | RECONCILIATION_REPORT_NOT_FOUND | 404 | Unknown report id
----------------|-------------------------------|------|---------------------------------
Inventory       | INSUFFICIENT_INVENTORY        | 400  | Outbound exceeds projected stock
                | BACKDATED_TRANSACTION         | 400  | Date before warehouse's latest
                | DUPLICATE_TRANSACTION         | 409  | Same ref/type/warehouse in window
----------------|-------------------------------|------|---------------------------------
Concurrency     | LOCK_TIMEOUT                  | 409  | Key lock not acquired in time
----------------|-------------------------------|------|---------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | 405  | Update/delete of a ledger record
----------------|-------------------------------|------|---------------------------------
Audit           | AUDIT_CHAIN_BROKEN            | 500  | Hash chain validation failed
----------------|-------------------------------|------|---------------------------------
Reconciliation  | RECONCILIATION_IN_PROGRESS    | 409  | Another run is IN_PROGRESS
                | RECONCILIATION_FAILED         | 500  | Scan aborted, report FAILED

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRY ONLY WHAT IS RETRYABLE:

    except InventoryKernelError as e:
        if e.retryable:
            schedule_retry()
        else:
            return error_response(e.http_status, e.code)

2. DUPLICATES ARE "ALREADY APPLIED":

    except DuplicateTransactionError as e:
        # The earlier submission stands; show it to the operator.
        return existing(e.existing_transaction_id)

3. IMMUTABILITY IS A STANDING ERROR:

    Any attempt to update or delete a transaction raises
    ImmutabilityViolationError regardless of payload.  The reason text
    directs the caller to record an adjustment instead.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY CARRY HTTP STATUS HERE?
   The HTTP layer is out of scope, but the mapping is part of the contract
   (409 for contention, 405 for immutability).  Keeping it next to the code
   keeps the two from drifting.
"""

from datetime import date
from typing import Any


class InventoryKernelError(Exception):
    """Base exception for all inventory kernel errors."""

    code: str = "INVENTORY_KERNEL_ERROR"
    http_status: int = 500
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for API responses and log records."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                data[key] = value
        return data


# Validation exceptions


class TransactionValidationError(InventoryKernelError):
    """Malformed movement input: bad shape, out-of-range numbers, missing field."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class FutureTransactionDateError(TransactionValidationError):
    """Transaction date lies after the server's current business day."""

    code: str = "FUTURE_TRANSACTION_DATE"

    def __init__(self, transaction_date: date, today: date):
        self.transaction_date = transaction_date
        self.today = today
        InventoryKernelError.__init__(
            self,
            f"Transaction date {transaction_date.isoformat()} is in the future "
            f"(today is {today.isoformat()})",
        )
        self.field = "transaction_date"


class PalletConfigurationMissingError(TransactionValidationError):
    """No cartons-per-pallet ratio could be resolved under the strict policy."""

    code: str = "PALLET_CONFIGURATION_MISSING"

    def __init__(self, warehouse_code: str, sku_code: str, as_of: date):
        self.warehouse_code = warehouse_code
        self.sku_code = sku_code
        self.as_of = as_of
        InventoryKernelError.__init__(
            self,
            f"No pallet configuration for SKU {sku_code} in warehouse "
            f"{warehouse_code} effective {as_of.isoformat()}",
        )
        self.field = "storage_cartons_per_pallet"


# Not-found exceptions


class NotFoundError(InventoryKernelError):
    """Base exception for missing reference data."""

    code: str = "NOT_FOUND"
    http_status: int = 404


class WarehouseNotFoundError(NotFoundError):
    """Referenced warehouse does not exist."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


class SkuNotFoundError(NotFoundError):
    """Referenced SKU does not exist."""

    code: str = "SKU_NOT_FOUND"

    def __init__(self, sku_id: str):
        self.sku_id = sku_id
        super().__init__(f"SKU not found: {sku_id}")


class ReconciliationReportNotFoundError(NotFoundError):
    """Referenced reconciliation report does not exist."""

    code: str = "RECONCILIATION_REPORT_NOT_FOUND"

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Reconciliation report not found: {report_id}")


# Inventory exceptions


class InventoryError(InventoryKernelError):
    """Base exception for ledger business-rule violations."""

    code: str = "INVENTORY_ERROR"
    http_status: int = 400


class InsufficientInventoryError(InventoryError):
    """Outbound quantity exceeds the projected balance for the key."""

    code: str = "INSUFFICIENT_INVENTORY"

    def __init__(
        self,
        available: int,
        requested: int,
        sku_code: str | None = None,
        batch_lot: str | None = None,
    ):
        self.available = available
        self.requested = requested
        self.sku_code = sku_code
        self.batch_lot = batch_lot
        prefix = "Insufficient inventory"
        if sku_code is not None:
            prefix = f"Insufficient inventory for SKU {sku_code} batch {batch_lot}"
        super().__init__(f"{prefix}. Available: {available}, Requested: {requested}")


class BackdatedTransactionError(InventoryError):
    """Transaction date precedes the warehouse's most recent transaction."""

    code: str = "BACKDATED_TRANSACTION"

    def __init__(
        self,
        attempted_date: date,
        last_transaction_date: date,
        last_transaction_id: str,
    ):
        self.attempted_date = attempted_date
        self.last_transaction_date = last_transaction_date
        self.last_transaction_id = last_transaction_id
        super().__init__(
            f"Cannot create transaction dated {attempted_date.isoformat()}: "
            f"warehouse already has transaction {last_transaction_id} dated "
            f"{last_transaction_date.isoformat()}. Record an adjustment instead."
        )


class DuplicateTransactionError(InventoryError):
    """Near-identical transaction submitted within the anti-double-submit window."""

    code: str = "DUPLICATE_TRANSACTION"
    http_status: int = 409

    def __init__(
        self,
        reference_id: str,
        transaction_type: str,
        existing_transaction_id: str,
        window_seconds: int,
    ):
        self.reference_id = reference_id
        self.transaction_type = transaction_type
        self.existing_transaction_id = existing_transaction_id
        self.window_seconds = window_seconds
        super().__init__(
            f"Duplicate {transaction_type} with reference {reference_id} "
            f"submitted within {window_seconds}s (existing: {existing_transaction_id})"
        )


# Concurrency exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    http_status: int = 409


class LockTimeoutError(ConcurrencyError):
    """The key lock could not be acquired within the bounded wait."""

    code: str = "LOCK_TIMEOUT"
    retryable: bool = True

    def __init__(self, lock_name: str, lock_key: int, timeout_seconds: float):
        self.lock_name = lock_name
        self.lock_key = lock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock on {lock_name}; "
            "another operation is modifying this inventory, retry shortly"
        )


# Immutability exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"
    http_status: int = 405


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    InventoryTransaction, ReconciliationDiscrepancy and AuditEvent are
    immutable after creation; ReconciliationReport is immutable once it
    leaves IN_PROGRESS.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditError(InventoryKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Reconciliation exceptions


class ReconciliationError(InventoryKernelError):
    """Base exception for reconciliation runs."""

    code: str = "RECONCILIATION_ERROR"


class ReconciliationInProgressError(ReconciliationError):
    """Another INVENTORY reconciliation is already IN_PROGRESS."""

    code: str = "RECONCILIATION_IN_PROGRESS"
    http_status: int = 409

    def __init__(self, report_type: str, running_report_id: str):
        self.report_type = report_type
        self.running_report_id = running_report_id
        super().__init__(
            f"A {report_type} reconciliation is already in progress "
            f"(report {running_report_id})"
        )


class ReconciliationFailedError(ReconciliationError):
    """Unhandled error during a scan; the report has been marked FAILED."""

    code: str = "RECONCILIATION_FAILED"

    def __init__(self, report_id: str, error_message: str):
        self.report_id = report_id
        self.error_message = error_message
        super().__init__(f"Reconciliation {report_id} failed: {error_message}")
