"""
Inventory reconciliation -- pure discrepancy rules over projected balances.

Responsibility:
    Decides whether a projected balance is a discrepancy, how severe it is,
    and how a run's findings aggregate into summary statistics.

Architecture position:
    Engines -- pure calculation, zero I/O, zero DB access.  The
    reconciliation service projects balances and fetches history samples,
    then hands them here.

Invariants enforced:
    - A key is a discrepancy iff its projected carton balance is negative.
      With no authoritative stored balance, a negative balance is the one
      state a correct ledger can never reach.
    - Severity depends only on the magnitude of the negative balance:
      > critical -> CRITICAL, > high -> HIGH, > medium -> MEDIUM, else LOW.
    - Determinism: the same balances produce the same findings and the same
      findings_hash, whatever order the keys were scanned in.

Failure modes:
    - ValueError from SeverityThresholds when the thresholds are not
      strictly decreasing.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

from inventory_kernel.domain.balance import InventoryBalance
from inventory_kernel.models.reconciliation import DiscrepancySeverity
from inventory_kernel.utils.hashing import hash_findings
from inventory_engines.tracer import traced_engine


@dataclass(frozen=True)
class SeverityThresholds:
    """Magnitudes (in cartons) a negative balance must exceed per severity."""

    critical: int = 100
    high: int = 50
    medium: int = 10

    def __post_init__(self) -> None:
        if not (self.critical > self.high > self.medium >= 0):
            raise ValueError(
                "Severity thresholds must satisfy critical > high > medium >= 0, "
                f"got {self.critical}/{self.high}/{self.medium}"
            )


DEFAULT_THRESHOLDS = SeverityThresholds()


def classify_severity(
    cartons: int, thresholds: SeverityThresholds = DEFAULT_THRESHOLDS
) -> DiscrepancySeverity:
    magnitude = abs(cartons)
    if magnitude > thresholds.critical:
        return DiscrepancySeverity.CRITICAL
    if magnitude > thresholds.high:
        return DiscrepancySeverity.HIGH
    if magnitude > thresholds.medium:
        return DiscrepancySeverity.MEDIUM
    return DiscrepancySeverity.LOW


@dataclass(frozen=True)
class HistorySample:
    """One contributing transaction, as shown to the operator."""

    transaction_id: str
    transaction_type: str
    net_cartons: int
    transaction_date: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "type": self.transaction_type,
            "cartons": self.net_cartons,
            "date": self.transaction_date.isoformat(),
        }


@dataclass(frozen=True)
class DiscrepancyFinding:
    """A key flagged by a run."""

    warehouse_id: UUID
    sku_id: UUID
    batch_lot: str
    computed_cartons: int
    computed_units: int
    severity: DiscrepancySeverity
    last_transaction_date: date | None
    warehouse_code: str | None = None
    warehouse_name: str | None = None
    sku_code: str | None = None
    history: tuple[HistorySample, ...] = field(default_factory=tuple)

    def details(self) -> dict[str, Any]:
        """The discrepancy row's details blob."""
        return {
            "warehouse_code": self.warehouse_code,
            "warehouse_name": self.warehouse_name,
            "sku_code": self.sku_code,
            "last_transaction_date": (
                self.last_transaction_date.isoformat() if self.last_transaction_date else None
            ),
            "transaction_history": [sample.to_dict() for sample in self.history],
        }

    def fingerprint(self) -> dict[str, Any]:
        """Fields that identify the finding across runs."""
        return {
            "warehouse_id": str(self.warehouse_id),
            "sku_id": str(self.sku_id),
            "batch_lot": self.batch_lot,
            "computed_cartons": self.computed_cartons,
            "severity": self.severity.value,
        }


def evaluate_key(
    balance: InventoryBalance,
    history: Sequence[HistorySample] = (),
    thresholds: SeverityThresholds = DEFAULT_THRESHOLDS,
    history_sample_size: int = 10,
) -> DiscrepancyFinding | None:
    """
    A finding for a negative balance, None otherwise.

    history is the key's transactions in replay order; only the trailing
    history_sample_size entries are kept.
    """
    if balance.current_cartons >= 0:
        return None
    sample = tuple(history[-history_sample_size:]) if history_sample_size > 0 else ()
    return DiscrepancyFinding(
        warehouse_id=balance.warehouse_id,
        sku_id=balance.sku_id,
        batch_lot=balance.batch_lot,
        computed_cartons=balance.current_cartons,
        computed_units=balance.current_units,
        severity=classify_severity(balance.current_cartons, thresholds),
        last_transaction_date=balance.last_transaction_date,
        warehouse_code=balance.warehouse_code,
        warehouse_name=balance.warehouse_name,
        sku_code=balance.sku_code,
        history=sample,
    )


@dataclass(frozen=True)
class ReconciliationSummary:
    total_keys: int
    total_warehouses: int
    total_skus: int
    total_discrepancies: int
    critical_discrepancies: int
    discrepancies_by_severity: dict[str, int]
    discrepancies_by_warehouse: dict[str, int]
    absolute_negative_cartons: int
    findings_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_keys": self.total_keys,
            "total_warehouses": self.total_warehouses,
            "total_skus": self.total_skus,
            "total_discrepancies": self.total_discrepancies,
            "critical_discrepancies": self.critical_discrepancies,
            "discrepancies_by_severity": dict(self.discrepancies_by_severity),
            "discrepancies_by_warehouse": dict(self.discrepancies_by_warehouse),
            "absolute_negative_cartons": self.absolute_negative_cartons,
            "findings_hash": self.findings_hash,
        }


@traced_engine(
    "inventory_reconciliation",
    "1.0",
    fingerprint_fields=("total_keys",),
)
def summarize(
    *,
    findings: Iterable[DiscrepancyFinding],
    total_keys: int,
    warehouse_ids: Iterable[UUID],
    sku_ids: Iterable[UUID],
) -> ReconciliationSummary:
    """
    Aggregate a run.  warehouse_ids / sku_ids are everything the run
    scanned, not only the flagged keys.
    """
    findings = list(findings)
    by_severity = Counter(f.severity.value for f in findings)
    by_warehouse = Counter(f.warehouse_code or str(f.warehouse_id) for f in findings)
    return ReconciliationSummary(
        total_keys=total_keys,
        total_warehouses=len(set(warehouse_ids)),
        total_skus=len(set(sku_ids)),
        total_discrepancies=len(findings),
        critical_discrepancies=by_severity.get(DiscrepancySeverity.CRITICAL.value, 0),
        discrepancies_by_severity={
            severity.value: by_severity.get(severity.value, 0)
            for severity in DiscrepancySeverity
        },
        discrepancies_by_warehouse=dict(sorted(by_warehouse.items())),
        absolute_negative_cartons=sum(abs(f.computed_cartons) for f in findings),
        findings_hash=hash_findings([f.fingerprint() for f in findings]),
    )
