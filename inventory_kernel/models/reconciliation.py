"""
Module: inventory_kernel.models.reconciliation
Responsibility: ORM persistence for reconciliation runs and the per-key
    discrepancies they find.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/warehouse.py only.

Invariants enforced:
    - Report status moves IN_PROGRESS -> COMPLETED or IN_PROGRESS -> FAILED
      and nowhere else.  Once terminal, the row is immutable (ORM listener).
    - Reports are never deleted by the kernel.
    - Discrepancy rows are immutable once written (ORM listener + DB trigger)
      and unique per (report, warehouse, sku, batch_lot).

Failure modes:
    - ImmutabilityViolationError on UPDATE of a terminal report, on any
      report DELETE, or on any discrepancy UPDATE/DELETE.
    - IntegrityError if the same key is flagged twice within one report.

Audit relevance:
    The report status is the authoritative signal of run validity.  A FAILED
    report may have discrepancy rows that were durably written before the
    failure; they remain and are still meaningful findings.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UTCDateTime
from inventory_kernel.models.warehouse import Sku, Warehouse


class ReconciliationReportType(str, Enum):
    INVENTORY = "INVENTORY"


class ReconciliationStatus(str, Enum):
    """Run lifecycle.  No resume or retry: a fresh run must be started."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not ReconciliationStatus.IN_PROGRESS


class DiscrepancySeverity(str, Enum):
    """Severity by magnitude of the negative balance."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    DiscrepancySeverity.CRITICAL: 0,
    DiscrepancySeverity.HIGH: 1,
    DiscrepancySeverity.MEDIUM: 2,
    DiscrepancySeverity.LOW: 3,
}


class ReconciliationReport(TrackedBase):
    """
    One row per reconciliation run.

    created_by_id is the initiating user.
    """

    __tablename__ = "reconciliation_reports"

    __table_args__ = (
        Index("idx_recon_report_type_status", "report_type", "status"),
        Index("idx_recon_report_started", "started_at"),
    )

    report_type: Mapped[ReconciliationReportType] = mapped_column(String(30), nullable=False)
    status: Mapped[ReconciliationStatus] = mapped_column(String(20), nullable=False)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    total_keys: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_warehouses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_skus: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_discrepancies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    critical_discrepancies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    summary_stats: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return f"<ReconciliationReport {self.id} {self.status}>"

    @property
    def current_status(self) -> ReconciliationStatus:
        return ReconciliationStatus(self.status)


class ReconciliationDiscrepancy(Base):
    """
    A (warehouse, SKU, batch) key whose projected balance is negative.

    details carries the last transaction date and a trailing sample of the
    transactions that produced the balance, for operator triage.
    """

    __tablename__ = "reconciliation_discrepancies"

    __table_args__ = (
        UniqueConstraint(
            "report_id",
            "warehouse_id",
            "sku_id",
            "batch_lot",
            name="uq_recon_discrepancy_key",
        ),
        Index("idx_recon_discrepancy_warehouse", "warehouse_id", "severity"),
    )

    report_id: Mapped[UUID] = mapped_column(
        ForeignKey("reconciliation_reports.id"), nullable=False
    )
    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    sku_id: Mapped[UUID] = mapped_column(ForeignKey("skus.id"), nullable=False)
    batch_lot: Mapped[str] = mapped_column(String(100), nullable=False)

    computed_cartons: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_units: Mapped[int] = mapped_column(Integer, nullable=False)
    severity: Mapped[DiscrepancySeverity] = mapped_column(String(20), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    warehouse: Mapped[Warehouse] = relationship(lazy="joined")
    sku: Mapped[Sku] = relationship(lazy="joined")

    @property
    def absolute_difference(self) -> int:
        return abs(self.computed_cartons)
