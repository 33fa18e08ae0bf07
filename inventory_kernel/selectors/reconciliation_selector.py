"""
Module: inventory_kernel.selectors.reconciliation_selector
Responsibility: Read-only queries over reconciliation reports and their
    discrepancies: single report lookup, recent runs, the currently running
    run, and discrepancy listings by report or warehouse.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Discrepancies are listed most severe first, then by magnitude of the
      negative balance, then by key, so listings are stable across calls.
"""

from uuid import UUID

from sqlalchemy import case, select

from inventory_kernel.exceptions import ReconciliationReportNotFoundError
from inventory_kernel.models.reconciliation import (
    DiscrepancySeverity,
    ReconciliationDiscrepancy,
    ReconciliationReport,
    ReconciliationReportType,
    ReconciliationStatus,
)
from inventory_kernel.selectors.base import BaseSelector

_SEVERITY_ORDER = case(
    {severity.value: severity.rank for severity in DiscrepancySeverity},
    value=ReconciliationDiscrepancy.severity,
    else_=len(DiscrepancySeverity),
)


class ReconciliationSelector(BaseSelector[ReconciliationReport]):
    """Selector for reconciliation output."""

    def get_report(self, report_id: UUID) -> ReconciliationReport:
        """
        Raises:
            ReconciliationReportNotFoundError: if no report has this id.
        """
        report = self.session.get(ReconciliationReport, report_id)
        if report is None:
            raise ReconciliationReportNotFoundError(str(report_id))
        return report

    def recent_reports(
        self,
        limit: int = 10,
        report_type: ReconciliationReportType = ReconciliationReportType.INVENTORY,
    ) -> list[ReconciliationReport]:
        stmt = (
            select(ReconciliationReport)
            .where(ReconciliationReport.report_type == ReconciliationReportType(report_type).value)
            .order_by(ReconciliationReport.started_at.desc(), ReconciliationReport.id.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def running_report(
        self,
        report_type: ReconciliationReportType = ReconciliationReportType.INVENTORY,
    ) -> ReconciliationReport | None:
        """The IN_PROGRESS report of this type, if one exists."""
        stmt = (
            select(ReconciliationReport)
            .where(
                ReconciliationReport.report_type == ReconciliationReportType(report_type).value,
                ReconciliationReport.status == ReconciliationStatus.IN_PROGRESS.value,
            )
            .order_by(ReconciliationReport.started_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def discrepancies(
        self,
        report_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        severity: DiscrepancySeverity | None = None,
        limit: int | None = None,
    ) -> list[ReconciliationDiscrepancy]:
        stmt = select(ReconciliationDiscrepancy)
        if report_id is not None:
            stmt = stmt.where(ReconciliationDiscrepancy.report_id == report_id)
        if warehouse_id is not None:
            stmt = stmt.where(ReconciliationDiscrepancy.warehouse_id == warehouse_id)
        if severity is not None:
            stmt = stmt.where(
                ReconciliationDiscrepancy.severity == DiscrepancySeverity(severity).value
            )
        stmt = stmt.order_by(
            _SEVERITY_ORDER,
            ReconciliationDiscrepancy.computed_cartons.asc(),
            ReconciliationDiscrepancy.warehouse_id,
            ReconciliationDiscrepancy.sku_id,
            ReconciliationDiscrepancy.batch_lot,
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())
