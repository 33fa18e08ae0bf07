"""
inventory_services.reconciliation_service -- inventory reconciliation runs.

Responsibility:
    Runs the INVENTORY reconciliation: opens a report, projects every
    (warehouse, SKU, batch) key seen in the ledger, persists a discrepancy
    for each negative balance, closes the report with summary statistics
    and notifies admins when something critical was found.  Also exposes
    the read side used by operators (reports, discrepancies, job history)
    and the scheduler-facing ``run_reconciliation_job`` boundary.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes TransactionSelector, BalanceSelector, ReconciliationSelector,
    AuditorService and LedgerLockService; delegates severity and summary
    rules to ``inventory_engines.reconciliation``.

Invariants enforced:
    - Soft exclusion: at most one IN_PROGRESS INVENTORY report.  The
      check-then-insert in ``start_run`` holds the reconciliation lock, so
      two starters cannot both pass the check.
    - State machine: IN_PROGRESS -> COMPLETED or IN_PROGRESS -> FAILED.
      Terminal reports are immutable (ORM listener).
    - Read-only over the ledger: a run never writes inventory transactions.
    - Determinism: the same ledger yields the same findings and the same
      ``findings_hash`` in summary_stats.

Failure modes:
    - ReconciliationInProgressError when another run is IN_PROGRESS.
    - LockTimeoutError (retryable) when the reconciliation lock is busy.
    - ReconciliationFailedError wrapping any error raised during the scan;
      the report is marked FAILED before it is raised.  Discrepancy rows
      committed by earlier progress batches are kept.
    - ``run_reconciliation_job`` never raises; it reports failure through
      ``ReconciliationJobResult``.

Audit relevance:
    Start, completion and failure each append an audit event to the hash
    chain.  The completion event carries the findings hash.  Notification
    is best-effort and is not part of the audit record.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from inventory_config import get_active_settings
from inventory_config.bridges import build_severity_thresholds
from inventory_config.schema import LedgerSettings
from inventory_engines.reconciliation import (
    DEFAULT_THRESHOLDS,
    DiscrepancyFinding,
    HistorySample,
    ReconciliationSummary,
    SeverityThresholds,
    evaluate_key,
    summarize,
)
from inventory_kernel.db.engine import get_session_factory
from inventory_kernel.domain.balance import LedgerKey
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import TransactionFilter
from inventory_kernel.exceptions import (
    ReconciliationFailedError,
    ReconciliationInProgressError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.reconciliation import (
    DiscrepancySeverity,
    ReconciliationDiscrepancy,
    ReconciliationReport,
    ReconciliationReportType,
    ReconciliationStatus,
)
from inventory_kernel.selectors.balance_selector import BalanceSelector
from inventory_kernel.selectors.reconciliation_selector import ReconciliationSelector
from inventory_kernel.selectors.transaction_selector import TransactionSelector
from inventory_kernel.services.auditor_service import AuditorService
from inventory_kernel.services.lock_service import (
    RECONCILIATION_LOCK_PARTS,
    LedgerLockService,
)
from inventory_services.notifications import AdminNotifier, LoggingAdminNotifier

logger = get_logger("services.reconciliation")

# Actor recorded on runs started by the scheduler rather than a person.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

MAX_ERROR_MESSAGE_LENGTH = 4000


@dataclass(frozen=True)
class JobHistoryEntry:
    """One past run as shown in the job history."""

    report_id: UUID
    status: ReconciliationStatus
    started_at: datetime
    completed_at: datetime | None
    duration_seconds: float | None
    total_discrepancies: int
    critical_discrepancies: int
    created_by_id: UUID
    is_automated: bool


@dataclass(frozen=True)
class ReconciliationJobResult:
    """Outcome of ``run_reconciliation_job``.  success is False on any failure."""

    success: bool
    report_id: UUID | None = None
    status: ReconciliationStatus | None = None
    duration_seconds: float | None = None
    total_discrepancies: int = 0
    critical_discrepancies: int = 0
    message: str | None = None
    error: str | None = None


class InventoryReconciliationService:
    """
    Orchestrates INVENTORY reconciliation runs over one Session.

    Contract:
        Owns commit / rollback for the runs it starts.  Read operations
        never commit.
    Guarantees:
        - Every run that got past ``start_run`` ends COMPLETED or FAILED,
          unless the FAILED update itself cannot be written.
        - Discrepancies are committed in batches of ``progress_interval``
          keys so a long scan keeps its findings if it fails late.
    Non-goals:
        - No resume or retry of a FAILED run; start a fresh one.
        - No correction of the ledger; adjustments are an operator action.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        thresholds: SeverityThresholds = DEFAULT_THRESHOLDS,
        history_sample_size: int = 10,
        progress_interval: int = 100,
        notifier: AdminNotifier | None = None,
        lock_timeout_seconds: float = 5.0,
        lock_poll_interval_seconds: float = 0.05,
        lock_backend: str = "auto",
    ):
        if progress_interval <= 0:
            raise ValueError("progress_interval must be positive")
        self.session = session
        self._clock = clock or SystemClock()
        self._thresholds = thresholds
        self._history_sample_size = history_sample_size
        self._progress_interval = progress_interval
        self._notifier: AdminNotifier = notifier or LoggingAdminNotifier()

        self._transactions = TransactionSelector(session)
        self._balances = BalanceSelector(session, self._clock)
        self._reports = ReconciliationSelector(session)
        self._auditor = AuditorService(session, self._clock)
        self._locks = LedgerLockService(
            session,
            timeout_seconds=lock_timeout_seconds,
            poll_interval_seconds=lock_poll_interval_seconds,
            backend=lock_backend,
        )

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: LedgerSettings,
        clock: Clock | None = None,
        notifier: AdminNotifier | None = None,
    ) -> InventoryReconciliationService:
        return cls(
            session,
            clock=clock,
            thresholds=build_severity_thresholds(settings),
            history_sample_size=settings.reconciliation.history_sample_size,
            progress_interval=settings.reconciliation.progress_interval,
            notifier=notifier,
            lock_timeout_seconds=settings.lock.timeout_seconds,
            lock_poll_interval_seconds=settings.lock.poll_interval_seconds,
            lock_backend=settings.lock.backend,
        )

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def start_run(self, actor_id: UUID) -> ReconciliationReport:
        """
        Open an IN_PROGRESS report and commit it.

        Raises:
            ReconciliationInProgressError: if a run is already IN_PROGRESS.
            LockTimeoutError: if the reconciliation lock is busy.
        """
        self._locks.acquire(*RECONCILIATION_LOCK_PARTS)

        running = self._reports.running_report()
        if running is not None:
            running_id = str(running.id)
            self.session.rollback()
            logger.warning(
                "reconciliation_already_running",
                extra={"running_report_id": running_id},
            )
            raise ReconciliationInProgressError(
                ReconciliationReportType.INVENTORY.value, running_id
            )

        report = ReconciliationReport(
            id=uuid4(),
            report_type=ReconciliationReportType.INVENTORY.value,
            status=ReconciliationStatus.IN_PROGRESS.value,
            started_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(report)
        self.session.flush()
        self._auditor.record_reconciliation_started(report)
        self.session.commit()

        logger.info("reconciliation_started", extra={"report_id": str(report.id)})
        return report

    def run_inventory_reconciliation(self, actor_id: UUID) -> UUID:
        """
        Run a full INVENTORY reconciliation and return the report id.

        Raises:
            ReconciliationInProgressError: if a run is already IN_PROGRESS.
            ReconciliationFailedError: if the scan fails; the report is FAILED.
        """
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=str(actor_id)):
            report_id = self.start_run(actor_id).id

            with LogContext.bind(report_id=str(report_id)):
                t0 = time.monotonic()
                try:
                    summary = self._scan(report_id)
                    self._complete(report_id, summary)
                    self.session.commit()
                except Exception as exc:
                    self.session.rollback()
                    self._fail(report_id, exc, t0)

                logger.info(
                    "reconciliation_completed",
                    extra={
                        "total_keys": summary.total_keys,
                        "total_discrepancies": summary.total_discrepancies,
                        "critical_discrepancies": summary.critical_discrepancies,
                        "findings_hash": summary.findings_hash,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                if summary.critical_discrepancies > 0:
                    self._notify(
                        "critical_discrepancies",
                        self._notifier.notify_critical_discrepancies,
                        report_id,
                        summary.to_dict(),
                    )
                return report_id

    def notify_completion(self, report_id: UUID) -> None:
        """Best-effort completion notice for a finished run."""
        report = self._reports.get_report(report_id)
        self._notify(
            "run_completed",
            self._notifier.notify_run_completed,
            report_id,
            dict(report.summary_stats or {}),
        )

    def _scan(self, report_id: UUID) -> ReconciliationSummary:
        # One folding pass over the ledger; history is fetched for negative keys only.
        balances = self._balances.project_all(include_zero=True)
        findings: list[DiscrepancyFinding] = []

        for index, balance in enumerate(balances, start=1):
            history = self._history_sample(balance.key) if balance.is_negative else ()
            finding = evaluate_key(
                balance, history, self._thresholds, self._history_sample_size
            )
            if finding is not None:
                self._persist_finding(report_id, finding)
                findings.append(finding)

            if index % self._progress_interval == 0:
                self.session.commit()
                logger.info(
                    "reconciliation_progress",
                    extra={
                        "processed_keys": index,
                        "total_keys": len(balances),
                        "discrepancies": len(findings),
                    },
                )

        return summarize(
            findings=findings,
            total_keys=len(balances),
            warehouse_ids=[balance.warehouse_id for balance in balances],
            sku_ids=[balance.sku_id for balance in balances],
        )

    def _history_sample(self, key: LedgerKey) -> list[HistorySample]:
        if self._history_sample_size <= 0:
            return []
        latest_first = self._transactions.query(
            TransactionFilter(
                warehouse_id=key.warehouse_id,
                sku_id=key.sku_id,
                batch_lot=key.batch_lot,
                limit=self._history_sample_size,
            ),
            descending=True,
        )
        return [
            HistorySample(
                transaction_id=txn.transaction_id,
                transaction_type=txn.movement_type.value,
                net_cartons=txn.cartons_in - txn.cartons_out,
                transaction_date=txn.transaction_date,
            )
            for txn in reversed(latest_first)
        ]

    def _persist_finding(self, report_id: UUID, finding: DiscrepancyFinding) -> None:
        self.session.add(
            ReconciliationDiscrepancy(
                report_id=report_id,
                warehouse_id=finding.warehouse_id,
                sku_id=finding.sku_id,
                batch_lot=finding.batch_lot,
                computed_cartons=finding.computed_cartons,
                computed_units=finding.computed_units,
                severity=finding.severity.value,
                details=finding.details(),
                created_at=self._clock.now(),
            )
        )
        self.session.flush()
        logger.info(
            "discrepancy_found",
            extra={
                "warehouse_id": str(finding.warehouse_id),
                "sku_id": str(finding.sku_id),
                "batch_lot": finding.batch_lot,
                "computed_cartons": finding.computed_cartons,
                "severity": finding.severity.value,
            },
        )

    def _complete(self, report_id: UUID, summary: ReconciliationSummary) -> None:
        report = self._reports.get_report(report_id)
        report.status = ReconciliationStatus.COMPLETED.value
        report.completed_at = self._clock.now()
        report.total_keys = summary.total_keys
        report.total_warehouses = summary.total_warehouses
        report.total_skus = summary.total_skus
        report.total_discrepancies = summary.total_discrepancies
        report.critical_discrepancies = summary.critical_discrepancies
        report.summary_stats = summary.to_dict()
        self.session.flush()
        self._auditor.record_reconciliation_completed(report)

    def _fail(self, report_id: UUID, exc: Exception, t0: float) -> None:
        error_message = f"{type(exc).__name__}: {exc}"[:MAX_ERROR_MESSAGE_LENGTH]
        try:
            report = self._reports.get_report(report_id)
            report.status = ReconciliationStatus.FAILED.value
            report.completed_at = self._clock.now()
            report.error_message = error_message
            self.session.flush()
            self._auditor.record_reconciliation_failed(report)
            self.session.commit()
        except Exception:
            # The report stays IN_PROGRESS and blocks new runs until resolved.
            self.session.rollback()
            logger.critical(
                "reconciliation_failure_not_recorded",
                extra={"report_id": str(report_id)},
                exc_info=True,
            )

        logger.error(
            "reconciliation_failed",
            extra={
                "error_message": error_message,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
            exc_info=exc,
        )
        raise ReconciliationFailedError(str(report_id), error_message) from exc

    def _notify(
        self,
        kind: str,
        send: Callable[[UUID, dict[str, Any]], None],
        report_id: UUID,
        summary: dict[str, Any],
    ) -> None:
        try:
            send(report_id, summary)
        except Exception:
            logger.warning(
                "admin_notification_failed",
                extra={"report_id": str(report_id), "notification": kind},
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_report(self, report_id: UUID) -> ReconciliationReport:
        return self._reports.get_report(report_id)

    def get_recent_reports(self, limit: int = 10) -> list[ReconciliationReport]:
        return self._reports.recent_reports(limit=limit)

    def get_discrepancies(
        self,
        report_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        severity: DiscrepancySeverity | None = None,
        limit: int | None = None,
    ) -> list[ReconciliationDiscrepancy]:
        """Most severe first, then largest shortfall."""
        return self._reports.discrepancies(
            report_id=report_id,
            warehouse_id=warehouse_id,
            severity=severity,
            limit=limit,
        )

    def get_job_history(self, limit: int = 10) -> list[JobHistoryEntry]:
        entries = []
        for report in self._reports.recent_reports(limit=limit):
            duration = None
            if report.completed_at is not None:
                duration = (report.completed_at - report.started_at).total_seconds()
            entries.append(
                JobHistoryEntry(
                    report_id=report.id,
                    status=report.current_status,
                    started_at=report.started_at,
                    completed_at=report.completed_at,
                    duration_seconds=duration,
                    total_discrepancies=report.total_discrepancies,
                    critical_discrepancies=report.critical_discrepancies,
                    created_by_id=report.created_by_id,
                    is_automated=report.created_by_id == SYSTEM_ACTOR_ID,
                )
            )
        return entries


# ---------------------------------------------------------------------------
# Job boundary
# ---------------------------------------------------------------------------


def run_reconciliation_job(
    session_factory: Callable[[], Session] | None = None,
    *,
    actor_id: UUID | None = None,
    settings: LedgerSettings | None = None,
    clock: Clock | None = None,
    notifier: AdminNotifier | None = None,
    notify_on_completion: bool = False,
) -> ReconciliationJobResult:
    """
    Scheduler entry point.  Never raises.

    A run already in progress is reported as an unsuccessful skip, not an
    error.  Scheduled runs default to SYSTEM_ACTOR_ID.
    """
    actor = actor_id or SYSTEM_ACTOR_ID
    t0 = time.monotonic()

    def elapsed() -> float:
        return round(time.monotonic() - t0, 3)

    session: Session | None = None
    try:
        if session_factory is None:
            session_factory = get_session_factory()
        settings = settings or get_active_settings()
        session = session_factory()

        service = InventoryReconciliationService.from_settings(
            session, settings, clock=clock, notifier=notifier
        )
        report_id = service.run_inventory_reconciliation(actor)
        report = service.get_report(report_id)
        if notify_on_completion:
            service.notify_completion(report_id)

        result = ReconciliationJobResult(
            success=True,
            report_id=report_id,
            status=report.current_status,
            duration_seconds=elapsed(),
            total_discrepancies=report.total_discrepancies,
            critical_discrepancies=report.critical_discrepancies,
        )
        logger.info(
            "reconciliation_job_completed",
            extra={
                "report_id": str(report_id),
                "duration_seconds": result.duration_seconds,
                "total_discrepancies": result.total_discrepancies,
                "critical_discrepancies": result.critical_discrepancies,
            },
        )
        return result

    except ReconciliationInProgressError as exc:
        logger.info(
            "reconciliation_job_skipped",
            extra={"running_report_id": exc.running_report_id},
        )
        return ReconciliationJobResult(
            success=False,
            duration_seconds=elapsed(),
            message="Another reconciliation is already in progress",
            error=exc.code,
        )
    except ReconciliationFailedError as exc:
        report_id = UUID(exc.report_id)
        return ReconciliationJobResult(
            success=False,
            report_id=report_id,
            status=ReconciliationStatus.FAILED,
            duration_seconds=elapsed(),
            message=exc.error_message,
            error=exc.code,
        )
    except Exception as exc:
        logger.error(
            "reconciliation_job_error",
            extra={"duration_seconds": elapsed()},
            exc_info=True,
        )
        return ReconciliationJobResult(
            success=False,
            duration_seconds=elapsed(),
            message=str(exc) or type(exc).__name__,
            error=getattr(exc, "code", type(exc).__name__),
        )
    finally:
        if session is not None:
            session.close()
