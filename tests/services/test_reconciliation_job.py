"""
Scheduler boundary: run_reconciliation_job never raises and reports every
outcome through ReconciliationJobResult.
"""

from datetime import timedelta

import pytest

from inventory_config.schema import LedgerSettings, ReconciliationSettings
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.models.reconciliation import ReconciliationStatus
from inventory_kernel.services.transaction_store import TransactionStore
from inventory_services import (
    SYSTEM_ACTOR_ID,
    InventoryReconciliationService,
    run_reconciliation_job,
)
from inventory_services.reconciliation_service import ReconciliationJobResult
from tests.conftest import TODAY


class RecordingNotifier:
    def __init__(self):
        self.critical = []
        self.completed = []

    def notify_critical_discrepancies(self, report_id, summary):
        self.critical.append(report_id)

    def notify_run_completed(self, report_id, summary):
        self.completed.append((report_id, summary))


@pytest.fixture
def settings():
    return LedgerSettings(
        reconciliation=ReconciliationSettings(history_sample_size=5, progress_interval=10)
    )


@pytest.fixture
def short_ledger(session, clock, configured, test_actor_id):
    """A key 120 cartons short, written straight into the ledger."""
    warehouse, sku = configured
    row = InventoryTransaction(
        transaction_id="IMPORT-0001",
        warehouse_id=warehouse.id,
        sku_id=sku.id,
        batch_lot="LOT-A",
        transaction_type="SHIP",
        cartons_out=120,
        transaction_date=TODAY - timedelta(days=1),
        created_at=clock.now(),
        created_by_id=test_actor_id,
    )
    TransactionStore(session).append(row)
    session.commit()
    # Leave the fixture session idle so the job's own session can write.
    session.close()
    return warehouse, sku


class TestJobOutcomes:
    def test_successful_run(self, session_factory, clock, settings, short_ledger):
        notifier = RecordingNotifier()
        result = run_reconciliation_job(
            session_factory, settings=settings, clock=clock, notifier=notifier
        )

        assert isinstance(result, ReconciliationJobResult)
        assert result.success
        assert result.status is ReconciliationStatus.COMPLETED
        assert result.total_discrepancies == 1
        assert result.critical_discrepancies == 1
        assert result.duration_seconds is not None
        assert notifier.critical == [result.report_id]
        assert notifier.completed == []

    def test_scheduled_runs_use_the_system_actor(
        self, session_factory, clock, settings, short_ledger
    ):
        result = run_reconciliation_job(session_factory, settings=settings, clock=clock)
        session = session_factory()
        try:
            report = InventoryReconciliationService(session).get_report(result.report_id)
            assert report.created_by_id == SYSTEM_ACTOR_ID
        finally:
            session.close()

    def test_completion_notice_on_request(self, session_factory, clock, settings, short_ledger):
        notifier = RecordingNotifier()
        result = run_reconciliation_job(
            session_factory,
            settings=settings,
            clock=clock,
            notifier=notifier,
            notify_on_completion=True,
        )
        assert notifier.completed[0][0] == result.report_id
        assert notifier.completed[0][1]["total_discrepancies"] == 1

    def test_run_in_progress_is_a_skip(
        self, session_factory, clock, settings, short_ledger, test_actor_id, captured_logs
    ):
        holder = session_factory()
        try:
            running = InventoryReconciliationService(holder, clock=clock).start_run(test_actor_id)
        finally:
            holder.close()

        result = run_reconciliation_job(session_factory, settings=settings, clock=clock)

        assert not result.success
        assert result.report_id is None
        assert result.message == "Another reconciliation is already in progress"
        assert result.error == "RECONCILIATION_IN_PROGRESS"
        skipped = [r for r in captured_logs() if r["message"] == "reconciliation_job_skipped"]
        assert skipped[0]["running_report_id"] == str(running.id)

    def test_scan_failure_is_reported(
        self, session_factory, clock, settings, short_ledger, monkeypatch
    ):
        def explode(self, report_id):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(InventoryReconciliationService, "_scan", explode)
        result = run_reconciliation_job(session_factory, settings=settings, clock=clock)

        assert not result.success
        assert result.status is ReconciliationStatus.FAILED
        assert result.report_id is not None
        assert result.message == "RuntimeError: disk on fire"
        assert result.error == "RECONCILIATION_FAILED"

    def test_unexpected_errors_never_escape(self, clock, settings, captured_logs):
        def broken_factory():
            raise ConnectionError("database unreachable")

        result = run_reconciliation_job(broken_factory, settings=settings, clock=clock)

        assert not result.success
        assert result.error == "ConnectionError"
        assert result.message == "database unreachable"
        errors = [r for r in captured_logs() if r["message"] == "reconciliation_job_error"]
        assert errors and errors[0]["exc_type"] == "ConnectionError"
