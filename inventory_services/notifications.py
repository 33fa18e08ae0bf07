"""
Admin notification for reconciliation outcomes.

Responsibility:
    Defines the outbound notification contract the reconciliation service
    calls after a run commits, and a default implementation that writes a
    structured log record per notification.

Architecture position:
    Services -- outbound port.  Delivery (email, chat, in-app) is an
    integration concern; anything satisfying ``AdminNotifier`` can be
    injected.

Failure modes:
    Notifiers may raise.  Callers treat notification as best-effort: a
    failure is logged and never changes a run's outcome.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from inventory_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@runtime_checkable
class AdminNotifier(Protocol):
    def notify_critical_discrepancies(self, report_id: UUID, summary: dict[str, Any]) -> None: ...

    def notify_run_completed(self, report_id: UUID, summary: dict[str, Any]) -> None: ...


class LoggingAdminNotifier:
    """Default notifier: one WARNING per critical run, one INFO per completion."""

    def notify_critical_discrepancies(self, report_id: UUID, summary: dict[str, Any]) -> None:
        logger.warning(
            "reconciliation_critical_discrepancies",
            extra={
                "report_id": str(report_id),
                "critical_discrepancies": summary.get("critical_discrepancies", 0),
                "total_discrepancies": summary.get("total_discrepancies", 0),
                "discrepancies_by_warehouse": summary.get("discrepancies_by_warehouse", {}),
            },
        )

    def notify_run_completed(self, report_id: UUID, summary: dict[str, Any]) -> None:
        logger.info(
            "reconciliation_run_notification",
            extra={
                "report_id": str(report_id),
                "total_discrepancies": summary.get("total_discrepancies", 0),
                "critical_discrepancies": summary.get("critical_discrepancies", 0),
            },
        )
