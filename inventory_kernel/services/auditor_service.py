"""
AuditorService -- hash-chained, append-only audit trail.

Responsibility:
    Records one AuditEvent per ledger write (with the key's balance before
    and after) and per reconciliation lifecycle step, each linked to its
    predecessor by hash.  Validates the chain on demand.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by InventoryTransactionWriter and InventoryReconciliationService.

Invariants enforced:
    - Append-only: audit events are never updated or deleted (ORM listener
      + DB trigger).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - seq comes from SequenceService; prev_hash is read after the sequence
      row is locked, so the chain has no forks under concurrency.

Failure modes:
    - AuditChainBrokenError from validate_chain() when a stored hash does not
      match its recomputation or a prev_hash does not match its predecessor.

Audit relevance:
    Audit entries are written in the same unit of work as the ledger row
    they describe.  A rolled-back write leaves no audit entry behind, and a
    committed write always has one.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.balance import InventoryBalance
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.exceptions import AuditChainBrokenError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.audit_event import AuditAction, AuditEvent
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.models.reconciliation import ReconciliationReport
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


def _balance_snapshot(balance: InventoryBalance) -> dict[str, Any]:
    return {
        "cartons": balance.current_cartons,
        "pallets": balance.current_pallets,
        "units": balance.current_units,
    }


class AuditorService:
    """
    Service for the audit hash chain.

    Non-goals:
        - Does NOT commit.  Audit rows share the caller's transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.debug(
            "audit_event_recorded",
            extra={
                "seq": seq,
                "action": action.value,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            },
        )
        return audit_event

    # -----------------------------------------------------------------
    # Ledger
    # -----------------------------------------------------------------

    def record_transaction_created(
        self,
        transaction: InventoryTransaction,
        before: InventoryBalance,
        after: InventoryBalance,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="InventoryTransaction",
            entity_id=transaction.id,
            action=AuditAction.TRANSACTION_CREATED,
            actor_id=transaction.created_by_id,
            payload={
                "transaction_id": transaction.transaction_id,
                "transaction_type": transaction.movement_type.value,
                "warehouse_id": transaction.warehouse_id,
                "sku_id": transaction.sku_id,
                "batch_lot": transaction.batch_lot,
                "transaction_date": transaction.transaction_date,
                "cartons_in": transaction.cartons_in,
                "cartons_out": transaction.cartons_out,
                "before": _balance_snapshot(before),
                "after": _balance_snapshot(after),
            },
        )

    # -----------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------

    def record_reconciliation_started(self, report: ReconciliationReport) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ReconciliationReport",
            entity_id=report.id,
            action=AuditAction.RECONCILIATION_STARTED,
            actor_id=report.created_by_id,
            payload={"report_type": report.report_type, "started_at": report.started_at},
        )

    def record_reconciliation_completed(self, report: ReconciliationReport) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ReconciliationReport",
            entity_id=report.id,
            action=AuditAction.RECONCILIATION_COMPLETED,
            actor_id=report.created_by_id,
            payload={
                "total_keys": report.total_keys,
                "total_discrepancies": report.total_discrepancies,
                "critical_discrepancies": report.critical_discrepancies,
                "findings_hash": (report.summary_stats or {}).get("findings_hash"),
            },
        )

    def record_reconciliation_failed(self, report: ReconciliationReport) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ReconciliationReport",
            entity_id=report.id,
            action=AuditAction.RECONCILIATION_FAILED,
            actor_id=report.created_by_id,
            payload={"error_message": report.error_message},
        )

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def get_trail(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        return list(
            self._session.execute(
                select(AuditEvent)
                .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
                .order_by(AuditEvent.seq)
            ).scalars().all()
        )

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for audit_event in events:
            if audit_event.prev_hash != prev_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(audit_event.id), "seq": audit_event.seq},
                )
                raise AuditChainBrokenError(
                    str(audit_event.id), str(prev_hash), str(audit_event.prev_hash)
                )

            expected_hash = hash_audit_event(
                entity_type=audit_event.entity_type,
                entity_id=str(audit_event.entity_id),
                action=AuditAction(audit_event.action).value,
                payload_hash=hash_payload(audit_event.payload or {}),
                prev_hash=audit_event.prev_hash,
            )
            if audit_event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(audit_event.id), "seq": audit_event.seq},
                )
                raise AuditChainBrokenError(str(audit_event.id), expected_hash, audit_event.hash)
            prev_hash = audit_event.hash

        return True
