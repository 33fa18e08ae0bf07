"""
Module: inventory_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM + DB trigger).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    Every ledger write records the balance before and after the movement;
    reconciliation runs record their start and outcome.  The hash chain
    makes retroactive tampering detectable.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import UUID, Base, UTCDateTime, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Ledger
    TRANSACTION_CREATED = "transaction_created"

    # Reconciliation lifecycle
    RECONCILIATION_STARTED = "reconciliation_started"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECONCILIATION_FAILED = "reconciliation_failed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "InventoryTransaction", "ReconciliationReport"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # null for the first event
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
