"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers for audit events and the
    per-warehouse-per-day suffix of transaction ids.  Uses a dedicated
    counter table; the increment is a single ``UPDATE ... SET current_value
    = current_value + 1`` so the row lock taken by the UPDATE serializes
    concurrent allocations on every backend.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by InventoryTransactionWriter (transaction id suffixes) and
    AuditorService (audit event sequences).

Invariants enforced:
    - Sequence monotonicity: the locked counter row is the sole source of
      truth for the next value.  The aggregate-max-plus-one anti-pattern is
      never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - Counter creation races are absorbed by INSERT ... ON CONFLICT DO
      NOTHING; the following UPDATE always finds the row.

Audit relevance:
    Sequence allocation is logged at DEBUG level with sequence_name and value.
"""

from uuid import uuid4

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Mapped, Session, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # e.g. "audit_event", "txn:WH01:20240101"
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def transaction_sequence_name(warehouse_code: str, day_stamp: str) -> str:
        """Counter name for transaction ids of one warehouse on one day."""
        return f"txn:{warehouse_code}:{day_stamp}"

    def _ensure_counter(self, sequence_name: str) -> None:
        dialect = self._session.get_bind().dialect.name
        values = {"name": sequence_name, "current_value": 0}
        if dialect == "postgresql":
            stmt = postgresql.insert(SequenceCounter).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(SequenceCounter).values(**values)
        else:
            existing = self._session.execute(
                select(SequenceCounter.id).where(SequenceCounter.name == sequence_name)
            ).first()
            if existing is None:
                self._session.add(SequenceCounter(**values))
                self._session.flush()
            return
        # Core inserts do not apply the ORM-side id default.
        stmt = stmt.values(id=uuid4()).on_conflict_do_nothing(index_elements=["name"])
        self._session.execute(stmt)

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0 that is strictly greater than any
              previously committed value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        self._ensure_counter(sequence_name)
        self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        value = self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
