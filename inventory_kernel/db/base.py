"""
Module: inventory_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, timezone-safe timestamp storage, the type
    annotation map for consistent column types, and the TrackedBase mixin for
    audit timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - UTC timestamps: every datetime column round-trips as a timezone-aware
      UTC value on both PostgreSQL and SQLite (SQLite drops tzinfo on
      storage; UTCDateTime restores it on load).
    - Audit timestamps: TrackedBase provides created_at, updated_at,
      created_by_id, and updated_by_id.

Failure modes:
    - IntegrityError if a model attempts to INSERT a duplicate UUID.
    - ValueError from UTCDateTime.process_bind_param if a naive datetime is
      bound; callers obtain timestamps from a Clock, which is always aware.

Audit relevance:
    created_at on ledger rows is the same-day ordering tie-breaker for
    balance replay, so its storage must not lose precision or timezone.
"""

from datetime import UTC, date, datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return value if isinstance(value, PyUUID) else PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalised to UTC.

    Contract:
        Values are converted to UTC on the way in.  On the way out, naive
        values (SQLite, or server_default CURRENT_TIMESTAMP) are interpreted
        as UTC.

    Guarantees:
        - Every loaded datetime has tzinfo == UTC.
        - Naive datetimes are rejected at bind time.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to UTCDateTime -- always timezone-aware.
        - date maps to Date -- business dates carry no time component.
        - int maps to BigInteger -- safe for monotonic sequences.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        date: Date(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Guarantees:
        - created_at defaults to server NOW() on INSERT and never changes.
        - updated_at defaults to server NOW() on INSERT and auto-updates on
          every UPDATE.
        - created_by_id is required (NOT NULL) -- every record has a creator.
        - updated_by_id is nullable.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


# Re-export UUID for convenience
UUID = PyUUID
