"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service in the kernel layer.  Services use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (InventoryTransactionWriter with auto_commit, the reconciliation
      service, or a test harness) owns commit/rollback, and with it the
      release of any transaction-scoped lock.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
