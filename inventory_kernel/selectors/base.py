"""
Module: inventory_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    are the read side of the ledger: they fetch rows and hand them to the pure
    balance fold, but never mutate anything.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(), session.delete(),
      session.commit(), or session.flush().
    - Readers never take the per-key lock.  The ledger is append-only, so any
      snapshot they see is a valid prefix of history.
    - Session ownership: the caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs, ORM rows or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
