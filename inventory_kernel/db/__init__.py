"""Database layer - engine, base classes, types, and immutability."""

from inventory_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from inventory_kernel.db.engine import create_tables, get_engine, get_session
from inventory_kernel.db.types import BatchLot, PayloadHash, Quantity, Sequence

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "Quantity",
    "BatchLot",
    "Sequence",
    "PayloadHash",
]
