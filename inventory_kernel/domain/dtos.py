"""
DTOs -- Pure domain data transfer objects for the ledger.

Responsibility:
    Defines the immutable inputs that flow into the transaction writer and
    the filters that flow into selectors.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Free of ORM
    dependencies; the writer converts a TransactionInput into an
    InventoryTransaction row only after every check has passed.

Failure modes:
    - None at construction.  Shape validation is the writer's first step so
      that every rejection is raised as TransactionValidationError with the
      offending field name.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID


class TransactionType(str, Enum):
    """Kinds of stock movement."""

    RECEIVE = "RECEIVE"
    SHIP = "SHIP"
    ADJUST_IN = "ADJUST_IN"
    ADJUST_OUT = "ADJUST_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"

    @property
    def is_inbound(self) -> bool:
        return self in INBOUND_TYPES

    @property
    def is_outbound(self) -> bool:
        return self in OUTBOUND_TYPES


INBOUND_TYPES = frozenset(
    {TransactionType.RECEIVE, TransactionType.ADJUST_IN, TransactionType.TRANSFER_IN}
)
OUTBOUND_TYPES = frozenset(
    {TransactionType.SHIP, TransactionType.ADJUST_OUT, TransactionType.TRANSFER_OUT}
)


@dataclass(frozen=True)
class TransactionInput:
    """
    A proposed stock movement.

    Quantities:
        Inbound types populate cartons_in, outbound types cartons_out.
        storage_pallets_in / shipping_pallets_out, when given, are operator
        overrides; when omitted they are computed from the ratio.

    Snapshots:
        storage_cartons_per_pallet, shipping_cartons_per_pallet and
        units_per_carton override what would otherwise be captured from
        history, configuration or the SKU master.
    """

    warehouse_id: UUID
    sku_id: UUID
    transaction_type: TransactionType
    transaction_date: date
    cartons_in: int = 0
    cartons_out: int = 0
    batch_lot: str | None = None
    storage_pallets_in: int | None = None
    shipping_pallets_out: int | None = None
    storage_cartons_per_pallet: int | None = None
    shipping_cartons_per_pallet: int | None = None
    units_per_carton: int | None = None
    pickup_date: date | None = None
    reference_id: str | None = None
    tracking_number: str | None = None
    ship_name: str | None = None
    mode_of_transportation: str | None = None
    supplier: str | None = None
    notes: str | None = None
    attachments: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @property
    def movement_type(self) -> TransactionType:
        return TransactionType(self.transaction_type)

    @property
    def cartons(self) -> int:
        """The populated side: cartons_in for inbound, cartons_out for outbound."""
        if self.movement_type.is_inbound:
            return self.cartons_in
        return self.cartons_out

    def with_changes(self, **changes: Any) -> "TransactionInput":
        return replace(self, **changes)


@dataclass(frozen=True)
class TransactionFilter:
    """Selection criteria for ledger queries.  None means unconstrained."""

    warehouse_id: UUID | None = None
    sku_id: UUID | None = None
    batch_lot: str | None = None
    transaction_types: tuple[TransactionType, ...] = ()
    start_date: date | None = None
    end_date: date | None = None
    limit: int | None = None


@dataclass(frozen=True)
class BalanceFilter:
    """Selection criteria for bulk balance projection."""

    warehouse_id: UUID | None = None
    sku_id: UUID | None = None
    batch_lot: str | None = None
