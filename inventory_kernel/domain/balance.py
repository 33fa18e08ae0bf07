"""
Balance -- the pure fold that turns a ledger into stock on hand.

Responsibility:
    Reduces an ordered sequence of stock movements for one (warehouse, SKU,
    batch) key into cartons, units and pallets.  No stored balance exists
    anywhere; every read path replays the ledger through this module.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Selectors fetch rows
    and configuration, then hand them here.

Invariants enforced:
    - Conservation: cartons == sum(cartons_in) - sum(cartons_out) over exactly
      the movements folded.
    - Last non-null wins: units_per_carton and the cartons-per-pallet ratios
      reported for a key are the ones captured by the newest movement that
      carried them.  This is an explicit reducer step; live SKU or warehouse
      configuration is consulted only when no movement carried a value.
    - Referential transparency: the same movements and fallbacks always
      produce the same InventoryBalance.

Failure modes:
    - None.  Negative balances are representable; detecting them is the
      reconciliation engine's job.

Audit relevance:
    pallet_ratio_source makes the degenerate 1:1 fallback visible instead of
    presenting it as a configured answer.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Protocol
from uuid import UUID

DEFAULT_PALLET_RATIO = 1


class PalletRatioSource(str, Enum):
    """Where the storage cartons-per-pallet ratio of a balance came from."""

    TRANSACTION = "TRANSACTION"
    CONFIGURATION = "CONFIGURATION"
    UNCONFIGURED = "UNCONFIGURED"


class LedgerMovement(Protocol):
    """The slice of a ledger row the fold reads."""

    cartons_in: int
    cartons_out: int
    units_per_carton: int | None
    storage_cartons_per_pallet: int | None
    shipping_cartons_per_pallet: int | None
    transaction_date: date
    created_at: datetime


@dataclass(frozen=True)
class LedgerKey:
    """Identity of a balance: (warehouse, SKU, batch lot)."""

    warehouse_id: UUID
    sku_id: UUID
    batch_lot: str

    def lock_parts(self) -> tuple[str, str, str]:
        return (str(self.warehouse_id), str(self.sku_id), self.batch_lot)


@dataclass(frozen=True)
class PalletConfiguration:
    """Cartons-per-pallet ratios effective on some date."""

    storage_cartons_per_pallet: int
    shipping_cartons_per_pallet: int
    effective_date: date | None = None


@dataclass
class BalanceAccumulator:
    """Running state of the fold.  ``apply`` is the reducer step."""

    cartons: int = 0
    cartons_in_total: int = 0
    cartons_out_total: int = 0
    units_per_carton: int | None = None
    storage_cartons_per_pallet: int | None = None
    shipping_cartons_per_pallet: int | None = None
    last_transaction_date: date | None = None
    transaction_count: int = 0

    def apply(self, movement: LedgerMovement) -> "BalanceAccumulator":
        self.cartons_in_total += movement.cartons_in
        self.cartons_out_total += movement.cartons_out
        self.cartons += movement.cartons_in - movement.cartons_out
        if movement.units_per_carton is not None:
            self.units_per_carton = movement.units_per_carton
        if movement.storage_cartons_per_pallet is not None:
            self.storage_cartons_per_pallet = movement.storage_cartons_per_pallet
        if movement.shipping_cartons_per_pallet is not None:
            self.shipping_cartons_per_pallet = movement.shipping_cartons_per_pallet
        self.last_transaction_date = movement.transaction_date
        self.transaction_count += 1
        return self


def fold_transactions(movements: Iterable[LedgerMovement]) -> BalanceAccumulator:
    """
    Fold movements into a BalanceAccumulator.

    Preconditions: movements are in replay order, (transaction_date,
        created_at) ascending.  The carton total does not depend on order;
        the captured ratios do.
    """
    acc = BalanceAccumulator()
    for movement in movements:
        acc.apply(movement)
    return acc


def replay_order(movements: Iterable[LedgerMovement]) -> list[LedgerMovement]:
    """Sort movements into replay order."""
    return sorted(movements, key=lambda m: (m.transaction_date, m.created_at))


def pallets_for(cartons: int, cartons_per_pallet: int | None) -> int:
    """ceil(cartons / ratio); zero when there is nothing on hand or no ratio."""
    if cartons <= 0 or not cartons_per_pallet or cartons_per_pallet <= 0:
        return 0
    return -(-cartons // cartons_per_pallet)


@dataclass(frozen=True)
class InventoryBalance:
    """
    Derived stock on hand for one key.  Never persisted.

    as_of is the cutoff date used for the projection, or None for the full
    ledger.
    """

    warehouse_id: UUID
    sku_id: UUID
    batch_lot: str
    current_cartons: int
    current_pallets: int
    current_units: int
    units_per_carton: int
    storage_cartons_per_pallet: int
    shipping_cartons_per_pallet: int | None
    pallet_ratio_source: PalletRatioSource
    last_transaction_date: date | None
    transaction_count: int
    as_of: date | None = None
    warehouse_code: str | None = None
    warehouse_name: str | None = None
    sku_code: str | None = None
    sku_description: str | None = None
    cartons_in_total: int = field(default=0, compare=False)
    cartons_out_total: int = field(default=0, compare=False)

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.warehouse_id, self.sku_id, self.batch_lot)

    @property
    def is_negative(self) -> bool:
        return self.current_cartons < 0

    @property
    def is_unconfigured(self) -> bool:
        return self.pallet_ratio_source is PalletRatioSource.UNCONFIGURED

    def to_dict(self) -> dict:
        return {
            "warehouse_id": str(self.warehouse_id),
            "warehouse_code": self.warehouse_code,
            "sku_id": str(self.sku_id),
            "sku_code": self.sku_code,
            "batch_lot": self.batch_lot,
            "current_cartons": self.current_cartons,
            "current_pallets": self.current_pallets,
            "current_units": self.current_units,
            "units_per_carton": self.units_per_carton,
            "storage_cartons_per_pallet": self.storage_cartons_per_pallet,
            "pallet_ratio_source": self.pallet_ratio_source.value,
            "last_transaction_date": (
                self.last_transaction_date.isoformat()
                if self.last_transaction_date
                else None
            ),
        }


def build_balance(
    key: LedgerKey,
    acc: BalanceAccumulator,
    *,
    sku_units_per_carton: int,
    configuration: PalletConfiguration | None = None,
    as_of: date | None = None,
    warehouse_code: str | None = None,
    warehouse_name: str | None = None,
    sku_code: str | None = None,
    sku_description: str | None = None,
) -> InventoryBalance:
    """
    Resolve the fold's state into an InventoryBalance.

    Ratio precedence: captured on a movement, then the configuration passed
    in (the caller looks it up as of the cutoff), then DEFAULT_PALLET_RATIO
    flagged as UNCONFIGURED.
    """
    units_per_carton = acc.units_per_carton or sku_units_per_carton

    if acc.storage_cartons_per_pallet is not None:
        storage_ratio = acc.storage_cartons_per_pallet
        source = PalletRatioSource.TRANSACTION
    elif configuration is not None:
        storage_ratio = configuration.storage_cartons_per_pallet
        source = PalletRatioSource.CONFIGURATION
    else:
        storage_ratio = DEFAULT_PALLET_RATIO
        source = PalletRatioSource.UNCONFIGURED

    shipping_ratio = acc.shipping_cartons_per_pallet
    if shipping_ratio is None and configuration is not None:
        shipping_ratio = configuration.shipping_cartons_per_pallet

    return InventoryBalance(
        warehouse_id=key.warehouse_id,
        sku_id=key.sku_id,
        batch_lot=key.batch_lot,
        current_cartons=acc.cartons,
        current_pallets=pallets_for(acc.cartons, storage_ratio),
        current_units=acc.cartons * units_per_carton,
        units_per_carton=units_per_carton,
        storage_cartons_per_pallet=storage_ratio,
        shipping_cartons_per_pallet=shipping_ratio,
        pallet_ratio_source=source,
        last_transaction_date=acc.last_transaction_date,
        transaction_count=acc.transaction_count,
        as_of=as_of,
        warehouse_code=warehouse_code,
        warehouse_name=warehouse_name,
        sku_code=sku_code,
        sku_description=sku_description,
        cartons_in_total=acc.cartons_in_total,
        cartons_out_total=acc.cartons_out_total,
    )
