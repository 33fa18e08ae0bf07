"""
Module: inventory_kernel.selectors.balance_selector
Responsibility: The balance projector.  Computes current or point-in-time
    stock on hand by replaying the ledger through the pure fold in
    domain/balance.py, for one key or in bulk, plus availability checks and
    per-SKU summaries built on the same projection.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - No stored balances.  Every figure is recomputed from InventoryTransaction
      rows at query time.
    - Projection is a pure function of the ledger: same rows, same cutoff,
      same configuration -> identical InventoryBalance values.
    - project_all() issues one ledger query and at most one configuration
      query regardless of how many keys it returns.
    - Configuration fallback selects the row with the latest
      effective_date <= as_of whose end_date is NULL or >= as_of.

Failure modes:
    - WarehouseNotFoundError / SkuNotFoundError from project() for unknown
      reference data.

Audit relevance:
    Reads never take the per-key lock; they may observe a slightly stale
    snapshot under concurrent writes, which is always a valid prefix of the
    append-only history.
"""

from dataclasses import dataclass
from datetime import date
from itertools import groupby
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from inventory_kernel.domain.balance import (
    InventoryBalance,
    LedgerKey,
    PalletConfiguration,
    build_balance,
    fold_transactions,
)
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import BalanceFilter
from inventory_kernel.exceptions import SkuNotFoundError, WarehouseNotFoundError
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.models.warehouse import Sku, Warehouse, WarehouseSkuConfig
from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.transaction_selector import TransactionSelector


@dataclass(frozen=True)
class AvailabilityCheck:
    """Whether a key can cover an outbound quantity."""

    warehouse_id: UUID
    sku_id: UUID
    batch_lot: str
    requested_cartons: int
    available_cartons: int

    @property
    def is_available(self) -> bool:
        return self.available_cartons >= self.requested_cartons

    @property
    def shortfall(self) -> int:
        return max(0, self.requested_cartons - self.available_cartons)


@dataclass(frozen=True)
class SkuInventorySummary:
    """One SKU's stock across warehouses and batches."""

    sku_id: UUID
    sku_code: str
    total_cartons: int
    total_units: int
    total_pallets: int
    warehouse_count: int
    batch_count: int
    balances: tuple[InventoryBalance, ...]


class BalanceSelector(BaseSelector[InventoryTransaction]):
    """
    Balance projector over the ledger.

    Contract:
        cutoff=None means the full ledger; configuration fallbacks are then
        evaluated as of the clock's current business date.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._transactions = TransactionSelector(session)

    # -----------------------------------------------------------------
    # Reference data
    # -----------------------------------------------------------------

    def get_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def get_sku(self, sku_id: UUID) -> Sku:
        sku = self.session.get(Sku, sku_id)
        if sku is None:
            raise SkuNotFoundError(str(sku_id))
        return sku

    def effective_configuration(
        self, warehouse_id: UUID, sku_id: UUID, as_of: date
    ) -> PalletConfiguration | None:
        """The warehouse-SKU pallet configuration in force on as_of, if any."""
        row = self.session.execute(
            select(WarehouseSkuConfig)
            .where(
                WarehouseSkuConfig.warehouse_id == warehouse_id,
                WarehouseSkuConfig.sku_id == sku_id,
                WarehouseSkuConfig.effective_date <= as_of,
                or_(
                    WarehouseSkuConfig.end_date.is_(None),
                    WarehouseSkuConfig.end_date >= as_of,
                ),
            )
            .order_by(WarehouseSkuConfig.effective_date.desc())
            .limit(1)
        ).scalars().first()
        return _to_configuration(row)

    def _configurations_for(
        self, pairs: set[tuple[UUID, UUID]], as_of: date
    ) -> dict[tuple[UUID, UUID], PalletConfiguration]:
        """Effective configurations for many (warehouse, sku) pairs in one query."""
        if not pairs:
            return {}
        warehouse_ids = {w for w, _ in pairs}
        sku_ids = {s for _, s in pairs}
        rows = self.session.execute(
            select(WarehouseSkuConfig)
            .where(
                WarehouseSkuConfig.warehouse_id.in_(warehouse_ids),
                WarehouseSkuConfig.sku_id.in_(sku_ids),
                WarehouseSkuConfig.effective_date <= as_of,
                or_(
                    WarehouseSkuConfig.end_date.is_(None),
                    WarehouseSkuConfig.end_date >= as_of,
                ),
            )
            .order_by(WarehouseSkuConfig.effective_date.desc())
        ).scalars().all()

        found: dict[tuple[UUID, UUID], PalletConfiguration] = {}
        for row in rows:
            pair = (row.warehouse_id, row.sku_id)
            if pair in pairs and pair not in found:
                found[pair] = _to_configuration(row)
        return found

    # -----------------------------------------------------------------
    # Projection
    # -----------------------------------------------------------------

    def project(
        self,
        warehouse_id: UUID,
        sku_id: UUID,
        batch_lot: str,
        cutoff: date | None = None,
    ) -> InventoryBalance:
        """
        Balance of one key, summing transactions dated on or before cutoff.
        """
        warehouse = self.get_warehouse(warehouse_id)
        sku = self.get_sku(sku_id)
        key = LedgerKey(warehouse_id, sku_id, batch_lot)

        acc = fold_transactions(self._transactions.for_key(key, cutoff=cutoff))

        configuration = None
        if acc.storage_cartons_per_pallet is None or acc.shipping_cartons_per_pallet is None:
            configuration = self.effective_configuration(
                warehouse_id, sku_id, cutoff or self._clock.today()
            )

        return build_balance(
            key,
            acc,
            sku_units_per_carton=sku.units_per_carton,
            configuration=configuration,
            as_of=cutoff,
            warehouse_code=warehouse.code,
            warehouse_name=warehouse.name,
            sku_code=sku.sku_code,
            sku_description=sku.description,
        )

    def project_all(
        self,
        criteria: BalanceFilter | None = None,
        cutoff: date | None = None,
        include_zero: bool = False,
    ) -> list[InventoryBalance]:
        """
        Balances for every key matching criteria, in a single pass.

        Keys settling to exactly zero are dropped unless include_zero is set;
        negative balances are always returned.  Sorted by SKU code, then
        batch lot, then warehouse code.
        """
        criteria = criteria or BalanceFilter()
        stmt = (
            select(
                InventoryTransaction.warehouse_id,
                InventoryTransaction.sku_id,
                InventoryTransaction.batch_lot,
                InventoryTransaction.cartons_in,
                InventoryTransaction.cartons_out,
                InventoryTransaction.units_per_carton,
                InventoryTransaction.storage_cartons_per_pallet,
                InventoryTransaction.shipping_cartons_per_pallet,
                InventoryTransaction.transaction_date,
                InventoryTransaction.created_at,
                Warehouse.code.label("warehouse_code"),
                Warehouse.name.label("warehouse_name"),
                Sku.sku_code,
                Sku.description.label("sku_description"),
                Sku.units_per_carton.label("sku_units_per_carton"),
            )
            .join(Warehouse, Warehouse.id == InventoryTransaction.warehouse_id)
            .join(Sku, Sku.id == InventoryTransaction.sku_id)
            .order_by(
                InventoryTransaction.warehouse_id,
                InventoryTransaction.sku_id,
                InventoryTransaction.batch_lot,
                InventoryTransaction.transaction_date,
                InventoryTransaction.created_at,
                InventoryTransaction.id,
            )
        )
        if criteria.warehouse_id is not None:
            stmt = stmt.where(InventoryTransaction.warehouse_id == criteria.warehouse_id)
        if criteria.sku_id is not None:
            stmt = stmt.where(InventoryTransaction.sku_id == criteria.sku_id)
        if criteria.batch_lot is not None:
            stmt = stmt.where(InventoryTransaction.batch_lot == criteria.batch_lot)
        if cutoff is not None:
            stmt = stmt.where(InventoryTransaction.transaction_date <= cutoff)

        grouped = []
        for key_tuple, rows in groupby(
            self.session.execute(stmt).all(),
            key=lambda r: (r.warehouse_id, r.sku_id, r.batch_lot),
        ):
            rows = list(rows)
            grouped.append((LedgerKey(*key_tuple), rows[-1], fold_transactions(rows)))

        needs_config = {
            (key.warehouse_id, key.sku_id)
            for key, _, acc in grouped
            if acc.storage_cartons_per_pallet is None or acc.shipping_cartons_per_pallet is None
        }
        configurations = self._configurations_for(needs_config, cutoff or self._clock.today())

        balances = []
        for key, last, acc in grouped:
            if acc.cartons == 0 and not include_zero:
                continue
            balances.append(
                build_balance(
                    key,
                    acc,
                    sku_units_per_carton=last.sku_units_per_carton,
                    configuration=configurations.get((key.warehouse_id, key.sku_id)),
                    as_of=cutoff,
                    warehouse_code=last.warehouse_code,
                    warehouse_name=last.warehouse_name,
                    sku_code=last.sku_code,
                    sku_description=last.sku_description,
                )
            )

        balances.sort(key=lambda b: (b.sku_code, b.batch_lot, b.warehouse_code))
        return balances

    # -----------------------------------------------------------------
    # Derived reads
    # -----------------------------------------------------------------

    def check_availability(
        self,
        warehouse_id: UUID,
        sku_id: UUID,
        batch_lot: str,
        requested_cartons: int,
        as_of: date | None = None,
    ) -> AvailabilityCheck:
        balance = self.project(warehouse_id, sku_id, batch_lot, cutoff=as_of)
        return AvailabilityCheck(
            warehouse_id=warehouse_id,
            sku_id=sku_id,
            batch_lot=batch_lot,
            requested_cartons=requested_cartons,
            available_cartons=balance.current_cartons,
        )

    def bulk_check_availability(
        self,
        requests: list[tuple[UUID, UUID, str, int]],
        as_of: date | None = None,
    ) -> list[AvailabilityCheck]:
        """
        Check (warehouse_id, sku_id, batch_lot, cartons) requests together.

        Requests for the same key are summed, so two lines drawing on one
        batch are checked against its stock jointly.  Results follow the
        order of first appearance.
        """
        totals: dict[LedgerKey, int] = {}
        for warehouse_id, sku_id, batch_lot, cartons in requests:
            key = LedgerKey(warehouse_id, sku_id, batch_lot)
            totals[key] = totals.get(key, 0) + cartons
        return [
            self.check_availability(
                key.warehouse_id, key.sku_id, key.batch_lot, cartons, as_of=as_of
            )
            for key, cartons in totals.items()
        ]

    def sku_summary(self, sku_id: UUID, cutoff: date | None = None) -> SkuInventorySummary:
        """Positive stock of one SKU across every warehouse and batch."""
        sku = self.get_sku(sku_id)
        balances = tuple(
            b
            for b in self.project_all(BalanceFilter(sku_id=sku_id), cutoff=cutoff)
            if b.current_cartons > 0
        )
        return SkuInventorySummary(
            sku_id=sku.id,
            sku_code=sku.sku_code,
            total_cartons=sum(b.current_cartons for b in balances),
            total_units=sum(b.current_units for b in balances),
            total_pallets=sum(b.current_pallets for b in balances),
            warehouse_count=len({b.warehouse_id for b in balances}),
            batch_count=len({(b.warehouse_id, b.batch_lot) for b in balances}),
            balances=balances,
        )


def _to_configuration(row: WarehouseSkuConfig | None) -> PalletConfiguration | None:
    if row is None:
        return None
    return PalletConfiguration(
        storage_cartons_per_pallet=row.storage_cartons_per_pallet,
        shipping_cartons_per_pallet=row.shipping_cartons_per_pallet,
        effective_date=row.effective_date,
    )
