"""
Module: inventory_kernel.selectors.transaction_selector
Responsibility: Read-only queries over the append-only inventory ledger:
    filtered listing in replay or display order, most-recent lookups used by
    the writer, distinct-key enumeration for reconciliation, and per-key
    history with running balances.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Replay order is (transaction_date ASC, created_at ASC, id ASC); display
      order is the exact reverse.  Ordering is always done in SQL.
    - distinct_keys() is a single grouped query, never a per-warehouse loop.

Failure modes:
    - Returns empty lists / None when nothing matches.

Audit relevance:
    history() is the operator's ledger view: every row with the balance it
    left behind, so any figure on a balance screen can be traced back to the
    movements that produced it.
"""

from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Select, func, select

from inventory_kernel.domain.balance import LedgerKey
from inventory_kernel.domain.dtos import TransactionFilter, TransactionType
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerKeyStats:
    """One distinct (warehouse, SKU, batch) key with its aggregate movement."""

    warehouse_id: UUID
    sku_id: UUID
    batch_lot: str
    transaction_count: int
    cartons_in_total: int
    cartons_out_total: int
    last_transaction_date: date

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.warehouse_id, self.sku_id, self.batch_lot)

    @property
    def net_cartons(self) -> int:
        return self.cartons_in_total - self.cartons_out_total


@dataclass(frozen=True)
class HistoryEntry:
    """A ledger row annotated with the running balance after it."""

    transaction_id: str
    transaction_type: TransactionType
    transaction_date: date
    created_at: datetime
    cartons_in: int
    cartons_out: int
    running_cartons: int
    running_units: int
    reference_id: str | None
    created_by_id: UUID
    pallet_variance_notes: str | None

    @property
    def net_cartons(self) -> int:
        return self.cartons_in - self.cartons_out


class TransactionSelector(BaseSelector[InventoryTransaction]):
    """
    Selector for ledger rows.

    Contract:
        Returns InventoryTransaction rows (read-only by construction, since
        the model rejects updates) or frozen DTOs.
    """

    def _base_query(self, criteria: TransactionFilter) -> Select:
        stmt = select(InventoryTransaction)
        if criteria.warehouse_id is not None:
            stmt = stmt.where(InventoryTransaction.warehouse_id == criteria.warehouse_id)
        if criteria.sku_id is not None:
            stmt = stmt.where(InventoryTransaction.sku_id == criteria.sku_id)
        if criteria.batch_lot is not None:
            stmt = stmt.where(InventoryTransaction.batch_lot == criteria.batch_lot)
        if criteria.transaction_types:
            stmt = stmt.where(
                InventoryTransaction.transaction_type.in_(
                    [TransactionType(t).value for t in criteria.transaction_types]
                )
            )
        if criteria.start_date is not None:
            stmt = stmt.where(InventoryTransaction.transaction_date >= criteria.start_date)
        if criteria.end_date is not None:
            stmt = stmt.where(InventoryTransaction.transaction_date <= criteria.end_date)
        return stmt

    @staticmethod
    def _ordered(stmt: Select, descending: bool = False) -> Select:
        if descending:
            return stmt.order_by(
                InventoryTransaction.transaction_date.desc(),
                InventoryTransaction.created_at.desc(),
                InventoryTransaction.id.desc(),
            )
        return stmt.order_by(
            InventoryTransaction.transaction_date.asc(),
            InventoryTransaction.created_at.asc(),
            InventoryTransaction.id.asc(),
        )

    def query(
        self,
        criteria: TransactionFilter | None = None,
        descending: bool = False,
    ) -> list[InventoryTransaction]:
        """
        Filtered ledger rows, ascending for replay or descending for display.
        """
        criteria = criteria or TransactionFilter()
        stmt = self._ordered(self._base_query(criteria), descending)
        if criteria.limit is not None:
            stmt = stmt.limit(criteria.limit)
        return list(self.session.execute(stmt).scalars().all())

    def count(self, criteria: TransactionFilter | None = None) -> int:
        criteria = criteria or TransactionFilter()
        subq = self._base_query(criteria).subquery()
        return self.session.execute(select(func.count()).select_from(subq)).scalar_one()

    def for_key(self, key: LedgerKey, cutoff: date | None = None) -> list[InventoryTransaction]:
        """All rows for one key up to and including cutoff, in replay order."""
        return self.query(
            TransactionFilter(
                warehouse_id=key.warehouse_id,
                sku_id=key.sku_id,
                batch_lot=key.batch_lot,
                end_date=cutoff,
            )
        )

    def get_by_transaction_id(self, transaction_id: str) -> InventoryTransaction | None:
        return self.session.execute(
            select(InventoryTransaction).where(
                InventoryTransaction.transaction_id == transaction_id
            )
        ).scalar_one_or_none()

    def latest_for_key(self, key: LedgerKey) -> InventoryTransaction | None:
        rows = self.query(
            TransactionFilter(
                warehouse_id=key.warehouse_id,
                sku_id=key.sku_id,
                batch_lot=key.batch_lot,
                limit=1,
            ),
            descending=True,
        )
        return rows[0] if rows else None

    def latest_for_warehouse(self, warehouse_id: UUID) -> InventoryTransaction | None:
        """The warehouse's most recent row, the reference point for backdating."""
        rows = self.query(
            TransactionFilter(warehouse_id=warehouse_id, limit=1), descending=True
        )
        return rows[0] if rows else None

    def find_recent_duplicate(
        self,
        warehouse_id: UUID,
        reference_id: str,
        transaction_type: TransactionType,
        since: datetime,
    ) -> InventoryTransaction | None:
        """A row with the same reference, type and warehouse created at or after since."""
        stmt = (
            select(InventoryTransaction)
            .where(
                InventoryTransaction.warehouse_id == warehouse_id,
                InventoryTransaction.reference_id == reference_id,
                InventoryTransaction.transaction_type == TransactionType(transaction_type).value,
                InventoryTransaction.created_at >= since,
            )
            .order_by(InventoryTransaction.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def distinct_keys(self, warehouse_id: UUID | None = None) -> list[LedgerKeyStats]:
        """Every key observed in the ledger, in one grouped query."""
        stmt = select(
            InventoryTransaction.warehouse_id,
            InventoryTransaction.sku_id,
            InventoryTransaction.batch_lot,
            func.count(InventoryTransaction.id),
            func.coalesce(func.sum(InventoryTransaction.cartons_in), 0),
            func.coalesce(func.sum(InventoryTransaction.cartons_out), 0),
            func.max(InventoryTransaction.transaction_date),
        ).group_by(
            InventoryTransaction.warehouse_id,
            InventoryTransaction.sku_id,
            InventoryTransaction.batch_lot,
        ).order_by(
            InventoryTransaction.warehouse_id,
            InventoryTransaction.sku_id,
            InventoryTransaction.batch_lot,
        )
        if warehouse_id is not None:
            stmt = stmt.where(InventoryTransaction.warehouse_id == warehouse_id)

        return [
            LedgerKeyStats(
                warehouse_id=row[0],
                sku_id=row[1],
                batch_lot=row[2],
                transaction_count=int(row[3]),
                cartons_in_total=int(row[4]),
                cartons_out_total=int(row[5]),
                last_transaction_date=row[6],
            )
            for row in self.session.execute(stmt).all()
        ]

    def history(
        self,
        key: LedgerKey,
        *,
        default_units_per_carton: int = 1,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        """
        Ledger for one key with running balances, newest first.

        Running figures are computed from the start of history so that a
        start_date window still shows true balances.
        """
        running_cartons = 0
        units_per_carton = default_units_per_carton
        entries: list[HistoryEntry] = []
        for row in self.for_key(key, cutoff=end_date):
            running_cartons += row.cartons_in - row.cartons_out
            if row.units_per_carton is not None:
                units_per_carton = row.units_per_carton
            if start_date is not None and row.transaction_date < start_date:
                continue
            entries.append(
                HistoryEntry(
                    transaction_id=row.transaction_id,
                    transaction_type=row.movement_type,
                    transaction_date=row.transaction_date,
                    created_at=row.created_at,
                    cartons_in=row.cartons_in,
                    cartons_out=row.cartons_out,
                    running_cartons=running_cartons,
                    running_units=running_cartons * units_per_carton,
                    reference_id=row.reference_id,
                    created_by_id=row.created_by_id,
                    pallet_variance_notes=row.pallet_variance_notes,
                )
            )
        entries.reverse()
        if limit is not None:
            entries = entries[:limit]
        return entries
