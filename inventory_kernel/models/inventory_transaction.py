"""
Module: inventory_kernel.models.inventory_transaction
Responsibility: ORM persistence for the append-only inventory ledger.  One
    row per stock movement, keyed by (warehouse, SKU, batch lot).
Architecture position: Kernel > Models.  May import from db/base.py, db/types.py
    and models/warehouse.py only.

Invariants enforced:
    - A transaction is NEVER updated or deleted (ORM listener + DB trigger).
      Corrections are new ADJUST_IN / ADJUST_OUT rows.
    - Quantities are non-negative and exactly one carton side is populated,
      according to the movement direction of transaction_type.
    - batch_lot is non-empty (the writer substitutes a sentinel when absent).
    - units_per_carton and the cartons-per-pallet ratios are captured at
      write time and never re-derived from live configuration.
    - transaction_id is unique.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError on a duplicate transaction_id or a CHECK violation.

Audit relevance:
    This table is the single source of truth for stock.  Balances are a
    fold over it ordered by (transaction_date, created_at); replay is well
    defined only because rows never change.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, UTCDateTime, UUIDString
from inventory_kernel.domain.dtos import TransactionType
from inventory_kernel.models.warehouse import Sku, Warehouse


class InventoryTransaction(Base):
    """
    Immutable stock movement.

    Contract:
        Rows are only ever created through TransactionStore.append().  The
        model exposes no mutation helpers.

    Guarantees:
        - cartons_in > 0 and cartons_out == 0 for inbound types, and the
          reverse for outbound types (enforced by the writer).
        - created_at is the clock's time at write, used only to break ties
          between transactions sharing a transaction_date.
    """

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        Index(
            "idx_inv_txn_key_replay",
            "warehouse_id",
            "sku_id",
            "batch_lot",
            "transaction_date",
            "created_at",
        ),
        Index("idx_inv_txn_warehouse_date", "warehouse_id", "transaction_date", "created_at"),
        Index(
            "idx_inv_txn_duplicate_window",
            "warehouse_id",
            "reference_id",
            "transaction_type",
            "created_at",
        ),
        CheckConstraint("cartons_in >= 0", name="chk_inv_txn_cartons_in_non_negative"),
        CheckConstraint("cartons_out >= 0", name="chk_inv_txn_cartons_out_non_negative"),
        CheckConstraint(
            "storage_pallets_in >= 0", name="chk_inv_txn_storage_pallets_non_negative"
        ),
        CheckConstraint(
            "shipping_pallets_out >= 0", name="chk_inv_txn_shipping_pallets_non_negative"
        ),
        CheckConstraint("batch_lot <> ''", name="chk_inv_txn_batch_lot_not_empty"),
    )

    # Human-readable identifier: {WAREHOUSE}-{TYP}-{YYYYMMDD}-{NNN}
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    # Ledger key
    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    sku_id: Mapped[UUID] = mapped_column(ForeignKey("skus.id"), nullable=False)
    batch_lot: Mapped[str] = mapped_column(String(100), nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)

    # Movement
    cartons_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cartons_out: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_pallets_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping_pallets_out: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Snapshots captured at write time
    storage_cartons_per_pallet: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipping_cartons_per_pallet: Mapped[int | None] = mapped_column(Integer, nullable=True)
    units_per_carton: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Temporal
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    pickup_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Provenance
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ship_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mode_of_transportation: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pallet_variance_notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Opaque to the ledger (file references, free-text notes)
    attachments: Mapped[list | None] = mapped_column(JSON, nullable=True)

    warehouse: Mapped[Warehouse] = relationship(lazy="joined")
    sku: Mapped[Sku] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<InventoryTransaction {self.transaction_id}>"

    @property
    def movement_type(self) -> TransactionType:
        """transaction_type as the enum, whatever the column loaded it as."""
        return TransactionType(self.transaction_type)

    @property
    def net_cartons(self) -> int:
        return self.cartons_in - self.cartons_out
