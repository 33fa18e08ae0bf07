"""
Module: inventory_kernel.models.warehouse
Responsibility: Reference data the ledger reads but never owns: warehouses,
    the SKU master, and per-warehouse packing configuration with validity
    windows.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Warehouse.code and Sku.sku_code are unique.
    - WarehouseSkuConfig ratios are positive (CHECK constraints).
    - A configuration is effective at date t when
      effective_date <= t and (end_date is NULL or end_date >= t).

Failure modes:
    - IntegrityError on duplicate codes or non-positive ratios.

Audit relevance:
    Ledger rows snapshot units_per_carton and cartons-per-pallet at write
    time, so edits to these tables never change historical pallet or unit
    math.  They only influence balances for keys whose transactions carry
    no captured ratio.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base


class Warehouse(Base):
    """A physical warehouse.  Its code is embedded in every transaction id."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class Sku(Base):
    """SKU master record.  units_per_carton is the default captured on writes."""

    __tablename__ = "skus"

    __table_args__ = (
        CheckConstraint("units_per_carton > 0", name="chk_sku_units_per_carton_positive"),
    )

    sku_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    units_per_carton: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<Sku {self.sku_code}>"


class WarehouseSkuConfig(Base):
    """
    Cartons-per-pallet configuration for one SKU in one warehouse.

    Contract:
        Rows form validity windows over business dates.  Lookups select the
        row with the latest effective_date <= t whose end_date is NULL or
        >= t.
    """

    __tablename__ = "warehouse_sku_configs"

    __table_args__ = (
        Index("idx_wsc_lookup", "warehouse_id", "sku_id", "effective_date"),
        CheckConstraint(
            "storage_cartons_per_pallet > 0", name="chk_wsc_storage_ratio_positive"
        ),
        CheckConstraint(
            "shipping_cartons_per_pallet > 0", name="chk_wsc_shipping_ratio_positive"
        ),
    )

    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    sku_id: Mapped[UUID] = mapped_column(ForeignKey("skus.id"), nullable=False)
    storage_cartons_per_pallet: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_cartons_per_pallet: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    warehouse: Mapped[Warehouse] = relationship(lazy="joined")
    sku: Mapped[Sku] = relationship(lazy="joined")

    def is_effective_on(self, as_of: date) -> bool:
        return self.effective_date <= as_of and (
            self.end_date is None or self.end_date >= as_of
        )
