"""
InventoryTransactionWriter -- the sole entry point for stock movements.

Responsibility:
    Validates a proposed movement, serializes it against concurrent writes
    to the same (warehouse, SKU, batch) key, captures the ratios it was made
    under, assigns its human-readable id, appends it to the ledger and
    records an audit entry with the key's balance before and after.

Architecture position:
    Kernel > Services -- imperative shell orchestrator.
    Composes LedgerLockService, TransactionSelector, BalanceSelector,
    SequenceService, TransactionStore and AuditorService over one Session.

Pipeline (one unit of work per call):
    1. Shape validation (types, quantity bounds, batch lot).
    2. Per-key lock(s), always taken in ascending key order.
    3. Duplicate-submission check (reference, type, warehouse, window).
    4. Temporal checks: no future date, no date before the warehouse's
       latest transaction.
    5. Warehouse / SKU resolution.
    6. Outbound availability against the balance as of the movement date.
    7. Pallet ratio resolution and pallet computation with variance notes.
    8. Capture of units-per-carton and ratios onto the new row.
    9. Transaction id {WH}-{TYP}-{YYYYMMDD}-{NNN} from a locked counter.
   10. Append, then audit with before / after balances.

Invariants enforced:
    - No negative stock through normal flow: availability is read under the
      key lock, so two outbound movements cannot both pass on a stale read.
    - Backdating ban: a movement's date is never earlier than its
      warehouse's latest transaction date.
    - Lock ordering: key locks, then transaction-id counters in name order,
      then the audit counter.  Multi-key calls pre-allocate every id before
      writing any row.
    - created_at increases strictly within a warehouse, so replay order is
      well defined even when the clock returns the same instant twice.
    - All-or-nothing: any failure rolls the whole call back (auto_commit),
      or leaves the rollback to the caller.

Failure modes:
    - TransactionValidationError, FutureTransactionDateError,
      PalletConfigurationMissingError (strict policy only)
    - WarehouseNotFoundError, SkuNotFoundError
    - InsufficientInventoryError, BackdatedTransactionError,
      DuplicateTransactionError
    - LockTimeoutError (retryable)

Audit relevance:
    Every committed movement has exactly one TRANSACTION_CREATED audit
    event carrying the balance it changed from and to.  Pallet overrides
    that disagree with the ratio are kept and annotated, never rejected.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from inventory_kernel.domain.balance import (
    DEFAULT_PALLET_RATIO,
    InventoryBalance,
    LedgerKey,
    pallets_for,
)
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import TransactionInput, TransactionType
from inventory_kernel.domain.policy import LedgerPolicy, PalletFallbackPolicy
from inventory_kernel.exceptions import (
    BackdatedTransactionError,
    DuplicateTransactionError,
    FutureTransactionDateError,
    InsufficientInventoryError,
    InventoryKernelError,
    PalletConfigurationMissingError,
    TransactionValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.models.warehouse import Sku, Warehouse
from inventory_kernel.selectors.balance_selector import BalanceSelector
from inventory_kernel.selectors.transaction_selector import TransactionSelector
from inventory_kernel.services.auditor_service import AuditorService
from inventory_kernel.services.lock_service import LedgerLockService
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.services.transaction_store import TransactionStore

logger = get_logger("services.transaction_writer")

T = TypeVar("T")

# Adjustment pallet counts are operator-entered and never annotated.
_ADJUSTMENT_TYPES = frozenset({TransactionType.ADJUST_IN, TransactionType.ADJUST_OUT})


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class _PreparedMovement:
    """A movement that passed every check and only awaits its id."""

    txn: TransactionInput
    key: LedgerKey
    warehouse: Warehouse
    sku: Sku
    before: InventoryBalance
    storage_cartons_per_pallet: int | None
    shipping_cartons_per_pallet: int | None
    units_per_carton: int
    storage_pallets_in: int
    shipping_pallets_out: int
    latest_created_at: datetime | None
    notes: list[str] = field(default_factory=list)


class InventoryTransactionWriter:
    """
    Writes stock movements.

    Contract:
        With auto_commit=True (default) each public call is its own unit of
        work: committed on success, rolled back on any error, and the key
        locks are released either way.  With auto_commit=False the caller
        owns commit / rollback and the locks stay held until it does.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        auto_commit: bool = True,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._auto_commit = auto_commit

        self._store = TransactionStore(session)
        self._transactions = TransactionSelector(session)
        self._balances = BalanceSelector(session, self._clock)
        self._sequences = SequenceService(session)
        self._auditor = AuditorService(session, self._clock)
        self._locks = LedgerLockService(
            session,
            timeout_seconds=self._policy.lock_timeout_seconds,
            poll_interval_seconds=self._policy.lock_poll_interval_seconds,
            backend=self._policy.lock_backend,
        )

    # -----------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------

    def create_transaction(
        self, txn_input: TransactionInput, actor_id: UUID
    ) -> InventoryTransaction:
        """Validate and append one movement."""
        return self._run(
            "create_transaction",
            actor_id,
            lambda: self._write_all([txn_input], actor_id)[0],
        )

    def create_transactions(
        self, inputs: Sequence[TransactionInput], actor_id: UUID
    ) -> list[InventoryTransaction]:
        """
        Validate and append several movements as one unit of work.

        Every item is checked before any row is written; one failure
        rejects the whole submission.  Two items for the same (warehouse,
        SKU, batch) key are rejected outright.
        """
        if not inputs:
            raise TransactionValidationError("At least one item is required", field="items")
        return self._run(
            "create_transactions",
            actor_id,
            lambda: self._write_all(list(inputs), actor_id),
        )

    def adjust_inventory(
        self,
        warehouse_id: UUID,
        sku_id: UUID,
        batch_lot: str | None,
        delta: int,
        transaction_date: date,
        actor_id: UUID,
        reason: str | None = None,
        reference_id: str | None = None,
        pallets: int | None = None,
    ) -> InventoryTransaction:
        """
        Record a signed correction: ADJUST_IN for delta > 0, ADJUST_OUT for
        delta < 0.  ADJUST_OUT is subject to the same availability check as
        a shipment.
        """
        if not _is_int(delta) or delta == 0:
            raise TransactionValidationError(
                "Adjustment delta must be a non-zero integer", field="delta"
            )
        inbound = delta > 0
        txn_input = TransactionInput(
            warehouse_id=warehouse_id,
            sku_id=sku_id,
            transaction_type=TransactionType.ADJUST_IN if inbound else TransactionType.ADJUST_OUT,
            transaction_date=transaction_date,
            cartons_in=delta if inbound else 0,
            cartons_out=0 if inbound else -delta,
            batch_lot=batch_lot,
            storage_pallets_in=pallets if inbound else None,
            shipping_pallets_out=None if inbound else pallets,
            reference_id=reference_id,
            notes=reason,
        )
        return self.create_transaction(txn_input, actor_id)

    def transfer_inventory(
        self,
        source_warehouse_id: UUID,
        destination_warehouse_id: UUID,
        sku_id: UUID,
        batch_lot: str | None,
        cartons: int,
        transaction_date: date,
        actor_id: UUID,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> tuple[InventoryTransaction, InventoryTransaction]:
        """
        Move stock between warehouses: TRANSFER_OUT at the source and
        TRANSFER_IN at the destination in one unit of work.

        The inbound leg carries the source batch's units-per-carton and
        pallet ratios so the stock keeps the ratios it was received under.
        """
        if source_warehouse_id == destination_warehouse_id:
            raise TransactionValidationError(
                "Source and destination warehouses must differ",
                field="destination_warehouse_id",
            )

        def _transfer() -> tuple[InventoryTransaction, InventoryTransaction]:
            lot = self._normalize_batch_lot(batch_lot)
            self._locks.acquire_many(
                [
                    LedgerKey(source_warehouse_id, sku_id, lot).lock_parts(),
                    LedgerKey(destination_warehouse_id, sku_id, lot).lock_parts(),
                ]
            )
            source = self._balances.project(
                source_warehouse_id, sku_id, lot, cutoff=transaction_date
            )
            carried = {"units_per_carton": source.units_per_carton}
            if not source.is_unconfigured:
                carried["storage_cartons_per_pallet"] = source.storage_cartons_per_pallet
            if source.shipping_cartons_per_pallet is not None:
                carried["shipping_cartons_per_pallet"] = source.shipping_cartons_per_pallet

            outbound = TransactionInput(
                warehouse_id=source_warehouse_id,
                sku_id=sku_id,
                transaction_type=TransactionType.TRANSFER_OUT,
                transaction_date=transaction_date,
                cartons_out=cartons,
                batch_lot=lot,
                reference_id=reference_id,
                notes=notes,
            )
            inbound = TransactionInput(
                warehouse_id=destination_warehouse_id,
                sku_id=sku_id,
                transaction_type=TransactionType.TRANSFER_IN,
                transaction_date=transaction_date,
                cartons_in=cartons,
                batch_lot=lot,
                reference_id=reference_id,
                notes=notes,
                **carried,
            )
            out_row, in_row = self._write_all([outbound, inbound], actor_id)
            return out_row, in_row

        return self._run("transfer_inventory", actor_id, _transfer)

    # -----------------------------------------------------------------
    # Unit of work
    # -----------------------------------------------------------------

    def _run(self, operation: str, actor_id: UUID, fn: Callable[[], T]) -> T:
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=str(actor_id)):
            t0 = time.monotonic()
            try:
                result = fn()
                if self._auto_commit:
                    self.session.commit()
            except InventoryKernelError as exc:
                if self._auto_commit:
                    self.session.rollback()
                logger.warning(
                    f"{operation}_rejected",
                    extra={
                        "error_code": exc.code,
                        "error_message": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                f"{operation}_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            return result

    def _write_all(
        self, inputs: list[TransactionInput], actor_id: UUID
    ) -> list[InventoryTransaction]:
        normalized = [self._validate_shape(txn) for txn in inputs]
        keys = [LedgerKey(t.warehouse_id, t.sku_id, t.batch_lot) for t in normalized]
        self._reject_repeated_keys(keys)

        self._locks.acquire_many([key.lock_parts() for key in keys])

        now = self._clock.now()
        self._check_duplicates(normalized, now)
        prepared = [self._prepare(txn, key) for txn, key in zip(normalized, keys)]
        transaction_ids = self._allocate_transaction_ids(prepared)
        created_at = self._first_created_at(prepared, now)

        rows = []
        for offset, (plan, transaction_id) in enumerate(zip(prepared, transaction_ids)):
            row = self._build_row(
                plan, transaction_id, actor_id, created_at + timedelta(microseconds=offset)
            )
            self._store.append(row)
            after = self._balances.project(
                plan.key.warehouse_id,
                plan.key.sku_id,
                plan.key.batch_lot,
                cutoff=plan.txn.transaction_date,
            )
            self._auditor.record_transaction_created(row, plan.before, after)
            rows.append(row)
        return rows

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------

    def _normalize_batch_lot(self, batch_lot: str | None) -> str:
        if batch_lot is None:
            return self._policy.default_batch_lot
        value = str(batch_lot).strip()
        if not value:
            raise TransactionValidationError("Batch/lot must not be blank", field="batch_lot")
        if len(value) > self._policy.max_batch_lot_length:
            raise TransactionValidationError(
                f"Batch/lot exceeds {self._policy.max_batch_lot_length} characters",
                field="batch_lot",
            )
        return value

    def _validate_shape(self, txn: TransactionInput) -> TransactionInput:
        try:
            movement = TransactionType(txn.transaction_type)
        except ValueError as exc:
            raise TransactionValidationError(
                f"Invalid transaction type: {txn.transaction_type!r}",
                field="transaction_type",
            ) from exc

        for name in ("warehouse_id", "sku_id", "transaction_date"):
            if getattr(txn, name) is None:
                raise TransactionValidationError(f"{name} is required", field=name)
        if isinstance(txn.transaction_date, datetime):
            raise TransactionValidationError(
                "transaction_date must be a date, not a datetime",
                field="transaction_date",
            )

        if movement.is_inbound:
            active, idle = "cartons_in", "cartons_out"
            pallet_field, wrong_pallet_field = "storage_pallets_in", "shipping_pallets_out"
        else:
            active, idle = "cartons_out", "cartons_in"
            pallet_field, wrong_pallet_field = "shipping_pallets_out", "storage_pallets_in"

        cartons = getattr(txn, active)
        if not _is_int(cartons) or cartons <= 0:
            raise TransactionValidationError(
                f"Cartons must be a positive integer, got {cartons!r}", field=active
            )
        if cartons > self._policy.max_cartons:
            raise TransactionValidationError(
                f"Cartons value too large. Maximum allowed: {self._policy.max_cartons:,}",
                field=active,
            )
        if getattr(txn, idle) not in (0, None):
            raise TransactionValidationError(
                f"{idle} must be 0 for {movement.value}", field=idle
            )

        pallets = getattr(txn, pallet_field)
        if pallets is not None and (
            not _is_int(pallets) or pallets < 0 or pallets > self._policy.max_pallets
        ):
            raise TransactionValidationError(
                f"Pallets must be integers between 0 and {self._policy.max_pallets:,}",
                field=pallet_field,
            )
        if getattr(txn, wrong_pallet_field) not in (0, None):
            raise TransactionValidationError(
                f"{wrong_pallet_field} must be empty for {movement.value}",
                field=wrong_pallet_field,
            )

        for name in (
            "storage_cartons_per_pallet",
            "shipping_cartons_per_pallet",
            "units_per_carton",
        ):
            value = getattr(txn, name)
            if value is not None and (not _is_int(value) or value <= 0):
                raise TransactionValidationError(
                    f"{name} must be a positive integer", field=name
                )

        return txn.with_changes(
            transaction_type=movement,
            batch_lot=self._normalize_batch_lot(txn.batch_lot),
            **{idle: 0},
        )

    @staticmethod
    def _reject_repeated_keys(keys: list[LedgerKey]) -> None:
        seen: set[LedgerKey] = set()
        for key in keys:
            if key in seen:
                raise TransactionValidationError(
                    f"Duplicate SKU/batch combination found: {key.sku_id} - {key.batch_lot}",
                    field="items",
                )
            seen.add(key)

    def _check_duplicates(self, txns: list[TransactionInput], now: datetime) -> None:
        window = self._policy.duplicate_window_seconds
        if window <= 0:
            return
        since = now - timedelta(seconds=window)
        checked: set[tuple[UUID, str, TransactionType]] = set()
        for txn in txns:
            if not txn.reference_id:
                continue
            signature = (txn.warehouse_id, txn.reference_id, txn.movement_type)
            if signature in checked:
                continue
            checked.add(signature)
            existing = self._transactions.find_recent_duplicate(
                txn.warehouse_id, txn.reference_id, txn.movement_type, since
            )
            if existing is not None:
                raise DuplicateTransactionError(
                    reference_id=txn.reference_id,
                    transaction_type=txn.movement_type.value,
                    existing_transaction_id=existing.transaction_id,
                    window_seconds=window,
                )

    # -----------------------------------------------------------------
    # Preparation
    # -----------------------------------------------------------------

    def _prepare(self, txn: TransactionInput, key: LedgerKey) -> _PreparedMovement:
        today = self._clock.today()
        if txn.transaction_date > today:
            raise FutureTransactionDateError(txn.transaction_date, today)

        latest = self._transactions.latest_for_warehouse(txn.warehouse_id)
        if latest is not None and txn.transaction_date < latest.transaction_date:
            raise BackdatedTransactionError(
                attempted_date=txn.transaction_date,
                last_transaction_date=latest.transaction_date,
                last_transaction_id=latest.transaction_id,
            )

        warehouse = self._balances.get_warehouse(txn.warehouse_id)
        sku = self._balances.get_sku(txn.sku_id)

        # Backdating is banned, so the balance as of the movement date is
        # the key's whole history.
        before = self._balances.project(
            key.warehouse_id, key.sku_id, key.batch_lot, cutoff=txn.transaction_date
        )
        if txn.movement_type.is_outbound and txn.cartons > before.current_cartons:
            raise InsufficientInventoryError(
                available=before.current_cartons,
                requested=txn.cartons,
                sku_code=sku.sku_code,
                batch_lot=key.batch_lot,
            )

        storage_ratio, shipping_ratio = self._resolve_ratios(txn, before, warehouse, sku)
        notes: list[str] = []
        storage_pallets_in, shipping_pallets_out = self._compute_pallets(
            txn, storage_ratio, shipping_ratio, notes
        )

        return _PreparedMovement(
            txn=txn,
            key=key,
            warehouse=warehouse,
            sku=sku,
            before=before,
            storage_cartons_per_pallet=storage_ratio,
            shipping_cartons_per_pallet=shipping_ratio,
            units_per_carton=txn.units_per_carton or sku.units_per_carton,
            storage_pallets_in=storage_pallets_in,
            shipping_pallets_out=shipping_pallets_out,
            latest_created_at=latest.created_at if latest is not None else None,
            notes=notes,
        )

    def _resolve_ratios(
        self,
        txn: TransactionInput,
        before: InventoryBalance,
        warehouse: Warehouse,
        sku: Sku,
    ) -> tuple[int | None, int | None]:
        """
        Ratios to capture, explicit input first.

        Inbound movements then take the configuration in force on the
        movement date.  Outbound movements take the ratios the key's stock
        was recorded under.  The 1:1 fallback is never captured.
        """
        storage = txn.storage_cartons_per_pallet
        shipping = txn.shipping_cartons_per_pallet
        if txn.movement_type.is_inbound:
            configuration = self._balances.effective_configuration(
                warehouse.id, sku.id, txn.transaction_date
            )
            if configuration is not None:
                if storage is None:
                    storage = configuration.storage_cartons_per_pallet
                if shipping is None:
                    shipping = configuration.shipping_cartons_per_pallet
        else:
            if storage is None and not before.is_unconfigured:
                storage = before.storage_cartons_per_pallet
            if shipping is None:
                shipping = before.shipping_cartons_per_pallet

        needed = storage if txn.movement_type.is_inbound else (shipping or storage)
        if needed is None and self._policy.pallet_fallback is PalletFallbackPolicy.STRICT:
            raise PalletConfigurationMissingError(
                warehouse_code=warehouse.code,
                sku_code=sku.sku_code,
                as_of=txn.transaction_date,
            )
        return storage, shipping

    @staticmethod
    def _compute_pallets(
        txn: TransactionInput,
        storage_ratio: int | None,
        shipping_ratio: int | None,
        notes: list[str],
    ) -> tuple[int, int]:
        movement = txn.movement_type
        cartons = txn.cartons
        if movement.is_inbound:
            label, ratio, override = "Storage", storage_ratio, txn.storage_pallets_in
        else:
            label, ratio, override = "Shipping", shipping_ratio or storage_ratio, txn.shipping_pallets_out

        if ratio is None:
            ratio = DEFAULT_PALLET_RATIO
            notes.append(
                f"No pallet configuration: {label.lower()} pallets calculated "
                f"at {DEFAULT_PALLET_RATIO} carton/pallet"
            )

        calculated = pallets_for(cartons, ratio)
        if override is None:
            pallets = calculated
        else:
            pallets = override
            if override != calculated and movement not in _ADJUSTMENT_TYPES:
                notes.append(
                    f"{label} pallet variance: Actual {override}, Calculated {calculated} "
                    f"({cartons} cartons @ {ratio}/pallet)"
                )

        if movement.is_inbound:
            return pallets, 0
        return 0, pallets

    def _allocate_transaction_ids(self, prepared: list[_PreparedMovement]) -> list[str]:
        """Ids for every movement, drawing counters in name order."""
        names = [
            SequenceService.transaction_sequence_name(
                plan.warehouse.code, plan.txn.transaction_date.strftime("%Y%m%d")
            )
            for plan in prepared
        ]
        transaction_ids: list[str] = [""] * len(prepared)
        for index in sorted(range(len(prepared)), key=lambda i: names[i]):
            plan = prepared[index]
            seq = self._sequences.next_value(names[index])
            transaction_ids[index] = (
                f"{plan.warehouse.code}-{plan.txn.movement_type.value[:3]}-"
                f"{plan.txn.transaction_date:%Y%m%d}-{seq:03d}"
            )
        return transaction_ids

    @staticmethod
    def _first_created_at(prepared: list[_PreparedMovement], now: datetime) -> datetime:
        floor = max(
            (plan.latest_created_at for plan in prepared if plan.latest_created_at is not None),
            default=None,
        )
        if floor is not None and floor >= now:
            return floor + timedelta(microseconds=1)
        return now

    @staticmethod
    def _build_row(
        plan: _PreparedMovement,
        transaction_id: str,
        actor_id: UUID,
        created_at: datetime,
    ) -> InventoryTransaction:
        txn = plan.txn
        attachments = [dict(attachment) for attachment in txn.attachments]
        if txn.notes:
            attachments.append({"type": "notes", "content": txn.notes})

        return InventoryTransaction(
            transaction_id=transaction_id,
            warehouse_id=plan.key.warehouse_id,
            sku_id=plan.key.sku_id,
            batch_lot=plan.key.batch_lot,
            transaction_type=txn.movement_type.value,
            cartons_in=txn.cartons_in,
            cartons_out=txn.cartons_out,
            storage_pallets_in=plan.storage_pallets_in,
            shipping_pallets_out=plan.shipping_pallets_out,
            storage_cartons_per_pallet=plan.storage_cartons_per_pallet,
            shipping_cartons_per_pallet=plan.shipping_cartons_per_pallet,
            units_per_carton=plan.units_per_carton,
            transaction_date=txn.transaction_date,
            created_at=created_at,
            pickup_date=txn.pickup_date or txn.transaction_date,
            created_by_id=actor_id,
            reference_id=txn.reference_id,
            tracking_number=txn.tracking_number,
            ship_name=txn.ship_name,
            mode_of_transportation=txn.mode_of_transportation,
            supplier=txn.supplier,
            pallet_variance_notes="; ".join(plan.notes) or None,
            attachments=attachments or None,
        )
