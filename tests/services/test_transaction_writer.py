"""
InventoryTransactionWriter: the validate -> lock -> check -> append -> audit
pipeline for single movements.

Covers transaction id format, pallet computation and variance notes,
captured ratios, availability, duplicate / future / backdated rejection,
shape validation and the audit entry written with every movement.
"""

from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from inventory_kernel.domain.dtos import TransactionInput, TransactionType
from inventory_kernel.domain.policy import LedgerPolicy, PalletFallbackPolicy
from inventory_kernel.exceptions import (
    BackdatedTransactionError,
    DuplicateTransactionError,
    FutureTransactionDateError,
    InsufficientInventoryError,
    PalletConfigurationMissingError,
    SkuNotFoundError,
    TransactionValidationError,
    WarehouseNotFoundError,
)
from inventory_kernel.models.audit_event import AuditAction
from inventory_kernel.models.inventory_transaction import InventoryTransaction
from inventory_kernel.selectors.balance_selector import BalanceSelector
from inventory_kernel.services.auditor_service import AuditorService
from inventory_kernel.services.transaction_writer import InventoryTransactionWriter
from tests.conftest import TODAY, make_input


def _row_count(session) -> int:
    return session.execute(select(func.count(InventoryTransaction.id))).scalar_one()


def _balance(session, clock, warehouse, sku, batch_lot="LOT-A"):
    return BalanceSelector(session, clock).project(warehouse.id, sku.id, batch_lot)


class TestReceiveAndShip:
    def test_receive_assigns_id_and_captures_ratios(self, configured, receive):
        warehouse, sku = configured
        row = receive(warehouse, sku, 95)

        assert row.transaction_id == "WH1-REC-20240315-001"
        assert row.movement_type is TransactionType.RECEIVE
        assert row.storage_pallets_in == 10
        assert row.shipping_pallets_out == 0
        assert row.storage_cartons_per_pallet == 10
        assert row.shipping_cartons_per_pallet == 20
        assert row.units_per_carton == 12
        assert row.pickup_date == TODAY
        assert row.pallet_variance_notes is None

    def test_sequence_is_per_warehouse_per_day_across_types(
        self, configured, create_warehouse, receive, ship
    ):
        warehouse, sku = configured
        other = create_warehouse("WH2")
        first = receive(warehouse, sku, 100)
        second = ship(warehouse, sku, 30)
        elsewhere = receive(other, sku, 5)

        assert first.transaction_id == "WH1-REC-20240315-001"
        assert second.transaction_id == "WH1-SHI-20240315-002"
        assert elsewhere.transaction_id == "WH2-REC-20240315-001"

    def test_ship_computes_shipping_pallets(self, session, clock, configured, receive, ship):
        warehouse, sku = configured
        receive(warehouse, sku, 100)
        row = ship(warehouse, sku, 30)

        assert row.cartons_out == 30
        assert row.shipping_pallets_out == 2
        assert row.storage_pallets_in == 0
        balance = _balance(session, clock, warehouse, sku)
        assert balance.current_cartons == 70
        assert balance.current_units == 840
        assert balance.current_pallets == 7

    def test_ship_more_than_available_is_rejected(self, session, configured, receive, ship):
        warehouse, sku = configured
        receive(warehouse, sku, 10)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            ship(warehouse, sku, 11)

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert _row_count(session) == 1

    def test_ship_from_empty_key_is_rejected(self, configured, ship):
        warehouse, sku = configured
        with pytest.raises(InsufficientInventoryError) as exc_info:
            ship(warehouse, sku, 1)
        assert exc_info.value.available == 0

    def test_batches_are_separate_balances(self, configured, receive, ship):
        warehouse, sku = configured
        receive(warehouse, sku, 50, batch_lot="LOT-A")
        with pytest.raises(InsufficientInventoryError):
            ship(warehouse, sku, 5, batch_lot="LOT-B")

    def test_missing_batch_lot_uses_sentinel(self, configured, receive):
        warehouse, sku = configured
        row = receive(warehouse, sku, 5, batch_lot=None)
        assert row.batch_lot == "NONE"

    def test_batch_lot_is_trimmed(self, configured, receive):
        warehouse, sku = configured
        row = receive(warehouse, sku, 5, batch_lot="  LOT-7  ")
        assert row.batch_lot == "LOT-7"

    def test_optional_fields_and_notes_are_kept(self, configured, receive):
        warehouse, sku = configured
        row = receive(
            warehouse, sku, 20,
            reference_id="PO-100",
            tracking_number="TRK-1",
            ship_name="MV Example",
            mode_of_transportation="SEA",
            supplier="Acme",
            pickup_date=date(2024, 3, 14),
            notes="Two cartons dented",
            attachments=({"type": "packing_list", "name": "pl.pdf"},),
        )
        assert row.reference_id == "PO-100"
        assert row.supplier == "Acme"
        assert row.pickup_date == date(2024, 3, 14)
        assert row.attachments == [
            {"type": "packing_list", "name": "pl.pdf"},
            {"type": "notes", "content": "Two cartons dented"},
        ]


class TestPallets:
    def test_pallet_override_matching_ratio_has_no_note(self, configured, receive):
        warehouse, sku = configured
        row = receive(warehouse, sku, 100, storage_pallets_in=10)
        assert row.pallet_variance_notes is None

    def test_pallet_override_variance_is_annotated(self, configured, receive):
        warehouse, sku = configured
        row = receive(warehouse, sku, 100, storage_pallets_in=12)

        assert row.storage_pallets_in == 12
        assert row.pallet_variance_notes == (
            "Storage pallet variance: Actual 12, Calculated 10 (100 cartons @ 10/pallet)"
        )

    def test_shipping_variance_is_annotated(self, configured, receive, ship):
        warehouse, sku = configured
        receive(warehouse, sku, 100)
        row = ship(warehouse, sku, 45, shipping_pallets_out=2)
        assert row.pallet_variance_notes == (
            "Shipping pallet variance: Actual 2, Calculated 3 (45 cartons @ 20/pallet)"
        )

    def test_explicit_ratio_is_captured(self, configured, receive):
        warehouse, sku = configured
        row = receive(warehouse, sku, 100, storage_cartons_per_pallet=25)
        assert row.storage_cartons_per_pallet == 25
        assert row.storage_pallets_in == 4

    def test_unconfigured_key_falls_back_and_is_flagged(
        self, session, clock, warehouse, sku, receive
    ):
        row = receive(warehouse, sku, 7)

        assert row.storage_pallets_in == 7
        assert row.storage_cartons_per_pallet is None
        assert row.pallet_variance_notes == (
            "No pallet configuration: storage pallets calculated at 1 carton/pallet"
        )
        assert _balance(session, clock, warehouse, sku).is_unconfigured

    def test_strict_policy_rejects_unconfigured_key(
        self, session, clock, warehouse, sku, test_actor_id
    ):
        strict = InventoryTransactionWriter(
            session, clock=clock,
            policy=LedgerPolicy(pallet_fallback=PalletFallbackPolicy.STRICT),
        )
        with pytest.raises(PalletConfigurationMissingError) as exc_info:
            strict.create_transaction(
                make_input(warehouse, sku, TransactionType.RECEIVE, 7), test_actor_id
            )
        assert exc_info.value.warehouse_code == "WH1"
        assert exc_info.value.sku_code == "SKU-001"
        assert _row_count(session) == 0

    def test_receipt_captures_configuration_in_force_on_its_date(
        self, session, clock, configured, create_config, receive
    ):
        warehouse, sku = configured
        earlier = receive(warehouse, sku, 100, transaction_date=date(2024, 3, 1))
        create_config(warehouse, sku, storage=40, shipping=40, effective_date=date(2024, 3, 10))

        row = receive(warehouse, sku, 100)
        session.expire_all()
        balance = _balance(session, clock, warehouse, sku)

        assert row.storage_cartons_per_pallet == 40
        assert row.shipping_cartons_per_pallet == 40
        assert row.storage_pallets_in == 3
        assert earlier.storage_cartons_per_pallet == 10
        assert earlier.storage_pallets_in == 10
        assert balance.storage_cartons_per_pallet == 40
        assert balance.current_pallets == 5

    def test_shipment_uses_the_ratio_its_stock_was_recorded_under(
        self, session, configured, create_config, receive, ship
    ):
        warehouse, sku = configured
        receive(warehouse, sku, 100, transaction_date=date(2024, 3, 1))
        create_config(warehouse, sku, storage=40, shipping=50, effective_date=date(2024, 3, 10))

        row = ship(warehouse, sku, 45)
        assert row.shipping_cartons_per_pallet == 20
        assert row.shipping_pallets_out == 3

    def test_units_per_carton_is_captured_from_the_sku_master(
        self, session, clock, configured, receive
    ):
        warehouse, sku = configured
        first = receive(warehouse, sku, 10)
        assert _balance(session, clock, warehouse, sku).current_units == 120

        sku.units_per_carton = 24
        session.commit()
        second = receive(warehouse, sku, 10)

        assert second.units_per_carton == 24
        assert first.units_per_carton == 12
        # The fold applies the latest captured value to the whole key.
        assert _balance(session, clock, warehouse, sku).current_units == 20 * 24


class TestTemporalRules:
    def test_future_date_is_rejected(self, configured, receive):
        warehouse, sku = configured
        with pytest.raises(FutureTransactionDateError):
            receive(warehouse, sku, 10, transaction_date=TODAY + timedelta(days=1))

    def test_backdated_movement_is_rejected(self, configured, receive):
        warehouse, sku = configured
        latest = receive(warehouse, sku, 10)

        with pytest.raises(BackdatedTransactionError) as exc_info:
            receive(warehouse, sku, 10, transaction_date=TODAY - timedelta(days=1))

        assert exc_info.value.last_transaction_date == TODAY
        assert exc_info.value.last_transaction_id == latest.transaction_id

    def test_backdating_is_checked_across_the_warehouse(
        self, configured, create_sku, receive
    ):
        warehouse, sku = configured
        receive(warehouse, sku, 10)
        other_sku = create_sku("SKU-002")
        with pytest.raises(BackdatedTransactionError):
            receive(warehouse, other_sku, 10, transaction_date=TODAY - timedelta(days=2))

    def test_same_day_movements_are_allowed(self, configured, receive):
        warehouse, sku = configured
        receive(warehouse, sku, 10)
        receive(warehouse, sku, 10)

    def test_created_at_strictly_increases_within_a_warehouse(self, configured, receive):
        warehouse, sku = configured
        first = receive(warehouse, sku, 10)
        second = receive(warehouse, sku, 10)
        assert second.created_at > first.created_at


class TestDuplicateSubmission:
    def test_same_reference_within_window_is_rejected(self, clock, configured, receive):
        warehouse, sku = configured
        first = receive(warehouse, sku, 10, reference_id="PO-1")
        clock.advance(30)

        with pytest.raises(DuplicateTransactionError) as exc_info:
            receive(warehouse, sku, 10, reference_id="PO-1")
        assert exc_info.value.existing_transaction_id == first.transaction_id

    def test_same_reference_after_window_is_accepted(self, clock, configured, receive):
        warehouse, sku = configured
        receive(warehouse, sku, 10, reference_id="PO-1")
        clock.advance(61)
        receive(warehouse, sku, 10, reference_id="PO-1")

    def test_same_reference_different_type_is_accepted(self, configured, receive, ship):
        warehouse, sku = configured
        receive(warehouse, sku, 10, reference_id="ORD-9")
        ship(warehouse, sku, 5, reference_id="ORD-9")

    def test_window_of_zero_disables_the_check(
        self, session, clock, configured, test_actor_id
    ):
        warehouse, sku = configured
        writer = InventoryTransactionWriter(
            session, clock=clock, policy=LedgerPolicy(duplicate_window_seconds=0)
        )
        for _ in range(2):
            writer.create_transaction(
                make_input(warehouse, sku, TransactionType.RECEIVE, 5, reference_id="PO-1"),
                test_actor_id,
            )


class TestShapeValidation:
    @pytest.mark.parametrize(
        "changes, field",
        [
            ({"cartons_in": 0}, "cartons_in"),
            ({"cartons_in": -4}, "cartons_in"),
            ({"cartons_in": True}, "cartons_in"),
            ({"cartons_in": 2.5}, "cartons_in"),
            ({"cartons_out": 3}, "cartons_out"),
            ({"storage_pallets_in": -1}, "storage_pallets_in"),
            ({"storage_pallets_in": 10_000}, "storage_pallets_in"),
            ({"shipping_pallets_out": 2}, "shipping_pallets_out"),
            ({"storage_cartons_per_pallet": 0}, "storage_cartons_per_pallet"),
            ({"units_per_carton": -12}, "units_per_carton"),
            ({"batch_lot": "   "}, "batch_lot"),
            ({"batch_lot": "L" * 101}, "batch_lot"),
            ({"transaction_date": datetime(2024, 3, 15, 9, 0)}, "transaction_date"),
            ({"transaction_type": "BOGUS"}, "transaction_type"),
        ],
    )
    def test_invalid_receive_is_rejected(
        self, session, writer, configured, test_actor_id, changes, field
    ):
        warehouse, sku = configured
        txn = make_input(warehouse, sku, TransactionType.RECEIVE, 10).with_changes(**changes)

        with pytest.raises(TransactionValidationError) as exc_info:
            writer.create_transaction(txn, test_actor_id)

        assert exc_info.value.field == field
        assert _row_count(session) == 0

    def test_carton_ceiling_message(self, writer, configured, test_actor_id):
        warehouse, sku = configured
        with pytest.raises(TransactionValidationError) as exc_info:
            writer.create_transaction(
                make_input(warehouse, sku, TransactionType.RECEIVE, 100_000), test_actor_id
            )
        assert str(exc_info.value) == "Cartons value too large. Maximum allowed: 99,999"

    def test_validation_error_is_not_retryable(self, writer, configured, test_actor_id):
        warehouse, sku = configured
        with pytest.raises(TransactionValidationError) as exc_info:
            writer.create_transaction(
                make_input(warehouse, sku, TransactionType.RECEIVE, 0), test_actor_id
            )
        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.http_status == 400
        assert exc_info.value.retryable is False

    def test_unknown_warehouse(self, writer, sku, test_actor_id):
        txn = TransactionInput(
            warehouse_id=uuid4(), sku_id=sku.id,
            transaction_type=TransactionType.RECEIVE,
            transaction_date=TODAY, cartons_in=1,
        )
        with pytest.raises(WarehouseNotFoundError):
            writer.create_transaction(txn, test_actor_id)

    def test_unknown_sku(self, writer, warehouse, test_actor_id):
        txn = TransactionInput(
            warehouse_id=warehouse.id, sku_id=uuid4(),
            transaction_type=TransactionType.RECEIVE,
            transaction_date=TODAY, cartons_in=1,
        )
        with pytest.raises(SkuNotFoundError):
            writer.create_transaction(txn, test_actor_id)


class TestAuditAndLogging:
    def test_movement_is_audited_with_before_and_after(self, session, configured, receive, ship):
        warehouse, sku = configured
        receive(warehouse, sku, 100)
        row = ship(warehouse, sku, 40)

        trail = AuditorService(session).get_trail("InventoryTransaction", row.id)
        assert len(trail) == 1
        event = trail[0]
        assert event.action == AuditAction.TRANSACTION_CREATED.value
        assert event.payload["transaction_id"] == row.transaction_id
        assert event.payload["before"]["cartons"] == 100
        assert event.payload["after"]["cartons"] == 60
        assert AuditorService(session).validate_chain() is True

    def test_rejection_is_logged_with_error_code(self, captured_logs, configured, ship):
        warehouse, sku = configured
        with pytest.raises(InsufficientInventoryError):
            ship(warehouse, sku, 5)

        rejected = [r for r in captured_logs() if r["message"] == "create_transaction_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["error_code"] == "INSUFFICIENT_INVENTORY"
        assert "correlation_id" in rejected[0]

    def test_success_is_logged(self, captured_logs, configured, receive):
        warehouse, sku = configured
        receive(warehouse, sku, 5)
        messages = [r["message"] for r in captured_logs()]
        assert "transaction_appended" in messages
        assert "create_transaction_completed" in messages
