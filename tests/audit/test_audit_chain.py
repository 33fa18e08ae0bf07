"""
Hash-chained audit trail.

Every ledger write and reconciliation step appends an AuditEvent whose hash
covers its payload and its predecessor's hash.  validate_chain() recomputes
the whole chain and reports the first break.
"""

import pytest
from sqlalchemy import func, select, update

from inventory_kernel.db.engine import get_engine
from inventory_kernel.db.triggers import (
    install_immutability_triggers,
    uninstall_immutability_triggers,
)
from inventory_kernel.exceptions import AuditChainBrokenError, InsufficientInventoryError
from inventory_kernel.models.audit_event import AuditAction, AuditEvent
from inventory_kernel.services.auditor_service import AuditorService
from inventory_kernel.utils.hashing import hash_audit_event, hash_payload


@pytest.fixture
def auditor(session, clock):
    return AuditorService(session, clock)


@pytest.fixture
def history(configured, receive, ship):
    warehouse, sku = configured
    receive(warehouse, sku, 50)
    ship(warehouse, sku, 20)
    receive(warehouse, sku, 5, batch_lot="LOT-B")


@pytest.fixture
def triggers_lifted(db_engine):
    """Drop the database triggers so a test can simulate direct tampering."""
    uninstall_immutability_triggers(get_engine())
    yield
    install_immutability_triggers(get_engine())


def _events(session) -> list[AuditEvent]:
    return list(session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars())


class TestChainStructure:
    def test_events_link_to_their_predecessor(self, session, auditor, history):
        events = _events(session)
        assert [e.seq for e in events] == [1, 2, 3]
        assert events[0].prev_hash is None
        assert events[0].is_genesis and not events[1].is_genesis
        for previous, current in zip(events, events[1:]):
            assert current.prev_hash == previous.hash

    def test_hash_covers_payload_and_predecessor(self, session, history):
        event = _events(session)[1]
        assert event.payload_hash == hash_payload(event.payload)
        assert event.hash == hash_audit_event(
            entity_type=event.entity_type,
            entity_id=str(event.entity_id),
            action=event.action,
            payload_hash=event.payload_hash,
            prev_hash=event.prev_hash,
        )

    def test_validate_chain_accepts_an_untouched_trail(self, auditor, history):
        assert auditor.validate_chain()

    def test_empty_chain_is_valid(self, auditor, db_engine):
        assert auditor.validate_chain()

    def test_ship_payload_records_balance_change(self, session, history):
        ship_event = _events(session)[1]
        assert ship_event.action == AuditAction.TRANSACTION_CREATED.value
        assert ship_event.payload["transaction_type"] == "SHIP"
        assert ship_event.payload["before"] == {"cartons": 50, "pallets": 5, "units": 600}
        assert ship_event.payload["after"] == {"cartons": 30, "pallets": 3, "units": 360}

    def test_rejected_write_leaves_no_event(self, session, configured, ship, history):
        warehouse, sku = configured
        with pytest.raises(InsufficientInventoryError):
            ship(warehouse, sku, 1000)
        assert session.execute(select(func.count(AuditEvent.id))).scalar_one() == 3


class TestTamperDetection:
    def test_rewritten_payload_breaks_the_chain(
        self, session, auditor, history, triggers_lifted
    ):
        target = _events(session)[1]
        session.execute(
            update(AuditEvent)
            .where(AuditEvent.id == target.id)
            .values(payload={"cartons_out": 1})
            .execution_options(synchronize_session=False)
        )
        session.commit()
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor.validate_chain()
        assert exc_info.value.audit_event_id == str(target.id)
        assert exc_info.value.code == "AUDIT_CHAIN_BROKEN"

    def test_relinked_event_breaks_the_chain(self, session, auditor, history, triggers_lifted):
        target = _events(session)[2]
        session.execute(
            update(AuditEvent)
            .where(AuditEvent.id == target.id)
            .values(prev_hash="0" * 64)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor.validate_chain()
        assert exc_info.value.actual_hash == "0" * 64
