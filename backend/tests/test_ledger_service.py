from datetime import datetime, timedelta

import pytest

from warehouse.extensions import db
from warehouse.models import LedgerRecord
from warehouse.models.ledger import ACTION_CHECK_IN, ACTION_MOVE, ACTION_CHECK_OUT
from warehouse.services import ledger_service, pallet_service
from warehouse.services.concurrency import unit_of_work
from warehouse.services.ledger_service import Actor


def _append(**overrides):
    values = dict(
        pallet_id="P1",
        customer_name="Acme",
        product_id="SKU-1",
        action=ACTION_CHECK_IN,
        quantity_changed=2,
        quantity_before=0,
        quantity_after=2,
        location="A1",
        actor=Actor(),
    )
    values.update(overrides)
    with unit_of_work():
        record = ledger_service.append_record(**values)
    return record


def test_append_assigns_increasing_sequence(db_session):
    first = _append()
    second = _append(action=ACTION_MOVE, quantity_changed=0, location="A2")

    assert first.sequence_id is not None
    assert second.sequence_id > first.sequence_id
    assert db_session.query(LedgerRecord).count() == 2


def test_actor_defaults_and_cleaning():
    actor = Actor.from_values(scanned_by="  Sam  ", actor_id="", client_session_id=None)

    assert actor.scanned_by == "Sam"
    assert actor.actor_id == "anonymous"
    assert actor.client_session_id == "unknown"


def test_records_are_append_only(db_session):
    record = _append()

    record.notes = "edited"
    with pytest.raises(RuntimeError):
        db_session.flush()
    db_session.rollback()

    record = db_session.get(LedgerRecord, record.sequence_id)
    db_session.delete(record)
    with pytest.raises(RuntimeError):
        db_session.flush()
    db_session.rollback()

    assert db_session.query(LedgerRecord).count() == 1


def test_timestamps_never_go_backwards(db_session, clock):
    late = _append()
    clock.advance(hours=-3)
    earlier_clock = _append(action=ACTION_CHECK_OUT, quantity_changed=2, quantity_after=0)

    assert earlier_clock.timestamp >= late.timestamp


def test_records_for_customer_orders_by_timestamp_then_sequence(db_session, clock):
    a = _append(pallet_id="P1")
    b = _append(pallet_id="P2")
    clock.advance(days=1)
    c = _append(pallet_id="P3")
    _append(pallet_id="X", customer_name="Other")

    records = ledger_service.records_for_customer("Acme", clock.now)
    assert [r.sequence_id for r in records] == [a.sequence_id, b.sequence_id, c.sequence_id]

    cutoff = clock.now - timedelta(hours=1)
    assert [r.pallet_id for r in ledger_service.records_for_customer("Acme", cutoff)] == ["P1", "P2"]


def test_find_by_idempotency_key(db_session):
    _append(idempotency_key="scan-1")

    assert ledger_service.find_by_idempotency_key("scan-1").pallet_id == "P1"
    assert ledger_service.find_by_idempotency_key("scan-2") is None
    assert ledger_service.find_by_idempotency_key(None) is None


def test_idempotency_key_is_unique(db_session):
    from sqlalchemy.exc import IntegrityError

    _append(idempotency_key="scan-1")
    with pytest.raises(IntegrityError):
        _append(pallet_id="P9", idempotency_key="scan-1")
    assert db_session.query(LedgerRecord).count() == 1


def test_find_recent_duplicate_respects_window(db_session, clock):
    _append()

    kwargs = dict(pallet_id="P1", action=ACTION_CHECK_IN, location="A1", quantity_changed=2)
    assert ledger_service.find_recent_duplicate(window_seconds=4, **kwargs) is not None
    assert ledger_service.find_recent_duplicate(window_seconds=0, **kwargs) is None
    assert ledger_service.find_recent_duplicate(
        window_seconds=4, pallet_id="P1", action=ACTION_CHECK_IN, location="A2", quantity_changed=2
    ) is None

    clock.advance(seconds=5)
    assert ledger_service.find_recent_duplicate(window_seconds=4, **kwargs) is None


def test_sum_quantity_changed_inclusive_bounds(db_session, clock):
    clock.set(datetime(2024, 1, 1, 0, 0, 0))
    _append(pallet_id="P1", quantity_changed=2)
    clock.set(datetime(2024, 1, 2, 12, 0, 0))
    _append(pallet_id="P2", quantity_changed=3)
    _append(pallet_id="P2", action=ACTION_CHECK_OUT, quantity_changed=3, quantity_after=0)

    total = ledger_service.sum_quantity_changed(
        "Acme", ACTION_CHECK_IN, datetime(2024, 1, 1), datetime(2024, 1, 2, 23, 59, 59)
    )
    assert total == 5
    assert ledger_service.sum_quantity_changed(
        "Acme", ACTION_CHECK_IN, datetime(2024, 1, 3), datetime(2024, 1, 4)
    ) == 0


def test_current_pallet_prefers_active_row(db_session, locations, clock):
    pallet_service.check_in(pallet_id="P1", customer_name="Acme", product_id="SKU-1", location="A1")
    pallet_service.check_out("P1")
    clock.advance(minutes=1)
    pallet_service.check_in(pallet_id="P1", customer_name="Acme", product_id="SKU-1", location="A2")

    current = ledger_service.current_pallet("P1")
    assert current.status == "active"
    assert current.location == "A2"
    assert ledger_service.current_pallet("missing") is None


def test_list_records_newest_first_with_filters(db_session):
    _append(pallet_id="P1")
    _append(pallet_id="P2")
    _append(pallet_id="P1", action=ACTION_MOVE, quantity_changed=0, location="A2")

    records = ledger_service.list_records(pallet_id="P1")
    assert [r.action for r in records] == [ACTION_MOVE, ACTION_CHECK_IN]
    assert len(ledger_service.list_records(action=ACTION_CHECK_IN)) == 2
    assert len(ledger_service.list_records(limit=1)) == 1
    assert db.session.query(LedgerRecord).count() == 3
