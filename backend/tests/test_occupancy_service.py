from datetime import date, datetime
from decimal import Decimal

import pytest

from warehouse.services import pallet_service
from warehouse.services.occupancy_service import compute_occupancy
from warehouse.validation import ValidationError


def _check_in(pallet_id, location="FLOOR", pallet_quantity=1, customer_name="Acme", **kwargs):
    return pallet_service.check_in(
        pallet_id=pallet_id,
        customer_name=customer_name,
        product_id="SKU-1",
        location=location,
        pallet_quantity=pallet_quantity,
        **kwargs,
    )


def test_single_day_check_in_counts_pallets(db_session, locations, clock):
    clock.set(datetime(2024, 3, 4, 8, 0))
    _check_in("P1", "A1", pallet_quantity=2, product_quantity=5)

    result = compute_occupancy("Acme", "2024-03-04", "2024-03-04")
    assert result.pallet_days == 2
    assert result.days_in_range == 1
    assert result.handled_pallets == 2


def test_day_occupancy_is_end_of_day_state(db_session, locations, clock):
    clock.set(datetime(2024, 3, 4, 8, 0))
    _check_in("P1", "A1", pallet_quantity=2)
    clock.set(datetime(2024, 3, 5, 0, 0, 0))
    pallet_service.check_out("P1")

    # check-out after the 03-04 cutoff does not touch that day
    assert compute_occupancy("Acme", "2024-03-04", "2024-03-04").pallet_days == 2
    assert compute_occupancy("Acme", "2024-03-04", "2024-03-05").pallet_days == 2


def test_same_day_check_out_is_inside_cutoff(db_session, locations, clock):
    clock.set(datetime(2024, 3, 4, 8, 0))
    _check_in("P1", "A1", pallet_quantity=2)
    clock.set(datetime(2024, 3, 4, 23, 59, 59))
    pallet_service.check_out("P1")

    result = compute_occupancy("Acme", "2024-03-04", "2024-03-04")
    assert result.pallet_days == 0
    # still handled inside the range
    assert result.handled_pallets == 2


def test_partial_remove_and_units_remove_semantics(db_session, locations, clock):
    clock.set(datetime(2024, 3, 1, 9, 0))
    _check_in("P1", "FLOOR", pallet_quantity=3)
    _check_in("P2", "FLOOR", pallet_quantity=1, product_quantity=4)

    clock.set(datetime(2024, 3, 2, 9, 0))
    pallet_service.remove_quantity("P1", quantity_to_remove=1)
    pallet_service.remove_units("P2", units_to_remove=2)

    clock.set(datetime(2024, 3, 3, 9, 0))
    pallet_service.remove_units("P2", units_to_remove=2)

    # units removal never changes slot occupancy
    result = compute_occupancy("Acme", "2024-03-01", "2024-03-03")
    assert [d["occupied_pallets"] for d in result.daily] == [4, 3, 3]
    assert result.pallet_days == 10


def test_units_emptied_pallet_keeps_counting(db_session, locations, clock):
    clock.set(datetime(2024, 3, 1, 9, 0))
    _check_in("P1", "A1", pallet_quantity=1, product_quantity=2)
    clock.set(datetime(2024, 3, 2, 9, 0))
    cleared = pallet_service.remove_units("P1", units_to_remove=2)
    assert cleared.pallet_removed is True

    result = compute_occupancy("Acme", "2024-03-01", "2024-03-03")
    assert [d["occupied_pallets"] for d in result.daily] == [1, 1, 1]
    assert result.pallet_days == 3

    # a fresh check-in of the same id replaces the entry instead of stacking
    clock.set(datetime(2024, 3, 4, 9, 0))
    _check_in("P1", "A1", pallet_quantity=2)
    assert compute_occupancy("Acme", "2024-03-04", "2024-03-04").pallet_days == 2


def test_moves_do_not_change_occupancy(db_session, locations, clock):
    clock.set(datetime(2024, 3, 1, 9, 0))
    _check_in("P1", "A1", pallet_quantity=1)
    clock.set(datetime(2024, 3, 2, 9, 0))
    pallet_service.move("P1", to_location="A2")

    assert compute_occupancy("Acme", "2024-03-01", "2024-03-02").pallet_days == 2


def test_history_before_range_is_replayed(db_session, locations, clock):
    clock.set(datetime(2024, 2, 1, 9, 0))
    _check_in("P1", "FLOOR", pallet_quantity=2)

    result = compute_occupancy("Acme", "2024-03-01", "2024-03-07")
    assert result.pallet_days == 14
    assert result.pallet_weeks == Decimal(2)
    assert result.handled_pallets == 0


def test_only_the_customers_records_count(db_session, locations, clock):
    clock.set(datetime(2024, 3, 1, 9, 0))
    _check_in("P1", "FLOOR", pallet_quantity=1, customer_name="Acme")
    _check_in("P2", "FLOOR", pallet_quantity=5, customer_name="Globex")

    assert compute_occupancy("Acme", "2024-03-01", "2024-03-01").pallet_days == 1
    assert compute_occupancy("Globex", "2024-03-01", "2024-03-01").pallet_days == 5


def test_replay_is_deterministic(db_session, locations, clock):
    clock.set(datetime(2024, 3, 1, 9, 0))
    _check_in("P1", "FLOOR", pallet_quantity=2)
    clock.set(datetime(2024, 3, 3, 9, 0))
    pallet_service.remove_quantity("P1", quantity_to_remove=1)

    first = compute_occupancy("Acme", "2024-03-01", "2024-03-05")
    second = compute_occupancy("Acme", "2024-03-01", "2024-03-05")
    assert first.to_dict() == second.to_dict()


def test_extending_range_never_reduces_pallet_days(db_session, locations, clock):
    clock.set(datetime(2024, 3, 1, 9, 0))
    _check_in("P1", "FLOOR", pallet_quantity=2)
    clock.set(datetime(2024, 3, 2, 9, 0))
    pallet_service.check_out("P1")

    previous = 0
    for end_day in range(1, 6):
        total = compute_occupancy("Acme", date(2024, 3, 1), date(2024, 3, end_day)).pallet_days
        assert total >= previous
        previous = total


def test_invalid_ranges_are_rejected(db_session):
    with pytest.raises(ValidationError):
        compute_occupancy("Acme", "2024-03-05", "2024-03-01")
    with pytest.raises(ValidationError):
        compute_occupancy("Acme", "03/01/2024", "2024-03-05")
    with pytest.raises(ValidationError):
        compute_occupancy("", "2024-03-01", "2024-03-05")
