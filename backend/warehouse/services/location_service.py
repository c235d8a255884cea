# Overview: Location rows and the denormalized occupancy flag.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Location, Pallet, PALLET_STATUS_ACTIVE
from ..validation import (
    ConflictError,
    NotFoundError,
    clean_text,
    coerce_int,
    coerce_positive_int,
    normalize_location_id,
)
from .concurrency import unit_of_work


def get_location(location_id: str) -> Location | None:
    return db.session.get(Location, location_id)


def count_active_pallets(location_id: str, *, exclude_pallet_row_id: int | None = None) -> int:
    q = db.session.query(func.count(Pallet.row_id)).filter(
        Pallet.status == PALLET_STATUS_ACTIVE,
        Pallet.location == location_id,
    )
    if exclude_pallet_row_id is not None:
        q = q.filter(Pallet.row_id != exclude_pallet_row_id)
    return int(q.scalar() or 0)


def refresh_occupancy(location_id: str | None) -> None:
    """
    Recompute is_occupied from active pallets.

    Must run inside the unit of work of the mutation that moved pallets in or
    out, never in a separate transaction. Unknown locations are ignored.
    """
    if not location_id:
        return
    location = get_location(location_id)
    if location is None:
        return
    db.session.flush()
    location.is_occupied = count_active_pallets(location_id) > 0


def create_location(
    *,
    location_id,
    capacity_pallets=None,
    location_type=None,
    aisle=None,
    rack=None,
    level=None,
) -> Location:
    loc_id = normalize_location_id(location_id, "id")
    capacity = None if capacity_pallets in (None, "") else coerce_positive_int(capacity_pallets, "capacity_pallets")
    loc_type = clean_text(location_type, "location_type", max_length=16) or "rack"

    with unit_of_work():
        if get_location(loc_id) is not None:
            raise ConflictError(f"Location {loc_id} already exists")
        location = Location(
            id=loc_id,
            aisle=clean_text(aisle, "aisle", max_length=16),
            rack=None if rack in (None, "") else coerce_int(rack, "rack"),
            level=None if level in (None, "") else coerce_int(level, "level"),
            capacity_pallets=capacity,
            location_type=loc_type,
            is_occupied=count_active_pallets(loc_id) > 0,
        )
        db.session.add(location)
    return location


def list_locations(*, only_free: bool = False) -> list[Location]:
    q = db.session.query(Location)
    if only_free:
        q = q.filter(Location.is_occupied.is_(False))
    return q.order_by(Location.aisle, Location.rack, Location.level, Location.id).all()


def require_location(location_id: str) -> Location:
    location = get_location(location_id)
    if location is None:
        raise NotFoundError(f"Unknown location: {location_id}")
    return location
