# Overview: Occupancy replay; rebuilds day-by-day active pallet counts from the ledger.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ..models.ledger import (
    ACTION_CHECK_IN,
    ACTION_CHECK_OUT,
    ACTION_PARTIAL_REMOVE,
)
from ..validation import ValidationError, clean_text
from .ledger_service import records_for_customer, sum_quantity_changed
from warehouse.time_utils import end_of_day, iter_days, parse_ymd, start_of_day, to_ymd


@dataclass
class OccupancyResult:
    customer_name: str
    start_date: date
    end_date: date
    pallet_days: int
    days_in_range: int
    handled_pallets: int
    daily: list[dict] = field(default_factory=list)

    @property
    def pallet_weeks(self) -> Decimal:
        return Decimal(self.pallet_days) / Decimal(7)

    def to_dict(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "start_date": to_ymd(self.start_date),
            "end_date": to_ymd(self.end_date),
            "pallet_days": self.pallet_days,
            "pallet_weeks": str(self.pallet_weeks.quantize(Decimal("0.0001"))),
            "days_in_range": self.days_in_range,
            "handled_pallets": self.handled_pallets,
            "daily": self.daily,
        }


def parse_range(start, end) -> tuple[date, date]:
    start_date = parse_ymd(start)
    end_date = parse_ymd(end)
    if start_date is None or end_date is None:
        raise ValidationError("start and end must be YYYY-MM-DD")
    if end_date < start_date:
        raise ValidationError("end must be on or after start")
    return start_date, end_date


def apply_record(active: dict[str, int], record) -> None:
    """
    Fold one ledger record into the pallet_id -> quantity map.

    Pallet-days follow slot occupancy, not unit counts: MOVE and
    UNITS_REMOVE (even one that empties the pallet) leave the map alone.
    """
    action = record.action
    if action == ACTION_CHECK_IN:
        active[record.pallet_id] = int(record.quantity_after or 0)
    elif action == ACTION_CHECK_OUT:
        active.pop(record.pallet_id, None)
    elif action == ACTION_PARTIAL_REMOVE:
        remaining = int(record.quantity_after or 0)
        if remaining > 0:
            active[record.pallet_id] = remaining
        else:
            active.pop(record.pallet_id, None)


def compute_occupancy(customer_name, start, end) -> OccupancyResult:
    """
    Replay the customer's ledger and count pallet-days over [start, end].

    For each calendar day the cursor advances through every record with
    timestamp <= end-of-day, then the map total is that day's occupancy.
    Pure function of the ledger prefix: same records, same result.
    """
    customer = clean_text(customer_name, "customer_name", required=True, max_length=120)
    start_date, end_date = parse_range(start, end)

    records = records_for_customer(customer, end_of_day(end_date))
    active: dict[str, int] = {}
    cursor = 0
    pallet_days = 0
    daily = []

    for day in iter_days(start_date, end_date):
        cutoff = end_of_day(day)
        while cursor < len(records) and records[cursor].timestamp <= cutoff:
            apply_record(active, records[cursor])
            cursor += 1
        occupied = sum(active.values())
        pallet_days += occupied
        daily.append({"date": to_ymd(day), "occupied_pallets": occupied})

    handled = sum_quantity_changed(
        customer, ACTION_CHECK_IN, start_of_day(start_date), end_of_day(end_date)
    )

    return OccupancyResult(
        customer_name=customer,
        start_date=start_date,
        end_date=end_date,
        pallet_days=pallet_days,
        days_in_range=len(daily),
        handled_pallets=handled,
        daily=daily,
    )
