from __future__ import annotations

from ..extensions import db
from warehouse.time_utils import to_utc_z

PALLET_STATUS_ACTIVE = "active"
PALLET_STATUS_REMOVED = "removed"


class Location(db.Model):
    """
    Physical storage slot.

    capacity_pallets NULL means unconstrained (floor/bulk areas). Any non-null
    capacity makes the slot exclusive: at most one active pallet entry.
    is_occupied is a denormalized cache, only ever written inside the unit of
    work of the pallet mutation that changes it.
    """
    __tablename__ = "locations"

    id = db.Column(db.String(32), primary_key=True)
    aisle = db.Column(db.String(16), nullable=True)
    rack = db.Column(db.Integer, nullable=True)
    level = db.Column(db.Integer, nullable=True)
    capacity_pallets = db.Column(db.Integer, nullable=True)
    location_type = db.Column(db.String(16), nullable=False, default="rack")
    is_occupied = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def is_exclusive(self) -> bool:
        return self.capacity_pallets is not None

    def __repr__(self) -> str:
        return f"<Location id={self.id!r} occupied={self.is_occupied}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "aisle": self.aisle,
            "rack": self.rack,
            "level": self.level,
            "capacity_pallets": self.capacity_pallets,
            "location_type": self.location_type,
            "is_occupied": bool(self.is_occupied),
        }


class Pallet(db.Model):
    """
    Current-state row for one pallet entry (a cache derivable from the ledger).

    ID DESIGN DECISION:
    row_id is the surrogate key. The scanned pallet id is unique only among
    active rows, so a checked-out id can be checked in again as a NEW row.
    Removed rows are terminal and never updated again.

    QUANTITIES:
    - pallet_quantity: physical pallets in this entry
    - product_quantity: units per pallet (0 = units not tracked)
    - current_units: remaining units, authoritative when product_quantity > 0
    """
    __tablename__ = "pallets"
    __table_args__ = (
        db.Index(
            "uq_pallets_active_id",
            "id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_pallets_status_location", "status", "location"),
        db.Index("ix_pallets_customer_status", "customer_name", "status"),
        db.CheckConstraint("current_units >= 0", name="ck_pallets_current_units_nonneg"),
        db.CheckConstraint("pallet_quantity >= 0", name="ck_pallets_pallet_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    row_id = db.Column(db.Integer, primary_key=True)
    id = db.Column(db.String(64), nullable=False, index=True)

    customer_name = db.Column(db.String(120), nullable=False)
    product_id = db.Column(db.String(120), nullable=False, index=True)
    location = db.Column(db.String(32), nullable=True)

    pallet_quantity = db.Column(db.Integer, nullable=False, default=1)
    product_quantity = db.Column(db.Integer, nullable=False, default=0)
    current_units = db.Column(db.Integer, nullable=False, default=0)
    parts = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PALLET_STATUS_ACTIVE)
    # CAS token: every successful mutation bumps it by exactly one
    version = db.Column(db.Integer, nullable=False, default=1)

    scanned_by = db.Column(db.String(120), nullable=True)
    date_added = db.Column(db.DateTime(timezone=True), nullable=False)
    date_removed = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def tracks_units(self) -> bool:
        return (self.product_quantity or 0) > 0

    def __repr__(self) -> str:
        return f"<Pallet id={self.id!r} status={self.status} v{self.version} at {self.location!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "product_id": self.product_id,
            "location": self.location,
            "pallet_quantity": self.pallet_quantity,
            "product_quantity": self.product_quantity,
            "current_units": self.current_units,
            "parts": self.parts,
            "status": self.status,
            "version": self.version,
            "scanned_by": self.scanned_by,
            "date_added": to_utc_z(self.date_added),
            "date_removed": to_utc_z(self.date_removed),
        }
