from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from warehouse.time_utils import to_utc_z

"""
Ledger Invariants (authoritative)

- Append-only: one row per pallet state transition, never updated or deleted.
- sequence_id defines the total order; replay sorts by (timestamp, sequence_id).
- Written inside the same DB transaction as the current-state change it records.
- idempotency_key is unique when present.
"""

ACTION_CHECK_IN = "CHECK_IN"
ACTION_MOVE = "MOVE"
ACTION_PARTIAL_REMOVE = "PARTIAL_REMOVE"
ACTION_UNITS_REMOVE = "UNITS_REMOVE"
ACTION_CHECK_OUT = "CHECK_OUT"

LEDGER_ACTIONS = (
    ACTION_CHECK_IN,
    ACTION_MOVE,
    ACTION_PARTIAL_REMOVE,
    ACTION_UNITS_REMOVE,
    ACTION_CHECK_OUT,
)


class LedgerRecord(db.Model):
    __tablename__ = "ledger_records"
    __table_args__ = (
        db.Index("ix_ledger_customer_timestamp", "customer_name", "timestamp", "sequence_id"),
        db.Index("ix_ledger_pallet_action_timestamp", "pallet_id", "action", "timestamp"),
        db.UniqueConstraint("idempotency_key", name="uq_ledger_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    sequence_id = db.Column(db.Integer, primary_key=True)

    pallet_id = db.Column(db.String(64), nullable=False, index=True)
    customer_name = db.Column(db.String(120), nullable=False)
    product_id = db.Column(db.String(120), nullable=True)

    action = db.Column(db.String(16), nullable=False, index=True)
    quantity_changed = db.Column(db.Integer, nullable=False, default=0)
    quantity_before = db.Column(db.Integer, nullable=True)
    quantity_after = db.Column(db.Integer, nullable=True)

    location = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    # Actor descriptor
    scanned_by = db.Column(db.String(120), nullable=False, default="Unknown")
    actor_id = db.Column(db.String(120), nullable=False, default="anonymous")
    client_session_id = db.Column(db.String(120), nullable=False, default="unknown")

    idempotency_key = db.Column(db.String(128), nullable=True)

    # Monotonic append clock, not a DB default
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<LedgerRecord #{self.sequence_id} {self.action} pallet={self.pallet_id!r}>"

    def to_dict(self) -> dict:
        return {
            "sequence_id": self.sequence_id,
            "pallet_id": self.pallet_id,
            "customer_name": self.customer_name,
            "product_id": self.product_id,
            "action": self.action,
            "quantity_changed": self.quantity_changed,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "location": self.location,
            "notes": self.notes,
            "scanned_by": self.scanned_by,
            "actor_id": self.actor_id,
            "client_session_id": self.client_session_id,
            "idempotency_key": self.idempotency_key,
            "timestamp": to_utc_z(self.timestamp),
        }


@event.listens_for(LedgerRecord, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise RuntimeError("ledger records are append-only")


@event.listens_for(LedgerRecord, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise RuntimeError("ledger records are append-only")
