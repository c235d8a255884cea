# Overview: Ledger store; append-only pallet transition log plus current-state lookups.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import LedgerRecord, Pallet, PALLET_STATUS_ACTIVE
from warehouse.time_utils import ledger_now
"""
Ledger Store Invariants (authoritative)

- Append-only: records are never updated or deleted.
- Appends happen inside the caller's unit of work (flush, never commit here),
  together with the current-state change they describe.
- Timestamps come from the injected clock and never go backwards relative to
  the newest record, so day cutoffs during replay are consistent.
- Ordering for replay: (timestamp ASC, sequence_id ASC).
"""


@dataclass(frozen=True)
class Actor:
    """Who performed a mutation, as supplied by the auth/scanner layer."""
    scanned_by: str = "Unknown"
    actor_id: str = "anonymous"
    client_session_id: str = "unknown"

    @classmethod
    def from_values(cls, scanned_by=None, actor_id=None, client_session_id=None) -> "Actor":
        def _clean(value, default):
            text = str(value).strip() if value is not None else ""
            return text[:120] or default

        return cls(
            scanned_by=_clean(scanned_by, "Unknown"),
            actor_id=_clean(actor_id, "anonymous"),
            client_session_id=_clean(client_session_id, "unknown"),
        )


def next_timestamp() -> datetime:
    """Clock read for an append, clamped to be >= the newest ledger timestamp."""
    now = ledger_now()
    latest = db.session.query(func.max(LedgerRecord.timestamp)).scalar()
    if latest is not None and latest > now:
        return latest
    return now


def append_record(
    *,
    pallet_id: str,
    customer_name: str,
    product_id: str | None,
    action: str,
    quantity_changed: int,
    quantity_before: int | None,
    quantity_after: int | None,
    location: str | None,
    actor: Actor,
    idempotency_key: str | None = None,
    notes: str | None = None,
    timestamp: datetime | None = None,
) -> LedgerRecord:
    """
    Append one ledger record and return it with sequence_id assigned.

    No domain logic here; no commit.
    """
    record = LedgerRecord(
        pallet_id=pallet_id,
        customer_name=customer_name,
        product_id=product_id,
        action=action,
        quantity_changed=quantity_changed,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        location=location,
        notes=notes,
        scanned_by=actor.scanned_by,
        actor_id=actor.actor_id,
        client_session_id=actor.client_session_id,
        idempotency_key=idempotency_key or None,
        timestamp=timestamp or next_timestamp(),
    )
    db.session.add(record)
    db.session.flush()  # ensures sequence_id is assigned without committing
    return record


def current_pallet(pallet_id: str) -> Pallet | None:
    """
    Current-state row for a pallet id: the active row if there is one,
    otherwise the most recent removed row.
    """
    return (
        db.session.query(Pallet)
        .filter(Pallet.id == pallet_id)
        .order_by((Pallet.status == PALLET_STATUS_ACTIVE).desc(), Pallet.row_id.desc())
        .first()
    )


def find_by_idempotency_key(key: str | None) -> LedgerRecord | None:
    if not key:
        return None
    return db.session.query(LedgerRecord).filter_by(idempotency_key=key).first()


def find_recent_duplicate(
    *,
    pallet_id: str,
    action: str,
    location: str | None,
    quantity_changed: int,
    window_seconds: int,
) -> LedgerRecord | None:
    """
    Same pallet, action, location and quantity within the last window_seconds.

    Advisory double-scan check; returns None when the window is disabled.
    """
    if window_seconds <= 0:
        return None
    since = ledger_now() - timedelta(seconds=window_seconds)
    return (
        db.session.query(LedgerRecord)
        .filter(
            LedgerRecord.pallet_id == pallet_id,
            LedgerRecord.action == action,
            func.coalesce(LedgerRecord.location, "") == (location or ""),
            func.coalesce(LedgerRecord.quantity_changed, 0) == (quantity_changed or 0),
            LedgerRecord.timestamp >= since,
        )
        .order_by(LedgerRecord.sequence_id.desc())
        .first()
    )


def records_for_customer(customer_name: str, up_to: datetime) -> list[LedgerRecord]:
    """All records for a customer with timestamp <= up_to, in replay order."""
    return (
        db.session.query(LedgerRecord)
        .filter(
            LedgerRecord.customer_name == customer_name,
            LedgerRecord.timestamp <= up_to,
        )
        .order_by(LedgerRecord.timestamp.asc(), LedgerRecord.sequence_id.asc())
        .all()
    )


def sum_quantity_changed(customer_name: str, action: str, start: datetime, end: datetime) -> int:
    """SUM(quantity_changed) for one action with start <= timestamp <= end."""
    total = (
        db.session.query(func.coalesce(func.sum(LedgerRecord.quantity_changed), 0))
        .filter(
            LedgerRecord.customer_name == customer_name,
            LedgerRecord.action == action,
            LedgerRecord.timestamp >= start,
            LedgerRecord.timestamp <= end,
        )
        .scalar()
    )
    return int(total or 0)


def list_records(
    *,
    pallet_id: str | None = None,
    customer_name: str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[LedgerRecord]:
    """Activity history, newest first."""
    q = db.session.query(LedgerRecord)
    if pallet_id:
        q = q.filter(LedgerRecord.pallet_id == pallet_id)
    if customer_name:
        q = q.filter(LedgerRecord.customer_name == customer_name)
    if action:
        q = q.filter(LedgerRecord.action == action)
    limit = max(1, min(int(limit), 500))
    return q.order_by(LedgerRecord.sequence_id.desc()).limit(limit).all()
