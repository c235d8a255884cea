# Overview: Mutation coordinator; applies every pallet state transition atomically.

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Location, Pallet, PALLET_STATUS_ACTIVE, PALLET_STATUS_REMOVED
from ..models.ledger import (
    ACTION_CHECK_IN,
    ACTION_MOVE,
    ACTION_PARTIAL_REMOVE,
    ACTION_UNITS_REMOVE,
    ACTION_CHECK_OUT,
    LEDGER_ACTIONS,
)
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
    clean_text,
    coerce_int,
    coerce_non_negative_int,
    coerce_positive_int,
    is_blank,
    normalize_location_id,
)
from .concurrency import conditional_update, unit_of_work
from .ledger_service import (
    Actor,
    append_record,
    find_by_idempotency_key,
    find_recent_duplicate,
    next_timestamp,
)
from .location_service import count_active_pallets, get_location, refresh_occupancy, require_location
"""
Mutation Coordinator Invariants (authoritative)

Every action follows the same shape:
1. Idempotency key already in the ledger -> deduped, no other checks, no writes.
2. Resolve the ACTIVE pallet (by id, then by product_id). Removed == not found.
3. Action-specific validation.
4. Double-scan guard: only for calls WITHOUT an idempotency key, a matching
   record (pallet, action, location, quantity) inside the configured window
   -> deduped.
5. A capacity-bearing target is claimed with a conditional UPDATE on
   locations.is_occupied; 0 rows -> ConflictError.
   Compare-and-swap on the version read in step 2; 0 rows -> VersionConflictError.
6. Append exactly one ledger record and refresh location occupancy.

Steps 2-6 run in one unit of work: either all of it lands or none of it.
The coordinator never retries; VersionConflictError means re-read and retry.
"""


@dataclass
class MutationResult:
    action: str
    deduped: bool = False
    pallet: dict | None = None
    record: dict | None = None
    pallet_removed: bool = False
    message: str = ""
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "ok": True,
            "action": self.action,
            "deduped": self.deduped,
            "pallet": self.pallet,
            "record": self.record,
            "pallet_removed": self.pallet_removed,
            "message": self.message,
        }
        data.update(self.extra)
        return data


# =============================================================================
# SHARED STEPS
# =============================================================================

def _normalize_key(idempotency_key) -> str | None:
    key = clean_text(idempotency_key, "idempotency_key", max_length=128)
    if key is None and current_app.config.get("REQUIRE_IDEMPOTENCY_KEY"):
        raise ValidationError("idempotency_key is required")
    return key


def _deduped(action: str, message: str, **log_context) -> MutationResult:
    current_app.logger.info("Deduplicated %s %s", action, log_context)
    return MutationResult(action=action, deduped=True, message=message)


def _dedupe_by_key(action: str, key: str | None) -> MutationResult | None:
    if key and find_by_idempotency_key(key) is not None:
        return _deduped(action, "Duplicate request ignored", idempotency_key=key)
    return None


def _dedupe_recent(
    action: str,
    key: str | None,
    *,
    pallet_id: str,
    location: str | None,
    quantity_changed: int,
) -> MutationResult | None:
    if key:
        return None
    window = int(current_app.config.get("DUPLICATE_SCAN_WINDOW_SECONDS") or 0)
    dup = find_recent_duplicate(
        pallet_id=pallet_id,
        action=action,
        location=location,
        quantity_changed=quantity_changed,
        window_seconds=window,
    )
    if dup is None:
        return None
    return _deduped(action, "Duplicate scan ignored", pallet_id=pallet_id, sequence_id=dup.sequence_id)


def _resolve_active(pallet_ref) -> Pallet:
    """
    Active pallet by id, falling back to product_id.

    When several active pallets share a product id the oldest entry wins (FIFO).
    """
    ref = clean_text(pallet_ref, "pallet id", required=True, max_length=120)
    base = db.session.query(Pallet).filter(Pallet.status == PALLET_STATUS_ACTIVE)
    pallet = base.filter(Pallet.id == ref).first()
    if pallet is None:
        pallet = (
            base.filter(Pallet.product_id == ref)
            .order_by(Pallet.date_added.asc(), Pallet.row_id.asc())
            .first()
        )
    if pallet is None:
        raise NotFoundError("Pallet not found or already removed")
    return pallet


def _check_expected_version(pallet: Pallet, expected_version) -> None:
    if is_blank(expected_version):
        return
    if coerce_int(expected_version, "expected_version") != pallet.version:
        raise VersionConflictError("Pallet was updated by another user. Refresh and retry.")


def _compare_and_swap(pallet: Pallet, values: dict) -> None:
    matched = conditional_update(
        Pallet,
        [
            Pallet.row_id == pallet.row_id,
            Pallet.version == pallet.version,
            Pallet.status == PALLET_STATUS_ACTIVE,
        ],
        {**values, "version": Pallet.version + 1},
    )
    if matched != 1:
        current_app.logger.warning(
            "Version conflict on pallet %s (read version %s)", pallet.id, pallet.version
        )
        raise VersionConflictError("Pallet was updated by another user. Refresh and retry.")
    db.session.expire(pallet)


def _claim_slot(location_id: str, *, exclude_row_id: int | None = None) -> None:
    """
    Take an exclusive location for the pallet being placed.

    The is_occupied flip is a conditional UPDATE, so of two writers racing
    for the same free slot only one matches a row; the other gets 0 and fails.
    Unknown and unconstrained locations are not claimed.
    """
    location = get_location(location_id)
    if location is None or not location.is_exclusive:
        return
    if count_active_pallets(location_id, exclude_pallet_row_id=exclude_row_id) > 0:
        raise ConflictError(f"Target location {location_id} is occupied")
    matched = conditional_update(
        Location,
        [Location.id == location_id, Location.is_occupied.is_(False)],
        {"is_occupied": True},
    )
    if matched != 1:
        current_app.logger.warning("Lost slot claim on location %s", location_id)
        raise ConflictError(f"Target location {location_id} is occupied")
    db.session.expire(location)


def _apply(action: str, key: str | None, operation, *, conflict_message: str) -> MutationResult:
    """
    Run one unit-of-work operation and settle unique-constraint races.

    Two requests with the same key can both pass the advisory lookup; the
    unique index lets only one commit, and the loser reports deduped.
    """
    try:
        return operation()
    except IntegrityError as exc:
        if key and find_by_idempotency_key(key) is not None:
            return _deduped(action, "Duplicate request ignored", idempotency_key=key)
        raise ConflictError(conflict_message) from exc


def _finish(action: str, pallet: Pallet, record, *, removed: bool, message: str, **extra) -> MutationResult:
    return MutationResult(
        action=action,
        pallet=pallet.to_dict(),
        record=record.to_dict() if record is not None else None,
        pallet_removed=removed,
        message=message,
        extra=extra,
    )


# =============================================================================
# ACTIONS
# =============================================================================

def check_in(
    *,
    customer_name,
    product_id,
    location,
    pallet_id=None,
    pallet_quantity=None,
    product_quantity=None,
    parts=None,
    actor: Actor | None = None,
    idempotency_key=None,
) -> MutationResult:
    """
    CHECK_IN: create a new active pallet row and occupy its location.

    current_units = pallet_quantity * product_quantity. A pallet id may be
    re-used only once its previous entry is removed (a new row is inserted).
    """
    actor = actor or Actor()
    key = _normalize_key(idempotency_key)

    deduped = _dedupe_by_key(ACTION_CHECK_IN, key)
    if deduped:
        return deduped

    customer = clean_text(customer_name, "customer_name", required=True, max_length=120)
    product = clean_text(product_id, "product_id", required=True, max_length=120)
    location_id = normalize_location_id(location)
    pallet_qty = 1 if is_blank(pallet_quantity) else coerce_positive_int(pallet_quantity, "pallet_quantity")
    units_per_pallet = 0 if is_blank(product_quantity) else coerce_non_negative_int(product_quantity, "product_quantity")
    if parts is not None and not isinstance(parts, list):
        raise ValidationError("parts must be a list")
    new_id = clean_text(pallet_id, "pallet id", max_length=64) or f"PLT-{uuid.uuid4().hex[:12].upper()}"

    def _op() -> MutationResult:
        with unit_of_work():
            existing = (
                db.session.query(Pallet)
                .filter(Pallet.id == new_id, Pallet.status == PALLET_STATUS_ACTIVE)
                .first()
            )
            if existing is not None:
                dup = _dedupe_recent(
                    ACTION_CHECK_IN, key,
                    pallet_id=new_id, location=location_id, quantity_changed=pallet_qty,
                )
                if dup:
                    return dup
                raise ConflictError(f"Pallet {new_id} is already checked in")

            _claim_slot(location_id)

            ts = next_timestamp()
            pallet = Pallet(
                id=new_id,
                customer_name=customer,
                product_id=product,
                location=location_id,
                pallet_quantity=pallet_qty,
                product_quantity=units_per_pallet,
                current_units=pallet_qty * units_per_pallet,
                parts=parts,
                status=PALLET_STATUS_ACTIVE,
                version=1,
                scanned_by=actor.scanned_by,
                date_added=ts,
            )
            db.session.add(pallet)
            db.session.flush()

            record = append_record(
                pallet_id=new_id,
                customer_name=customer,
                product_id=product,
                action=ACTION_CHECK_IN,
                quantity_changed=pallet_qty,
                quantity_before=0,
                quantity_after=pallet_qty,
                location=location_id,
                actor=actor,
                idempotency_key=key,
                timestamp=ts,
            )
            refresh_occupancy(location_id)
        return _finish(ACTION_CHECK_IN, pallet, record, removed=False, message="Pallet checked in successfully")

    return _apply(ACTION_CHECK_IN, key, _op, conflict_message=f"Pallet {new_id} is already checked in")


def move(
    pallet_ref,
    *,
    to_location,
    actor: Actor | None = None,
    idempotency_key=None,
    expected_version=None,
) -> MutationResult:
    """MOVE: relocate an active pallet; moving to its current location is a no-op."""
    actor = actor or Actor()
    key = _normalize_key(idempotency_key)

    deduped = _dedupe_by_key(ACTION_MOVE, key)
    if deduped:
        return deduped

    target = normalize_location_id(to_location, "to_location")

    def _op() -> MutationResult:
        with unit_of_work():
            pallet = _resolve_active(pallet_ref)
            _check_expected_version(pallet, expected_version)

            source = (pallet.location or "").strip().upper()
            if not source:
                raise ValidationError("Pallet has no current location")
            if source == target:
                return _finish(
                    ACTION_MOVE, pallet, None, removed=False,
                    message="Pallet already in that location",
                    from_location=source, to_location=target,
                )

            dup = _dedupe_recent(ACTION_MOVE, key, pallet_id=pallet.id, location=target, quantity_changed=0)
            if dup:
                return dup

            require_location(target)
            _claim_slot(target, exclude_row_id=pallet.row_id)

            pallet_id = pallet.id
            quantity = pallet.pallet_quantity
            customer = pallet.customer_name
            product = pallet.product_id
            _compare_and_swap(pallet, {"location": target})

            record = append_record(
                pallet_id=pallet_id,
                customer_name=customer,
                product_id=product,
                action=ACTION_MOVE,
                quantity_changed=0,
                quantity_before=quantity,
                quantity_after=quantity,
                location=target,
                notes=f"Moved from {source} to {target}",
                actor=actor,
                idempotency_key=key,
            )
            refresh_occupancy(source)
            refresh_occupancy(target)
        return _finish(
            ACTION_MOVE, pallet, record, removed=False,
            message="Pallet moved successfully",
            from_location=source, to_location=target,
        )

    return _apply(ACTION_MOVE, key, _op, conflict_message="Pallet was updated by another user. Refresh and retry.")


def remove_quantity(
    pallet_ref,
    *,
    quantity_to_remove,
    actor: Actor | None = None,
    idempotency_key=None,
    expected_version=None,
) -> MutationResult:
    """
    PARTIAL_REMOVE: take whole pallets off an entry.

    Reaching 0 removes the entry and frees the location in the same step.
    For unit-tracked entries current_units drops by the removed pallets' units.
    """
    actor = actor or Actor()
    key = _normalize_key(idempotency_key)

    deduped = _dedupe_by_key(ACTION_PARTIAL_REMOVE, key)
    if deduped:
        return deduped

    qty = coerce_positive_int(quantity_to_remove, "quantity_to_remove")

    def _op() -> MutationResult:
        with unit_of_work():
            pallet = _resolve_active(pallet_ref)
            _check_expected_version(pallet, expected_version)

            before = pallet.pallet_quantity or 0
            after = before - qty
            if after < 0:
                raise ValidationError("Cannot remove more than available quantity")

            dup = _dedupe_recent(
                ACTION_PARTIAL_REMOVE, key,
                pallet_id=pallet.id, location=pallet.location, quantity_changed=qty,
            )
            if dup:
                return dup

            pallet_id = pallet.id
            location_id = pallet.location
            customer = pallet.customer_name
            product = pallet.product_id
            removed = after == 0

            if removed:
                ts = next_timestamp()
                _compare_and_swap(pallet, {
                    "status": PALLET_STATUS_REMOVED,
                    "date_removed": ts,
                    "pallet_quantity": 0,
                    "current_units": 0,
                })
                notes = "Pallet emptied and removed"
            else:
                ts = None
                units = pallet.current_units or 0
                if pallet.tracks_units:
                    units = max(0, units - qty * pallet.product_quantity)
                _compare_and_swap(pallet, {"pallet_quantity": after, "current_units": units})
                notes = None

            record = append_record(
                pallet_id=pallet_id,
                customer_name=customer,
                product_id=product,
                action=ACTION_PARTIAL_REMOVE,
                quantity_changed=qty,
                quantity_before=before,
                quantity_after=after,
                location=location_id,
                notes=notes,
                actor=actor,
                idempotency_key=key,
                timestamp=ts,
            )
            if removed:
                refresh_occupancy(location_id)

        message = (
            "All pallets removed. Location freed."
            if removed
            else f"Removed {qty} pallet(s). {after} remaining."
        )
        return _finish(
            ACTION_PARTIAL_REMOVE, pallet, record, removed=removed, message=message,
            quantity_removed=qty, quantity_remaining=after,
        )

    return _apply(ACTION_PARTIAL_REMOVE, key, _op, conflict_message="Pallet was updated by another user. Refresh and retry.")


def remove_units(
    pallet_ref,
    *,
    units_to_remove,
    actor: Actor | None = None,
    idempotency_key=None,
    expected_version=None,
) -> MutationResult:
    """UNITS_REMOVE: draw down individual units on a unit-tracked pallet."""
    actor = actor or Actor()
    key = _normalize_key(idempotency_key)

    deduped = _dedupe_by_key(ACTION_UNITS_REMOVE, key)
    if deduped:
        return deduped

    units = coerce_positive_int(units_to_remove, "units_to_remove")

    def _op() -> MutationResult:
        with unit_of_work():
            pallet = _resolve_active(pallet_ref)
            _check_expected_version(pallet, expected_version)

            if not pallet.tracks_units:
                raise ValidationError(
                    "This pallet does not track individual units. Use remove-quantity instead."
                )
            total = pallet.current_units or 0
            after = total - units
            if after < 0:
                raise ValidationError(f"Cannot remove {units} units. Only {total} units available.")

            dup = _dedupe_recent(
                ACTION_UNITS_REMOVE, key,
                pallet_id=pallet.id, location=pallet.location, quantity_changed=units,
            )
            if dup:
                return dup

            pallet_id = pallet.id
            location_id = pallet.location
            customer = pallet.customer_name
            product = pallet.product_id
            removed = after == 0

            if removed:
                ts = next_timestamp()
                _compare_and_swap(pallet, {
                    "status": PALLET_STATUS_REMOVED,
                    "date_removed": ts,
                    "pallet_quantity": 0,
                    "product_quantity": 0,
                    "current_units": 0,
                })
                notes = "All units removed. Pallet cleared."
            else:
                ts = None
                _compare_and_swap(pallet, {"current_units": after})
                notes = f"Removed {units} units. {after} total units remaining."

            record = append_record(
                pallet_id=pallet_id,
                customer_name=customer,
                product_id=product,
                action=ACTION_UNITS_REMOVE,
                quantity_changed=units,
                quantity_before=total,
                quantity_after=after,
                location=location_id,
                notes=notes,
                actor=actor,
                idempotency_key=key,
                timestamp=ts,
            )
            if removed:
                refresh_occupancy(location_id)

        return _finish(
            ACTION_UNITS_REMOVE, pallet, record, removed=removed, message=notes,
            units_removed=units, units_remaining=after,
        )

    return _apply(ACTION_UNITS_REMOVE, key, _op, conflict_message="Pallet was updated by another user. Refresh and retry.")


def check_out(
    pallet_ref,
    *,
    actor: Actor | None = None,
    idempotency_key=None,
    expected_version=None,
) -> MutationResult:
    """CHECK_OUT: remove the whole entry and free its location."""
    actor = actor or Actor()
    key = _normalize_key(idempotency_key)

    deduped = _dedupe_by_key(ACTION_CHECK_OUT, key)
    if deduped:
        return deduped

    def _op() -> MutationResult:
        with unit_of_work():
            pallet = _resolve_active(pallet_ref)
            _check_expected_version(pallet, expected_version)

            quantity = pallet.pallet_quantity or 0
            dup = _dedupe_recent(
                ACTION_CHECK_OUT, key,
                pallet_id=pallet.id, location=pallet.location, quantity_changed=quantity,
            )
            if dup:
                return dup

            pallet_id = pallet.id
            location_id = pallet.location
            customer = pallet.customer_name
            product = pallet.product_id

            ts = next_timestamp()
            _compare_and_swap(pallet, {"status": PALLET_STATUS_REMOVED, "date_removed": ts})

            record = append_record(
                pallet_id=pallet_id,
                customer_name=customer,
                product_id=product,
                action=ACTION_CHECK_OUT,
                quantity_changed=quantity,
                quantity_before=quantity,
                quantity_after=0,
                location=location_id,
                notes="Full pallet removed",
                actor=actor,
                idempotency_key=key,
                timestamp=ts,
            )
            refresh_occupancy(location_id)
        return _finish(ACTION_CHECK_OUT, pallet, record, removed=True, message="Pallet checked out successfully")

    return _apply(ACTION_CHECK_OUT, key, _op, conflict_message="Pallet was updated by another user. Refresh and retry.")


def mutate(action, pallet_ref, params: dict | None, actor: Actor | None = None, idempotency_key=None) -> MutationResult:
    """
    Single entry point for the five pallet actions.

    For CHECK_IN pallet_ref is the (optional) id to assign.
    """
    params = dict(params or {})
    action_name = str(action or "").strip().upper()
    if action_name not in LEDGER_ACTIONS:
        raise ValidationError(f"action must be one of {', '.join(LEDGER_ACTIONS)}")

    common = {"actor": actor, "idempotency_key": idempotency_key}

    if action_name == ACTION_CHECK_IN:
        return check_in(
            pallet_id=pallet_ref,
            customer_name=params.get("customer_name"),
            product_id=params.get("product_id"),
            location=params.get("location"),
            pallet_quantity=params.get("pallet_quantity"),
            product_quantity=params.get("product_quantity"),
            parts=params.get("parts"),
            **common,
        )

    common["expected_version"] = params.get("expected_version")
    if action_name == ACTION_MOVE:
        return move(pallet_ref, to_location=params.get("to_location"), **common)
    if action_name == ACTION_PARTIAL_REMOVE:
        return remove_quantity(pallet_ref, quantity_to_remove=params.get("quantity_to_remove"), **common)
    if action_name == ACTION_UNITS_REMOVE:
        return remove_units(pallet_ref, units_to_remove=params.get("units_to_remove"), **common)
    return check_out(pallet_ref, **common)


# =============================================================================
# READS
# =============================================================================

def get_pallet(pallet_ref) -> Pallet:
    """Active pallet by id/product id, else the latest removed row for that id."""
    try:
        return _resolve_active(pallet_ref)
    except NotFoundError:
        pallet = (
            db.session.query(Pallet)
            .filter(Pallet.id == str(pallet_ref).strip())
            .order_by(Pallet.row_id.desc())
            .first()
        )
        if pallet is None:
            raise
        return pallet


def list_active_occupancy() -> list[Pallet]:
    """Read-only snapshot of every active pallet, grouped by location."""
    return (
        db.session.query(Pallet)
        .filter(Pallet.status == PALLET_STATUS_ACTIVE)
        .order_by(Pallet.location.asc(), Pallet.date_added.asc(), Pallet.row_id.asc())
        .all()
    )


def list_pallets(*, customer_name=None, search=None, include_removed: bool = False, limit: int = 500) -> list[Pallet]:
    q = db.session.query(Pallet)
    if not include_removed:
        q = q.filter(Pallet.status == PALLET_STATUS_ACTIVE)
    if customer_name:
        q = q.filter(Pallet.customer_name == customer_name)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Pallet.id.ilike(like), Pallet.product_id.ilike(like), Pallet.location.ilike(like)))
    limit = max(1, min(int(limit), 1000))
    return q.order_by(Pallet.date_added.desc(), Pallet.row_id.desc()).limit(limit).all()
