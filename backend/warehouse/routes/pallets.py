# Overview: Flask API routes for pallet scans and activity; parses input and returns JSON responses.

# backend/warehouse/routes/pallets.py
"""
Pallet Scan API Routes

Thin adapter over the mutation coordinator. Every write endpoint accepts an
idempotency key (body "idempotency_key" or X-Idempotency-Key header) and the
scanner identity (body fields or X-Scanned-By / X-Actor-Id /
X-Client-Session-Id headers).

Responses:
- 200 with "deduped": true when the request was already applied
- 400 invalid input, 404 unknown/removed pallet, 409 conflict
"""

from flask import Blueprint, request, jsonify

from ..decorators import json_body, request_actor, request_idempotency_key, handle_service_errors
from ..services import pallet_service, ledger_service


pallets_bp = Blueprint("pallets", __name__, url_prefix="/api/pallets")
activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity")


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes"}


# =============================================================================
# SCANS
# =============================================================================

@pallets_bp.post("")
@handle_service_errors("check in pallet")
def check_in_route():
    """
    Check a pallet in.

    Request body:
    {
        "customer_name": "Acme",
        "product_id": "SKU-1",
        "location": "A1-L1",
        "pallet_quantity": 2,     (optional, default 1)
        "product_quantity": 5,    (optional units per pallet, default 0)
        "id": "PLT-...",          (optional, generated when omitted)
        "parts": [...]            (optional)
    }
    """
    data = json_body()
    result = pallet_service.check_in(
        pallet_id=data.get("id") or data.get("pallet_id"),
        customer_name=data.get("customer_name"),
        product_id=data.get("product_id"),
        location=data.get("location"),
        pallet_quantity=data.get("pallet_quantity"),
        product_quantity=data.get("product_quantity"),
        parts=data.get("parts"),
        actor=request_actor(data),
        idempotency_key=request_idempotency_key(data),
    )
    return jsonify(result.to_dict()), (200 if result.deduped else 201)


@pallets_bp.post("/<pallet_ref>/move")
@handle_service_errors("move pallet")
def move_route(pallet_ref: str):
    data = json_body()
    result = pallet_service.move(
        pallet_ref,
        to_location=data.get("to_location") or data.get("location"),
        actor=request_actor(data),
        idempotency_key=request_idempotency_key(data),
        expected_version=data.get("expected_version"),
    )
    return jsonify(result.to_dict())


@pallets_bp.post("/<pallet_ref>/remove-quantity")
@handle_service_errors("remove pallet quantity")
def remove_quantity_route(pallet_ref: str):
    data = json_body()
    result = pallet_service.remove_quantity(
        pallet_ref,
        quantity_to_remove=data.get("quantity_to_remove"),
        actor=request_actor(data),
        idempotency_key=request_idempotency_key(data),
        expected_version=data.get("expected_version"),
    )
    return jsonify(result.to_dict())


@pallets_bp.post("/<pallet_ref>/remove-units")
@handle_service_errors("remove pallet units")
def remove_units_route(pallet_ref: str):
    data = json_body()
    result = pallet_service.remove_units(
        pallet_ref,
        units_to_remove=data.get("units_to_remove"),
        actor=request_actor(data),
        idempotency_key=request_idempotency_key(data),
        expected_version=data.get("expected_version"),
    )
    return jsonify(result.to_dict())


@pallets_bp.post("/<pallet_ref>/check-out")
@handle_service_errors("check out pallet")
def check_out_route(pallet_ref: str):
    data = json_body()
    result = pallet_service.check_out(
        pallet_ref,
        actor=request_actor(data),
        idempotency_key=request_idempotency_key(data),
        expected_version=data.get("expected_version"),
    )
    return jsonify(result.to_dict())


# =============================================================================
# QUERIES
# =============================================================================

@pallets_bp.get("")
@handle_service_errors("list pallets")
def list_pallets_route():
    """
    List pallets.

    Query params: customer, search, include_removed (true/false), limit
    """
    pallets = pallet_service.list_pallets(
        customer_name=request.args.get("customer"),
        search=request.args.get("search"),
        include_removed=_truthy(request.args.get("include_removed")),
        limit=request.args.get("limit", 500, type=int),
    )
    return jsonify({"pallets": [p.to_dict() for p in pallets], "count": len(pallets)})


@pallets_bp.get("/occupancy")
@handle_service_errors("list active occupancy")
def active_occupancy_route():
    pallets = pallet_service.list_active_occupancy()
    return jsonify({"pallets": [p.to_dict() for p in pallets], "count": len(pallets)})


@pallets_bp.get("/<pallet_ref>")
@handle_service_errors("get pallet")
def get_pallet_route(pallet_ref: str):
    return jsonify({"pallet": pallet_service.get_pallet(pallet_ref).to_dict()})


@activity_bp.get("")
@handle_service_errors("list activity")
def list_activity_route():
    """Ledger history, newest first. Query params: pallet_id, customer, action, limit."""
    action = request.args.get("action")
    records = ledger_service.list_records(
        pallet_id=request.args.get("pallet_id"),
        customer_name=request.args.get("customer"),
        action=action.strip().upper() if action else None,
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"records": [r.to_dict() for r in records], "count": len(records)})
