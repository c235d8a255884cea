# Overview: Flask API routes for rates and invoices; parses input and returns JSON responses.

# backend/warehouse/routes/billing.py
"""
Billing API Routes

- /api/rates: customer rate CRUD
- /api/invoices/preview: compute without persisting
- /api/invoices/generate: persist a snapshot (start_date + end_date, or week_start)
- /api/invoices/<id>/status: operator status change
- /api/invoices/<id>/payments: record a payment (optional idempotency key)
- /api/invoices/aging: outstanding balances by days past due
"""

from flask import Blueprint, request, jsonify

from ..decorators import json_body, request_idempotency_key, handle_service_errors
from ..services import billing_service
from ..services.occupancy_service import compute_occupancy
from ..validation import NotFoundError


rates_bp = Blueprint("rates", __name__, url_prefix="/api/rates")
invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _overrides(data: dict) -> dict:
    fields = billing_service.RATE_FIELDS + ("payment_terms_days",)
    return {field: data.get(field) for field in fields}


# =============================================================================
# RATES
# =============================================================================

@rates_bp.get("")
@handle_service_errors("list rates")
def list_rates_route():
    customer = (request.args.get("customer") or "").strip()
    if customer:
        rate = billing_service.get_rate(customer)
        if rate is None:
            raise NotFoundError("Rate not found")
        return jsonify(rate.to_dict())
    return jsonify([rate.to_dict() for rate in billing_service.list_rates()])


@rates_bp.post("")
@handle_service_errors("save rate")
def upsert_rate_route():
    data = json_body()
    rate = billing_service.upsert_rate(
        customer_name=data.get("customer_name"),
        rate_per_pallet_week=data.get("rate_per_pallet_week"),
        handling_fee_flat=data.get("handling_fee_flat"),
        handling_fee_per_pallet=data.get("handling_fee_per_pallet"),
        payment_terms_days=data.get("payment_terms_days"),
        currency=data.get("currency"),
    )
    return jsonify({"ok": True, "rate": rate.to_dict()})


# =============================================================================
# INVOICES
# =============================================================================

@invoices_bp.get("")
@handle_service_errors("list invoices")
def list_invoices_route():
    invoices = billing_service.list_invoices(
        customer_name=(request.args.get("customer") or "").strip() or None,
        limit=request.args.get("limit", 200, type=int),
    )
    return jsonify([inv.to_dict() for inv in invoices])


@invoices_bp.get("/occupancy")
@handle_service_errors("compute occupancy")
def occupancy_route():
    """Replay output only. Query params: customer, start, end (YYYY-MM-DD)."""
    result = compute_occupancy(
        request.args.get("customer"),
        request.args.get("start"),
        request.args.get("end"),
    )
    return jsonify(result.to_dict())


@invoices_bp.get("/aging")
@handle_service_errors("build aging report")
def aging_route():
    return jsonify(billing_service.aging_report(request.args.get("as_of")))


@invoices_bp.post("/preview")
@handle_service_errors("preview invoice")
def preview_route():
    data = json_body()
    preview = billing_service.preview_invoice(
        data.get("customer_name"),
        data.get("start_date"),
        data.get("end_date"),
        _overrides(data),
    )
    return jsonify({"ok": True, **preview.to_dict()})


@invoices_bp.post("/generate")
@handle_service_errors("generate invoice")
def generate_route():
    data = json_body()
    invoice = billing_service.generate_invoice(
        data.get("customer_name"),
        data.get("start_date"),
        data.get("end_date"),
        _overrides(data),
        week_start=data.get("week_start"),
    )
    return jsonify({"ok": True, "invoice_id": invoice.id, "invoice": invoice.to_dict()}), 201


@invoices_bp.get("/<int:invoice_id>")
@handle_service_errors("get invoice")
def get_invoice_route(invoice_id: int):
    return jsonify({"invoice": billing_service.get_invoice(invoice_id).to_dict()})


@invoices_bp.post("/<int:invoice_id>/status")
@handle_service_errors("update invoice status")
def status_route(invoice_id: int):
    data = json_body()
    invoice = billing_service.set_invoice_status(
        invoice_id,
        data.get("status"),
        expected_version=data.get("expected_version"),
    )
    return jsonify({"ok": True, "invoice": invoice.to_dict()})


@invoices_bp.post("/<int:invoice_id>/payments")
@handle_service_errors("record payment")
def payment_route(invoice_id: int):
    data = json_body()
    outcome = billing_service.record_payment(
        invoice_id,
        data.get("amount"),
        note=data.get("note"),
        paid_at=data.get("paid_at"),
        idempotency_key=request_idempotency_key(data),
        expected_version=data.get("expected_version"),
    )
    return jsonify(outcome.to_dict())
