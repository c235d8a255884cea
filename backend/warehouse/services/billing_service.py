# Overview: Billing calculator; rates, invoice preview/generation and the payment state machine.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CustomerRate, Invoice, InvoicePayment
from ..models.billing import (
    BILLING_CYCLE_WEEKLY,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_SENT,
    INVOICE_STATUSES,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    _money,
    _rate,
)
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
    clean_text,
    coerce_currency,
    coerce_int,
    coerce_money,
    coerce_payment_amount,
    coerce_payment_terms,
    is_blank,
    round2,
)
from .concurrency import unit_of_work
from .occupancy_service import OccupancyResult, compute_occupancy
from warehouse.time_utils import parse_iso_datetime, parse_ymd, to_utc_z, to_ymd, utcnow
"""
Billing Invariants (authoritative)

- Effective rate = stored CustomerRate overlaid field-by-field by per-call overrides.
- base_total = round2(pallet_weeks * rate); handling_total = round2(flat + per_pallet * handled);
  total = base_total + handling_total. Rounding happens at each subtotal.
- due_date = end_date + payment_terms_days (calendar days).
- Invoices are created once from a snapshot and never deleted; afterwards only
  status transitions and payments change them.
- Payments with an idempotency key apply at most once.
"""

RATE_FIELDS = ("rate_per_pallet_week", "handling_fee_flat", "handling_fee_per_pallet")


@dataclass(frozen=True)
class EffectiveRate:
    rate_per_pallet_week: Decimal
    handling_fee_flat: Decimal
    handling_fee_per_pallet: Decimal
    payment_terms_days: int
    currency: str


@dataclass
class InvoicePreview:
    customer_name: str
    occupancy: OccupancyResult
    rate: EffectiveRate
    base_total: Decimal
    handling_total: Decimal
    total: Decimal
    due_date: date

    def to_dict(self) -> dict:
        occ = self.occupancy
        return {
            "billing_cycle": BILLING_CYCLE_WEEKLY,
            "customer_name": self.customer_name,
            "start_date": to_ymd(occ.start_date),
            "end_date": to_ymd(occ.end_date),
            "days_in_range": occ.days_in_range,
            "pallet_days": occ.pallet_days,
            "pallet_weeks": str(occ.pallet_weeks.quantize(Decimal("0.0001"))),
            "handled_pallets": occ.handled_pallets,
            "rate_per_pallet_week": _rate(self.rate.rate_per_pallet_week),
            "handling_fee_flat": _rate(self.rate.handling_fee_flat),
            "handling_fee_per_pallet": _rate(self.rate.handling_fee_per_pallet),
            "payment_terms_days": self.rate.payment_terms_days,
            "currency": self.rate.currency,
            "due_date": to_ymd(self.due_date),
            "base_total": _money(self.base_total),
            "handling_total": _money(self.handling_total),
            "total": _money(self.total),
        }


@dataclass
class PaymentOutcome:
    invoice: Invoice
    payment: InvoicePayment | None
    deduped: bool = False

    @property
    def balance_due(self) -> Decimal:
        return round2(self.invoice.balance_due)

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "deduped": self.deduped,
            "invoice": self.invoice.to_dict(),
            "payment": self.payment.to_dict() if self.payment is not None else None,
            "balance_due": _money(self.balance_due),
        }


# =============================================================================
# RATES
# =============================================================================

def get_rate(customer_name) -> CustomerRate | None:
    customer = clean_text(customer_name, "customer_name", required=True, max_length=120)
    return db.session.get(CustomerRate, customer)


def list_rates() -> list[CustomerRate]:
    return db.session.query(CustomerRate).order_by(CustomerRate.customer_name.asc()).all()


def upsert_rate(
    *,
    customer_name,
    rate_per_pallet_week,
    handling_fee_flat=None,
    handling_fee_per_pallet=None,
    payment_terms_days=None,
    currency=None,
) -> CustomerRate:
    """Create or replace a customer's rate row."""
    customer = clean_text(customer_name, "customer_name", required=True, max_length=120)
    if is_blank(rate_per_pallet_week):
        raise ValidationError("rate_per_pallet_week is required")
    weekly = coerce_money(rate_per_pallet_week, "rate_per_pallet_week")
    flat = Decimal(0) if is_blank(handling_fee_flat) else coerce_money(handling_fee_flat, "handling_fee_flat")
    per_pallet = (
        Decimal(0)
        if is_blank(handling_fee_per_pallet)
        else coerce_money(handling_fee_per_pallet, "handling_fee_per_pallet")
    )
    terms = (
        current_app.config["DEFAULT_PAYMENT_TERMS_DAYS"]
        if is_blank(payment_terms_days)
        else coerce_payment_terms(payment_terms_days)
    )
    code = coerce_currency(currency, current_app.config["DEFAULT_CURRENCY"])

    with unit_of_work() as session:
        rate = session.get(CustomerRate, customer)
        if rate is None:
            rate = CustomerRate(customer_name=customer)
            session.add(rate)
        rate.rate_per_pallet_week = weekly
        rate.handling_fee_flat = flat
        rate.handling_fee_per_pallet = per_pallet
        rate.payment_terms_days = terms
        rate.currency = code
        rate.updated_at = utcnow()
    return rate


def resolve_effective_rate(customer_name: str, overrides: dict | None = None) -> EffectiveRate:
    """
    Overlay per-call overrides onto the stored rate, field by field.

    A blank override means "use the stored value". Without a stored weekly
    rate an override is mandatory.
    """
    overrides = overrides or {}
    stored = db.session.get(CustomerRate, customer_name)

    def _pick_money(field: str) -> Decimal | None:
        raw = overrides.get(field)
        if not is_blank(raw):
            return coerce_money(raw, field)
        if stored is not None:
            return Decimal(getattr(stored, field) or 0)
        return None

    weekly = _pick_money("rate_per_pallet_week")
    if weekly is None:
        raise ValidationError(
            "No valid customer weekly rate found. Set a rate first or pass rate_per_pallet_week."
        )
    flat = _pick_money("handling_fee_flat") or Decimal(0)
    per_pallet = _pick_money("handling_fee_per_pallet") or Decimal(0)

    raw_terms = overrides.get("payment_terms_days")
    if not is_blank(raw_terms):
        terms = coerce_payment_terms(raw_terms)
    elif stored is not None:
        terms = stored.payment_terms_days
    else:
        terms = current_app.config["DEFAULT_PAYMENT_TERMS_DAYS"]

    currency = stored.currency if stored is not None else current_app.config["DEFAULT_CURRENCY"]
    return EffectiveRate(
        rate_per_pallet_week=weekly,
        handling_fee_flat=flat,
        handling_fee_per_pallet=per_pallet,
        payment_terms_days=terms,
        currency=currency,
    )


# =============================================================================
# INVOICES
# =============================================================================

def preview_invoice(customer_name, start, end, overrides: dict | None = None) -> InvoicePreview:
    """Compute an invoice from the replay engine and the effective rate; nothing is stored."""
    customer = clean_text(customer_name, "customer_name", required=True, max_length=120)
    occupancy = compute_occupancy(customer, start, end)
    rate = resolve_effective_rate(customer, overrides)

    base_total = round2(occupancy.pallet_weeks * rate.rate_per_pallet_week)
    handling_total = round2(
        rate.handling_fee_flat + rate.handling_fee_per_pallet * occupancy.handled_pallets
    )
    total = round2(base_total + handling_total)

    return InvoicePreview(
        customer_name=customer,
        occupancy=occupancy,
        rate=rate,
        base_total=base_total,
        handling_total=handling_total,
        total=total,
        due_date=occupancy.end_date + timedelta(days=rate.payment_terms_days),
    )


def week_range(week_start) -> tuple[date, date]:
    start = parse_ymd(week_start)
    if start is None:
        raise ValidationError("week_start must be YYYY-MM-DD")
    return start, start + timedelta(days=6)


def generate_invoice(
    customer_name,
    start=None,
    end=None,
    overrides: dict | None = None,
    *,
    week_start=None,
) -> Invoice:
    """
    Persist an invoice snapshot.

    Either (start, end) or week_start (a seven-day cycle) must be supplied.
    """
    if is_blank(start) and not is_blank(week_start):
        start, end = week_range(week_start)
    if is_blank(start) or is_blank(end):
        raise ValidationError("customer_name and either (start_date + end_date) or week_start are required")

    with unit_of_work() as session:
        preview = preview_invoice(customer_name, start, end, overrides)
        occ = preview.occupancy
        invoice = Invoice(
            customer_name=preview.customer_name,
            start_date=occ.start_date,
            end_date=occ.end_date,
            billing_cycle=BILLING_CYCLE_WEEKLY,
            days_in_range=occ.days_in_range,
            pallet_days=occ.pallet_days,
            handled_pallets=occ.handled_pallets,
            rate_per_pallet_week=preview.rate.rate_per_pallet_week,
            handling_fee_flat=preview.rate.handling_fee_flat,
            handling_fee_per_pallet=preview.rate.handling_fee_per_pallet,
            payment_terms_days=preview.rate.payment_terms_days,
            currency=preview.rate.currency,
            base_total=preview.base_total,
            handling_total=preview.handling_total,
            total=preview.total,
            due_date=preview.due_date,
            amount_paid=Decimal(0),
            status=INVOICE_STATUS_DRAFT,
            created_at=utcnow(),
        )
        session.add(invoice)
    current_app.logger.info(
        "Generated invoice %s for %s (%s..%s) total %s",
        invoice.id, invoice.customer_name, occ.start_date, occ.end_date, preview.total,
    )
    return invoice


def get_invoice(invoice_id) -> Invoice:
    try:
        ident = coerce_int(invoice_id, "invoice id")
    except ValidationError:
        raise ValidationError("Invalid invoice id")
    if ident <= 0:
        raise ValidationError("Invalid invoice id")
    invoice = db.session.get(Invoice, ident)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def _check_invoice_version(invoice: Invoice, expected_version) -> None:
    if is_blank(expected_version):
        return
    if coerce_int(expected_version, "expected_version") != invoice.version_id:
        raise VersionConflictError("Invoice was updated by another user. Refresh and retry.")


def set_invoice_status(invoice_id, status, *, expected_version=None) -> Invoice:
    """
    Operator-driven status change.

    DRAFT clears sent_at/paid_at; SENT stamps sent_at if missing and clears
    paid_at; PAID stamps sent_at if missing and paid_at now.
    """
    new_status = str(status or "").strip().upper()
    if new_status not in INVOICE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(INVOICE_STATUSES)}")

    with unit_of_work():
        invoice = get_invoice(invoice_id)
        _check_invoice_version(invoice, expected_version)
        now = utcnow()
        if new_status == INVOICE_STATUS_DRAFT:
            invoice.sent_at = None
            invoice.paid_at = None
        elif new_status == INVOICE_STATUS_SENT:
            invoice.sent_at = invoice.sent_at or now
            invoice.paid_at = None
        else:
            invoice.sent_at = invoice.sent_at or now
            invoice.paid_at = now
        invoice.status = new_status
    return invoice


def _payment_for_key(key: str, invoice_id: int) -> InvoicePayment | None:
    payment = db.session.query(InvoicePayment).filter_by(idempotency_key=key).first()
    if payment is not None and payment.invoice_id != invoice_id:
        raise ConflictError("idempotency_key already used for a different invoice")
    return payment


def record_payment(
    invoice_id,
    amount,
    *,
    note=None,
    paid_at=None,
    idempotency_key=None,
    expected_version=None,
) -> PaymentOutcome:
    """
    Append a payment and advance the invoice state machine.

    Balance <= 0 -> PAID with paid_at stamped; otherwise paid_at is cleared
    and DRAFT advances to SENT.
    A repeated idempotency_key returns the invoice untouched (deduped).
    """
    value = coerce_payment_amount(amount)
    memo = clean_text(note, "note", max_length=255)
    key = clean_text(idempotency_key, "idempotency_key", max_length=128)
    if paid_at is not None and not isinstance(paid_at, (str, datetime)):
        raise ValidationError("paid_at must be an ISO-8601 datetime")
    try:
        paid_time = parse_iso_datetime(paid_at) if isinstance(paid_at, str) else paid_at
    except ValueError:
        raise ValidationError("paid_at must be an ISO-8601 datetime")
    paid_time = paid_time or utcnow()

    invoice = get_invoice(invoice_id)
    if key:
        existing = _payment_for_key(key, invoice.id)
        if existing is not None:
            current_app.logger.info("Deduplicated payment %s on invoice %s", key, invoice.id)
            return PaymentOutcome(invoice=invoice, payment=existing, deduped=True)

    try:
        with unit_of_work():
            invoice = get_invoice(invoice_id)
            _check_invoice_version(invoice, expected_version)

            payment = InvoicePayment(
                invoice_id=invoice.id,
                amount=value,
                note=memo,
                paid_at=paid_time,
                idempotency_key=key,
                created_at=utcnow(),
            )
            db.session.add(payment)

            invoice.amount_paid = round2(Decimal(invoice.amount_paid or 0) + value)
            invoice.last_payment_at = paid_time
            invoice.sent_at = invoice.sent_at or paid_time
            if round2(invoice.balance_due) <= 0:
                invoice.payment_status = PAYMENT_STATUS_PAID
                invoice.status = INVOICE_STATUS_PAID
                invoice.paid_at = paid_time
            else:
                invoice.payment_status = PAYMENT_STATUS_PARTIAL
                invoice.paid_at = None
                if invoice.status == INVOICE_STATUS_DRAFT:
                    invoice.status = INVOICE_STATUS_SENT
    except IntegrityError as exc:
        if key:
            existing = _payment_for_key(key, invoice.id)
            if existing is not None:
                current_app.logger.info("Deduplicated payment %s on invoice %s", key, invoice.id)
                return PaymentOutcome(invoice=get_invoice(invoice.id), payment=existing, deduped=True)
        raise ConflictError("Payment could not be recorded") from exc

    return PaymentOutcome(invoice=invoice, payment=payment)


def list_invoices(*, customer_name=None, limit: int = 200) -> list[Invoice]:
    q = db.session.query(Invoice)
    if customer_name:
        q = q.filter(Invoice.customer_name == customer_name)
    limit = max(1, min(int(limit), 1000))
    return q.order_by(Invoice.id.desc()).limit(limit).all()


AGING_BUCKETS = ("current", "d1_30", "d31_60", "d61_plus")


def _aging_bucket(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "current"
    if days_overdue <= 30:
        return "d1_30"
    if days_overdue <= 60:
        return "d31_60"
    return "d61_plus"


def aging_report(as_of=None) -> dict:
    """Outstanding balances bucketed by days past due_date as of a calendar day."""
    if is_blank(as_of):
        today = utcnow().date()
    else:
        today = parse_ymd(as_of)
        if today is None:
            raise ValidationError("as_of must be YYYY-MM-DD")

    totals = {name: {"count": 0, "amount": Decimal(0)} for name in AGING_BUCKETS}
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.status != INVOICE_STATUS_PAID)
        .order_by(Invoice.id.asc())
        .all()
    )
    for invoice in invoices:
        balance = round2(invoice.balance_due)
        if balance <= 0:
            continue
        bucket = totals[_aging_bucket((today - invoice.due_date).days)]
        bucket["count"] += 1
        bucket["amount"] += balance

    outstanding = sum((b["amount"] for b in totals.values()), Decimal(0))
    return {
        "ok": True,
        "as_of": to_ymd(today),
        "generated_at": to_utc_z(utcnow()),
        "buckets": {
            name: {"count": b["count"], "amount": _money(b["amount"])}
            for name, b in totals.items()
        },
        "total_outstanding": _money(outstanding),
        "total_count": sum(b["count"] for b in totals.values()),
    }
