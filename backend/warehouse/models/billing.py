from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from warehouse.time_utils import to_utc_z, to_ymd

INVOICE_STATUS_DRAFT = "DRAFT"
INVOICE_STATUS_SENT = "SENT"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUSES = (INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT, INVOICE_STATUS_PAID)

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"

BILLING_CYCLE_WEEKLY = "WEEKLY"


def _money(value) -> str | None:
    """Decimal -> fixed 2dp string for JSON (never float)."""
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


def _rate(value) -> str | None:
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


class CustomerRate(db.Model):
    """Per-customer storage and handling rates. Plain CRUD; read by billing."""
    __tablename__ = "customer_rates"

    customer_name = db.Column(db.String(120), primary_key=True)
    rate_per_pallet_week = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    handling_fee_flat = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    handling_fee_per_pallet = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    payment_terms_days = db.Column(db.Integer, nullable=False, default=7)
    currency = db.Column(db.String(3), nullable=False, default="GBP")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "rate_per_pallet_week": _rate(self.rate_per_pallet_week),
            "handling_fee_flat": _rate(self.handling_fee_flat),
            "handling_fee_per_pallet": _rate(self.handling_fee_per_pallet),
            "payment_terms_days": self.payment_terms_days,
            "currency": self.currency,
            "updated_at": to_utc_z(self.updated_at),
        }


class Invoice(db.Model):
    """
    Billing document built from a snapshot of occupancy replay + effective rate.

    Lifecycle: created once, then only status transitions and payments.
    Never deleted. version_id guards concurrent status/payment writes.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer_created", "customer_name", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(120), nullable=False, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    billing_cycle = db.Column(db.String(16), nullable=False, default=BILLING_CYCLE_WEEKLY)

    # Occupancy snapshot
    days_in_range = db.Column(db.Integer, nullable=False)
    pallet_days = db.Column(db.Integer, nullable=False)
    handled_pallets = db.Column(db.Integer, nullable=False, default=0)

    # Effective rate snapshot
    rate_per_pallet_week = db.Column(db.Numeric(12, 4), nullable=False)
    handling_fee_flat = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    handling_fee_per_pallet = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    payment_terms_days = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    base_total = db.Column(db.Numeric(12, 2), nullable=False)
    handling_total = db.Column(db.Numeric(12, 2), nullable=False)
    total = db.Column(db.Numeric(12, 2), nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    # Payment tracking
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID)
    last_payment_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_DRAFT, index=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payments = db.relationship(
        "InvoicePayment",
        backref="invoice",
        lazy=True,
        order_by="InvoicePayment.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due(self) -> Decimal:
        return Decimal(self.total) - Decimal(self.amount_paid or 0)

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} customer={self.customer_name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "start_date": to_ymd(self.start_date),
            "end_date": to_ymd(self.end_date),
            "billing_cycle": self.billing_cycle,
            "days_in_range": self.days_in_range,
            "pallet_days": self.pallet_days,
            "handled_pallets": self.handled_pallets,
            "rate_per_pallet_week": _rate(self.rate_per_pallet_week),
            "handling_fee_flat": _rate(self.handling_fee_flat),
            "handling_fee_per_pallet": _rate(self.handling_fee_per_pallet),
            "payment_terms_days": self.payment_terms_days,
            "currency": self.currency,
            "base_total": _money(self.base_total),
            "handling_total": _money(self.handling_total),
            "total": _money(self.total),
            "due_date": to_ymd(self.due_date),
            "amount_paid": _money(self.amount_paid),
            "balance_due": _money(self.balance_due),
            "payment_status": self.payment_status,
            "last_payment_at": to_utc_z(self.last_payment_at),
            "status": self.status,
            "sent_at": to_utc_z(self.sent_at),
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
            "payments": [p.to_dict() for p in self.payments],
        }


class InvoicePayment(db.Model):
    """One recorded payment against an invoice, in recording order."""
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_invoice_payments_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    idempotency_key = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": _money(self.amount),
            "note": self.note,
            "paid_at": to_utc_z(self.paid_at),
            "idempotency_key": self.idempotency_key,
        }
