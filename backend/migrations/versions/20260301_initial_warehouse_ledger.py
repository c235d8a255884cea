"""Initial warehouse schema: locations, pallets, ledger records and billing

Revision ID: 20260301_initial_ledger
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "locations",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("aisle", sa.String(length=16), nullable=True),
        sa.Column("rack", sa.Integer(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.Column("capacity_pallets", sa.Integer(), nullable=True),
        sa.Column("location_type", sa.String(length=16), nullable=False, server_default="rack"),
        sa.Column("is_occupied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "pallets",
        sa.Column("row_id", sa.Integer(), nullable=False),
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=120), nullable=False),
        sa.Column("product_id", sa.String(length=120), nullable=False),
        sa.Column("location", sa.String(length=32), nullable=True),
        sa.Column("pallet_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("product_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_units", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parts", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("scanned_by", sa.String(length=120), nullable=True),
        sa.Column("date_added", sa.DateTime(timezone=True), nullable=False),
        sa.Column("date_removed", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("current_units >= 0", name="ck_pallets_current_units_nonneg"),
        sa.CheckConstraint("pallet_quantity >= 0", name="ck_pallets_pallet_quantity_nonneg"),
        sa.PrimaryKeyConstraint("row_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_pallets_id", "pallets", ["id"], unique=False)
    op.create_index("ix_pallets_product_id", "pallets", ["product_id"], unique=False)
    op.create_index("ix_pallets_status_location", "pallets", ["status", "location"], unique=False)
    op.create_index("ix_pallets_customer_status", "pallets", ["customer_name", "status"], unique=False)
    # A pallet id may repeat across removed rows but only once among active rows.
    op.create_index(
        "uq_pallets_active_id",
        "pallets",
        ["id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "ledger_records",
        sa.Column("sequence_id", sa.Integer(), nullable=False),
        sa.Column("pallet_id", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=120), nullable=False),
        sa.Column("product_id", sa.String(length=120), nullable=True),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("quantity_changed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity_before", sa.Integer(), nullable=True),
        sa.Column("quantity_after", sa.Integer(), nullable=True),
        sa.Column("location", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("scanned_by", sa.String(length=120), nullable=False, server_default="Unknown"),
        sa.Column("actor_id", sa.String(length=120), nullable=False, server_default="anonymous"),
        sa.Column("client_session_id", sa.String(length=120), nullable=False, server_default="unknown"),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("sequence_id"),
        sa.UniqueConstraint("idempotency_key", name="uq_ledger_idempotency_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_records_pallet_id", "ledger_records", ["pallet_id"], unique=False)
    op.create_index("ix_ledger_records_action", "ledger_records", ["action"], unique=False)
    op.create_index("ix_ledger_records_timestamp", "ledger_records", ["timestamp"], unique=False)
    op.create_index(
        "ix_ledger_customer_timestamp", "ledger_records", ["customer_name", "timestamp", "sequence_id"], unique=False
    )
    op.create_index(
        "ix_ledger_pallet_action_timestamp", "ledger_records", ["pallet_id", "action", "timestamp"], unique=False
    )

    op.create_table(
        "customer_rates",
        sa.Column("customer_name", sa.String(length=120), nullable=False),
        sa.Column("rate_per_pallet_week", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("handling_fee_flat", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("handling_fee_per_pallet", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("payment_terms_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="GBP"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("customer_name"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(length=120), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("billing_cycle", sa.String(length=16), nullable=False, server_default="WEEKLY"),
        sa.Column("days_in_range", sa.Integer(), nullable=False),
        sa.Column("pallet_days", sa.Integer(), nullable=False),
        sa.Column("handled_pallets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rate_per_pallet_week", sa.Numeric(12, 4), nullable=False),
        sa.Column("handling_fee_flat", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("handling_fee_per_pallet", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("payment_terms_days", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("base_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("handling_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="UNPAID"),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_invoices_customer_name", "invoices", ["customer_name"], unique=False)
    op.create_index("ix_invoices_status", "invoices", ["status"], unique=False)
    op.create_index("ix_invoices_customer_created", "invoices", ["customer_name", "created_at"], unique=False)

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_invoice_payments_idempotency_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_invoice_payments_invoice_id", "invoice_payments", ["invoice_id"], unique=False)


def downgrade():
    op.drop_index("ix_invoice_payments_invoice_id", table_name="invoice_payments")
    op.drop_table("invoice_payments")

    op.drop_index("ix_invoices_customer_created", table_name="invoices")
    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_index("ix_invoices_customer_name", table_name="invoices")
    op.drop_table("invoices")

    op.drop_table("customer_rates")

    op.drop_index("ix_ledger_pallet_action_timestamp", table_name="ledger_records")
    op.drop_index("ix_ledger_customer_timestamp", table_name="ledger_records")
    op.drop_index("ix_ledger_records_timestamp", table_name="ledger_records")
    op.drop_index("ix_ledger_records_action", table_name="ledger_records")
    op.drop_index("ix_ledger_records_pallet_id", table_name="ledger_records")
    op.drop_table("ledger_records")

    op.drop_index("uq_pallets_active_id", table_name="pallets")
    op.drop_index("ix_pallets_customer_status", table_name="pallets")
    op.drop_index("ix_pallets_status_location", table_name="pallets")
    op.drop_index("ix_pallets_product_id", table_name="pallets")
    op.drop_index("ix_pallets_id", table_name="pallets")
    op.drop_table("pallets")

    op.drop_table("locations")
