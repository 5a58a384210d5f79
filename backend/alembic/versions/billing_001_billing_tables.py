"""Billing: itinerary sources, quotations, invoices, receipts and drafts

Revision ID: billing_001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "billing_001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False))
    return cols


def _pricing_columns() -> list[sa.Column]:
    return [
        sa.Column("mode", sa.String(length=20), nullable=False, server_default="summary"),
        sa.Column("items", JSONB, nullable=False, server_default="[]"),
        sa.Column("tax_rate", sa.Numeric(precision=5, scale=2), nullable=False, server_default="0"),
        sa.Column("discount_type", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("discount_value", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("service_charge_rate", sa.Numeric(precision=5, scale=2), nullable=False, server_default="0"),
    ]


def _totals_columns() -> list[sa.Column]:
    return [
        sa.Column("subtotal", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("service_charge_amount", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(precision=12, scale=2), nullable=False),
    ]


def upgrade() -> None:
    # --- Itinerary sources ---
    op.create_table("packages",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("itinerary", JSONB, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table("customized_packages",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("base_package_id", sa.UUID(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("itinerary", JSONB, nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["base_package_id"], ["packages.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table("leads",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=False),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="new"),
        sa.Column("package_id", sa.UUID(), nullable=True),
        sa.Column("customized_package_id", sa.UUID(), nullable=True),
        sa.Column("manual_itinerary_id", sa.UUID(), nullable=True),
        sa.Column("quote_sent", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("quote_amount", sa.Numeric(precision=12, scale=2), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"]),
        sa.ForeignKeyConstraint(["customized_package_id"], ["customized_packages.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table("manual_itineraries",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("lead_id", sa.UUID(), nullable=False),
        sa.Column("days", JSONB, nullable=False, server_default="[]"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lead_id"),
    )

    # --- Quotations ---
    op.create_table("quotations",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("quotation_number", sa.String(length=30), nullable=False),
        sa.Column("lead_id", sa.UUID(), nullable=False),
        sa.Column("package_id", sa.UUID(), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=False),
        sa.Column("customer_phone", sa.String(length=50), nullable=False),
        *_pricing_columns(),
        *_totals_columns(),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("valid_until", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("payment_terms", sa.Text(), nullable=True),
        sa.Column("converted_invoice_id", sa.UUID(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("revision_history", JSONB, nullable=False, server_default="[]"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"]),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quotation_number"),
    )
    op.create_index("ix_quotations_lead_id", "quotations", ["lead_id"])
    op.create_index("ix_quotations_status", "quotations", ["status"])

    # --- Invoices ---
    op.create_table("invoices",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("invoice_number", sa.String(length=30), nullable=False),
        sa.Column("lead_id", sa.UUID(), nullable=False),
        sa.Column("quotation_id", sa.UUID(), nullable=True),
        sa.Column("package_id", sa.UUID(), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=False),
        sa.Column("customer_phone", sa.String(length=50), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False, server_default="invoice"),
        *_pricing_columns(),
        *_totals_columns(),
        sa.Column("paid_amount", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("outstanding_amount", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="unpaid"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("payment_terms", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"]),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"]),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number"),
    )
    op.create_index("ix_invoices_lead_id", "invoices", ["lead_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_status_due", "invoices", ["status", "due_date"])

    # --- Payment receipts ---
    op.create_table("payment_receipts",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("receipt_number", sa.String(length=30), nullable=False),
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("lead_id", sa.UUID(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("payment_details", JSONB, nullable=False, server_default="{}"),
        sa.Column("transaction_id", sa.String(length=100), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_type", sa.String(length=20), nullable=False, server_default="installment"),
        sa.Column("receipt_status", sa.String(length=20), nullable=False, server_default="partial-payment"),
        sa.Column("previous_balance", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("outstanding_balance", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("receipt_number"),
    )
    op.create_index("ix_payment_receipts_invoice_id", "payment_receipts", ["invoice_id"])
    op.create_index("ix_payment_receipts_lead_id", "payment_receipts", ["lead_id"])
    op.create_index("ix_payment_receipts_payment_date", "payment_receipts", ["payment_date"])

    # --- Quotation drafts (one per lead) ---
    op.create_table("quotation_drafts",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("lead_id", sa.UUID(), nullable=False),
        sa.Column("package_id", sa.UUID(), nullable=True),
        sa.Column("source_type", sa.String(length=20), nullable=False, server_default="none"),
        *_pricing_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lead_id"),
    )


def downgrade() -> None:
    op.drop_table("quotation_drafts")
    op.drop_index("ix_payment_receipts_payment_date", table_name="payment_receipts")
    op.drop_index("ix_payment_receipts_lead_id", table_name="payment_receipts")
    op.drop_index("ix_payment_receipts_invoice_id", table_name="payment_receipts")
    op.drop_table("payment_receipts")
    op.drop_index("ix_invoices_status_due", table_name="invoices")
    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_index("ix_invoices_lead_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_quotations_status", table_name="quotations")
    op.drop_index("ix_quotations_lead_id", table_name="quotations")
    op.drop_table("quotations")
    op.drop_table("manual_itineraries")
    op.drop_table("leads")
    op.drop_table("customized_packages")
    op.drop_table("packages")
