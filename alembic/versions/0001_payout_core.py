"""payout core schema: subjects, payees, assignments, payout ledger, guardrails, audit

Revision ID: 0001_payout_core
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_payout_core"
down_revision = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _payout_state_columns():
    return [
        sa.Column("payout_status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("transfer_id", sa.String(length=128), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_error", sa.String(length=1024), nullable=True),
        sa.Column("payout_blockers", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
    ]


def _payee_columns():
    return [
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("stripe_account_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column("connect_status", sa.String(length=32), nullable=False, server_default=sa.text("'not_connected'")),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("onboarded_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    # bookings
    op.create_table(
        "bookings",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("quote_total_cents", sa.BigInteger(), nullable=True),
        sa.Column("quote_subtotal_cents", sa.BigInteger(), nullable=True),
        sa.Column("quote_tax_cents", sa.BigInteger(), nullable=True),
        sa.Column("quote_service_fee_cents", sa.BigInteger(), nullable=True),
        sa.Column("region_code", sa.String(length=16), nullable=True),
        sa.Column("surge_multiplier_snapshot", sa.Float(), nullable=True),
        sa.Column("chef_payout_base_cents", sa.BigInteger(), nullable=True),
        sa.Column("chef_payout_bonus_cents", sa.BigInteger(), nullable=True),
        sa.Column("chef_rate_multiplier", sa.Float(), nullable=True),
        sa.Column("fully_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("job_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_hold", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payout_hold_reason", sa.String(length=512), nullable=True),
        sa.Column("payout_released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("chef_payout_status", sa.String(length=32), nullable=True),
        sa.Column("chef_payout_blockers", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("chef_payout_amount_cents", sa.BigInteger(), nullable=True),
        sa.Column("chef_payout_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_transfer_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_bookings_fully_paid", "bookings", ["fully_paid_at"])

    # payees
    op.create_table(
        "chefs",
        *_payee_columns(),
        sa.Column("payout_percentage", sa.Float(), nullable=False, server_default=sa.text("70")),
    )
    op.create_table(
        "farmers",
        *_payee_columns(),
        sa.Column("payout_percentage", sa.Float(), nullable=False, server_default=sa.text("0")),
    )

    # cooperative
    op.create_table(
        "cooperative_members",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        sa.Column("impact_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("payout_share_percent", sa.Numeric(7, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("farmer_id", _uuid(), sa.ForeignKey("farmers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("chef_id", _uuid(), sa.ForeignKey("chefs.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("ix_cooperative_members_status", "cooperative_members", ["status"])

    op.create_table(
        "cooperative_periods",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("period", sa.String(length=32), nullable=False, unique=True),
        sa.Column("period_type", sa.String(length=16), nullable=False),
        sa.Column("total_profit_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_hold", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payout_hold_reason", sa.String(length=512), nullable=True),
        sa.Column("payout_released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("period_type IN ('monthly','quarterly','annual')", name="ck_cooperative_period_type"),
    )

    op.create_table(
        "cooperative_payouts",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("period_id", _uuid(), sa.ForeignKey("cooperative_periods.id", ondelete="CASCADE"), nullable=False),
        sa.Column("member_id", _uuid(), sa.ForeignKey("cooperative_members.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("impact_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("payout_share_percent", sa.Numeric(7, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cooperative_profit_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        *_payout_state_columns(),
        sa.UniqueConstraint("period_id", "member_id", name="uq_cooperative_payout_member"),
    )
    op.create_index("ix_cooperative_payouts_status", "cooperative_payouts", ["period_id", "payout_status"])

    # assignments
    op.create_table(
        "booking_chefs",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("booking_id", _uuid(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chef_id", _uuid(), sa.ForeignKey("chefs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("payout_percentage", sa.Float(), nullable=False),
        sa.Column("payout_amount_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        *_payout_state_columns(),
        sa.UniqueConstraint("booking_id", "chef_id", name="uq_booking_chef"),
    )
    op.create_index("ix_booking_chefs_status", "booking_chefs", ["booking_id", "payout_status"])

    op.create_table(
        "booking_farmers",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("booking_id", _uuid(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("farmer_id", _uuid(), sa.ForeignKey("farmers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=64), nullable=False, server_default=sa.text("'supplier'")),
        sa.Column("payout_percentage", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("payout_amount_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        *_payout_state_columns(),
        sa.UniqueConstraint("booking_id", "farmer_id", name="uq_booking_farmer"),
    )
    op.create_index("ix_booking_farmers_status", "booking_farmers", ["booking_id", "payout_status"])

    op.create_table(
        "booking_ingredients",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("booking_id", _uuid(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("farmer_id", _uuid(), sa.ForeignKey("farmers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ingredient_id", sa.String(length=128), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("fulfillment_status", sa.String(length=16), nullable=False, server_default=sa.text("'ordered'")),
        *_payout_state_columns(),
        sa.UniqueConstraint("booking_id", "ingredient_id", name="uq_booking_ingredient"),
    )
    op.create_index("ix_booking_ingredients_status", "booking_ingredients", ["booking_id", "payout_status"])

    # payout ledger (source of truth)
    op.create_table(
        "payout_ledger_entries",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("variant", sa.String(length=16), nullable=False),
        sa.Column("subject_id", _uuid(), nullable=False),
        sa.Column("payee_id", _uuid(), nullable=False),
        sa.Column("line_key", sa.String(length=128), nullable=False, server_default=sa.text("''")),
        sa.Column("assignment_id", _uuid(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("transfer_id", sa.String(length=128), nullable=True),
        sa.Column("error_message", sa.String(length=1024), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("variant", "subject_id", "payee_id", "line_key", name="uq_payout_ledger_payee"),
        sa.CheckConstraint("amount_cents > 0", name="ck_payout_ledger_amount_positive"),
        sa.CheckConstraint("status <> 'paid' OR transfer_id IS NOT NULL", name="ck_payout_ledger_paid_has_transfer"),
    )
    op.create_index("ix_payout_ledger_subject", "payout_ledger_entries", ["variant", "subject_id"])
    op.create_index("ix_payout_ledger_status", "payout_ledger_entries", ["status"])

    # guardrails
    op.create_table(
        "margin_guardrail_configs",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("region_code", sa.String(length=16), nullable=True, unique=True),
        sa.Column("min_gross_margin_pct", sa.Float(), nullable=False),
        sa.Column("max_bonus_plus_tier_pct", sa.Float(), nullable=False),
        sa.Column("max_surge_multiplier", sa.Float(), nullable=True),
        sa.Column("min_job_value_cents", sa.BigInteger(), nullable=True),
        sa.Column("block_or_warn", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    # at most one global row
    op.create_index(
        "uq_margin_guardrail_global",
        "margin_guardrail_configs",
        [sa.text("(region_code IS NULL)")],
        unique=True,
        postgresql_where=sa.text("region_code IS NULL"),
    )

    # audit (append-only)
    op.create_table(
        "audit_logs",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("subject_type", sa.String(length=32), nullable=False),
        sa.Column("subject_id", _uuid(), nullable=True),
        sa.Column("actor_user_id", sa.String(length=128), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.String(length=1024), nullable=True),
        sa.Column("details_json", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("details_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_audit_subject", "audit_logs", ["subject_type", "subject_id"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])
    op.create_index("ix_audit_created", "audit_logs", ["created_at"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_index("uq_margin_guardrail_global", table_name="margin_guardrail_configs")
    op.drop_table("margin_guardrail_configs")
    op.drop_table("payout_ledger_entries")
    op.drop_table("booking_ingredients")
    op.drop_table("booking_farmers")
    op.drop_table("booking_chefs")
    op.drop_table("cooperative_payouts")
    op.drop_table("cooperative_periods")
    op.drop_table("cooperative_members")
    op.drop_table("farmers")
    op.drop_table("chefs")
    op.drop_table("bookings")
