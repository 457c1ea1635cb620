"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000 UTC

Creates the EOS tables:
  - users                (identity, objective config, payout commitment, balance)
  - recipients           (payees, optional Stripe connected account)
  - recipient_invites    (one-time codes binding payer → recipient)
  - payout_rules         (fixed-amount payer → recipient association)
  - objective_sessions   (one row per user per day, UNIQUE (user_id, session_date))
  - transactions         (ledger, UNIQUE processor_reference)
  - charity_payouts      (forfeited stakes held for a named charity)
  - withdrawal_requests  (transfers awaiting retry)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users table ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, comment="Lower-cased, trimmed — the upsert key for POST /users/profile"),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=64), nullable=True),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("objective_type", sa.String(length=32), nullable=False, server_default="pushups"),
        sa.Column("objective_count", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("objective_schedule", sa.String(length=16), nullable=False, server_default="daily", comment="'daily' or 'weekdays'"),
        sa.Column("objective_deadline", sa.String(length=8), nullable=False, server_default="09:00", comment="Local time-of-day HH:MM in the user's timezone"),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("missed_goal_payout_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payout_destination", sa.String(length=16), nullable=False, server_default="charity", comment="'charity' or 'custom'"),
        sa.Column("payout_committed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("destination_committed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("committed_destination", sa.String(length=16), nullable=True),
        sa.Column("committed_charity", sa.String(length=120), nullable=True),
        sa.Column("custom_recipient_id", sa.String(length=36), nullable=True),
        sa.Column("committed_recipient_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    # --- recipients table ---
    op.create_table(
        "recipients",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("processor_account_id", sa.String(length=64), nullable=True, comment="Stripe connected account id, set by hybrid onboarding"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recipients_email"), "recipients", ["email"], unique=False)
    op.create_index(op.f("ix_recipients_phone"), "recipients", ["phone"], unique=False)

    # --- recipient_invites table ---
    op.create_table(
        "recipient_invites",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("payer_user_id", sa.String(length=36), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("invite_code", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("recipient_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["payer_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recipient_invites_payer_user_id"), "recipient_invites", ["payer_user_id"], unique=False)
    op.create_index(op.f("ix_recipient_invites_invite_code"), "recipient_invites", ["invite_code"], unique=True)

    # --- payout_rules table ---
    op.create_table(
        "payout_rules",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("payer_user_id", sa.String(length=36), nullable=False),
        sa.Column("recipient_id", sa.String(length=36), nullable=False),
        sa.Column("fixed_amount_cents", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["payer_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payout_rules_payer_user_id"), "payout_rules", ["payer_user_id"], unique=False)

    # --- objective_sessions table ---
    op.create_table(
        "objective_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("objective_type", sa.String(length=32), nullable=False),
        sa.Column("target_count", sa.Integer(), nullable=False),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deadline", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("payout_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payout_triggered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payout_transaction_id", sa.String(length=36), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "session_date", name="uq_objective_sessions_user_date"),
    )
    op.create_index(op.f("ix_objective_sessions_user_id"), "objective_sessions", ["user_id"], unique=False)
    op.create_index(op.f("ix_objective_sessions_status"), "objective_sessions", ["status"], unique=False)

    # --- transactions table ---
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("recipient_user_id", sa.String(length=36), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("processor_reference", sa.String(length=64), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recipient_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("processor_reference"),
    )
    op.create_index(op.f("ix_transactions_user_id"), "transactions", ["user_id"], unique=False)
    op.create_index(op.f("ix_transactions_recipient_user_id"), "transactions", ["recipient_user_id"], unique=False)

    # --- charity_payouts table ---
    op.create_table(
        "charity_payouts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=True),
        sa.Column("charity_name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_charity_payouts_user_id"), "charity_payouts", ["user_id"], unique=False)
    op.create_index(op.f("ix_charity_payouts_charity_name"), "charity_payouts", ["charity_name"], unique=False)

    # --- withdrawal_requests table ---
    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("transaction_id", sa.String(length=36), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("destination_account_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_withdrawal_requests_user_id"), "withdrawal_requests", ["user_id"], unique=False)
    op.create_index(op.f("ix_withdrawal_requests_status"), "withdrawal_requests", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_withdrawal_requests_status"), table_name="withdrawal_requests")
    op.drop_index(op.f("ix_withdrawal_requests_user_id"), table_name="withdrawal_requests")
    op.drop_table("withdrawal_requests")
    op.drop_index(op.f("ix_charity_payouts_charity_name"), table_name="charity_payouts")
    op.drop_index(op.f("ix_charity_payouts_user_id"), table_name="charity_payouts")
    op.drop_table("charity_payouts")
    op.drop_index(op.f("ix_transactions_recipient_user_id"), table_name="transactions")
    op.drop_index(op.f("ix_transactions_user_id"), table_name="transactions")
    op.drop_table("transactions")
    op.drop_index(op.f("ix_objective_sessions_status"), table_name="objective_sessions")
    op.drop_index(op.f("ix_objective_sessions_user_id"), table_name="objective_sessions")
    op.drop_table("objective_sessions")
    op.drop_index(op.f("ix_payout_rules_payer_user_id"), table_name="payout_rules")
    op.drop_table("payout_rules")
    op.drop_index(op.f("ix_recipient_invites_invite_code"), table_name="recipient_invites")
    op.drop_index(op.f("ix_recipient_invites_payer_user_id"), table_name="recipient_invites")
    op.drop_table("recipient_invites")
    op.drop_index(op.f("ix_recipients_phone"), table_name="recipients")
    op.drop_index(op.f("ix_recipients_email"), table_name="recipients")
    op.drop_table("recipients")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
