"""
models/ledger.py — balance-affecting records.

Tables: transactions, charity_payouts, withdrawal_requests

transactions is append-only from the application's point of view: rows are
inserted once and only their status moves forward (pending → completed/failed).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from eos_api.database import Base, JSONType

# Transaction types
TX_PAYOUT = "payout"
TX_WITHDRAWAL = "withdrawal"
TX_DEPOSIT = "deposit"

# Transaction / request status values
STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

CHARITY_PENDING = "pending"
CHARITY_PAID_OUT = "paid_out"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionORM(Base):
    """
    Ledger row.

    user_id:             the account whose balance the row describes (payer for payouts).
    recipient_user_id:   credited platform user for custom payouts, else NULL.
    processor_reference: Stripe object id (payment intent / transfer). UNIQUE so a
                         deposit for the same payment intent is credited once.
    """
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_user_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    processor_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)


class CharityPayoutORM(Base):
    """Forfeited stake held in the platform account for a named charity."""
    __tablename__ = "charity_payouts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    charity_name: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=CHARITY_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)


class WithdrawalRequestORM(Base):
    """Outbound transfer that could not be completed immediately; retried by the queue."""
    __tablename__ = "withdrawal_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_id: Mapped[str] = mapped_column(String(36), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    destination_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )
