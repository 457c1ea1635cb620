"""
models/recipient.py — payees, the invites that create them, and payout rules.

Tables: recipients, recipient_invites, payout_rules
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from eos_api.database import Base

# Invite status values
INVITE_PENDING = "pending"
INVITE_ACCEPTED = "accepted"
INVITE_AVAILABLE = "available"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecipientORM(Base):
    """A person who receives forfeited stakes. Looked up by phone, then email."""
    __tablename__ = "recipients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="individual")
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    processor_account_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Stripe connected account id, set by hybrid onboarding",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)


class RecipientInviteORM(Base):
    """
    One-time code binding a payer to a phone number.

    status: pending until accepted; accepted invites whose recipient is not the
            payer's selected one are denormalized to 'available'.
    """
    __tablename__ = "recipient_invites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payer_user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    invite_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=INVITE_PENDING)
    recipient_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("recipients.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )


class PayoutRuleORM(Base):
    """Fixed-amount rule associating a payer with an accepted recipient."""
    __tablename__ = "payout_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payer_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipients.id", ondelete="CASCADE"), nullable=False
    )
    fixed_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
