"""
models/user.py — SQLAlchemy ORM model for EOS users.

Table: users
One row per account. Holds identity, the daily objective configuration,
the payout commitment and the spendable balance.

balance_cents is the single authoritative balance column. The legacy
"active balance" mirror is computed at serialization time, never stored.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from eos_api.database import Base


class UserORM(Base):
    """ORM model for a user profile plus objective and payout configuration."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
        index=True,
        comment="Lower-cased, trimmed — the upsert key for POST /users/profile",
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Objective configuration ---
    objective_type: Mapped[str] = mapped_column(String(32), nullable=False, default="pushups")
    objective_count: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    objective_schedule: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="daily",
        comment="'daily' or 'weekdays'",
    )
    objective_deadline: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        default="09:00",
        comment="Local time-of-day HH:MM in the user's timezone",
    )
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # --- Payout configuration ---
    missed_goal_payout_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payout_destination: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="charity",
        comment="'charity' or 'custom'",
    )
    payout_committed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    destination_committed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    committed_destination: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    committed_charity: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    custom_recipient_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    committed_recipient_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
