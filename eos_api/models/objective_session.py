"""
models/objective_session.py — one row per user per calendar day.

Table: objective_sessions
The UNIQUE (user_id, session_date) constraint is what makes daily session
creation idempotent; inserts go through ON CONFLICT DO NOTHING.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from eos_api.database import Base

# Session status values
PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
MISSED = "missed"
ACCEPTED = "accepted"


class ObjectiveSessionORM(Base):
    """
    ORM model for a day's progress toward the user's objective.

    payout_amount_cents: copied from the user when the session is created so
                         a later pledge change does not alter today's stake
                         (settings changes reset it explicitly).
    payout_triggered:    claimed atomically by the sweep before any money moves.
    """
    __tablename__ = "objective_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "session_date", name="uq_objective_sessions_user_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    objective_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_count: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deadline: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PENDING, index=True)
    payout_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payout_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_transaction_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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
