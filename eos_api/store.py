"""
store.py — Data access facade for EOS.

Provides the queries every service needs so that no route builds SQL inline.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM / Core expression queries only
  - flush() not commit() — the caller (get_db() or the per-item transaction
    in the sweep) owns the transaction boundary
  - Guarded state changes are single conditional UPDATEs that report whether
    they matched, never read-then-write pairs
  - Logs only ids and amounts — never emails, passwords or tokens
"""
import logging
from datetime import date
from typing import Any, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from eos_api.models.ledger import (
    CHARITY_PAID_OUT,
    CHARITY_PENDING,
    STATUS_PENDING,
    CharityPayoutORM,
    TransactionORM,
    WithdrawalRequestORM,
)
from eos_api.models.objective_session import (
    ACCEPTED,
    IN_PROGRESS,
    MISSED,
    PENDING,
    ObjectiveSessionORM,
)
from eos_api.models.recipient import (
    INVITE_ACCEPTED,
    INVITE_PENDING,
    RecipientInviteORM,
    RecipientORM,
)
from eos_api.models.user import UserORM

logger = logging.getLogger(__name__)

# Statuses the sweep still has to look at
SWEEPABLE_STATUSES = (PENDING, IN_PROGRESS, MISSED)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# User operations
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: str) -> Optional[UserORM]:
    result = await db.execute(select(UserORM).where(UserORM.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[UserORM]:
    result = await db.execute(
        select(UserORM).where(UserORM.email == normalize_email(email))
    )
    return result.scalar_one_or_none()


async def lock_user(db: AsyncSession, user_id: str) -> Optional[UserORM]:
    """
    Load a user with SELECT ... FOR UPDATE so balance reads and writes inside
    the current transaction are serialized per user.
    populate_existing refreshes an instance already in the identity map.
    """
    result = await db.execute(
        select(UserORM)
        .where(UserORM.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_committed_users(db: AsyncSession) -> list[UserORM]:
    result = await db.execute(
        select(UserORM).where(UserORM.payout_committed.is_(True)).order_by(UserORM.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Recipient operations
# ---------------------------------------------------------------------------

async def get_recipient(db: AsyncSession, recipient_id: str) -> Optional[RecipientORM]:
    result = await db.execute(select(RecipientORM).where(RecipientORM.id == recipient_id))
    return result.scalar_one_or_none()


async def find_recipient(
    db: AsyncSession,
    phone: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[RecipientORM]:
    """Look a recipient up by phone first, then by email."""
    if phone:
        result = await db.execute(
            select(RecipientORM).where(RecipientORM.phone == phone).limit(1)
        )
        recipient = result.scalar_one_or_none()
        if recipient is not None:
            return recipient
    if email:
        result = await db.execute(
            select(RecipientORM).where(RecipientORM.email == normalize_email(email)).limit(1)
        )
        return result.scalar_one_or_none()
    return None


async def find_payout_account(db: AsyncSession, email: str) -> Optional[RecipientORM]:
    """Recipient row with a processor account for this email, if any."""
    result = await db.execute(
        select(RecipientORM)
        .where(
            RecipientORM.email == normalize_email(email),
            RecipientORM.processor_account_id.is_not(None),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Invite operations
# ---------------------------------------------------------------------------

async def get_invite_by_code(db: AsyncSession, code: str) -> Optional[RecipientInviteORM]:
    result = await db.execute(
        select(RecipientInviteORM).where(RecipientInviteORM.invite_code == code.strip().upper())
    )
    return result.scalar_one_or_none()


async def find_pending_invite(
    db: AsyncSession, payer_user_id: str, phone: str
) -> Optional[RecipientInviteORM]:
    result = await db.execute(
        select(RecipientInviteORM)
        .where(
            RecipientInviteORM.payer_user_id == payer_user_id,
            RecipientInviteORM.phone == phone,
            RecipientInviteORM.status == INVITE_PENDING,
        )
        .order_by(RecipientInviteORM.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_invites_with_recipients(
    db: AsyncSession, payer_user_id: str
) -> list[tuple[RecipientInviteORM, Optional[RecipientORM]]]:
    """All of a payer's invites, newest first, each with its recipient (if accepted)."""
    result = await db.execute(
        select(RecipientInviteORM, RecipientORM)
        .outerjoin(RecipientORM, RecipientORM.id == RecipientInviteORM.recipient_id)
        .where(RecipientInviteORM.payer_user_id == payer_user_id)
        .order_by(RecipientInviteORM.created_at.desc())
    )
    return [(invite, recipient) for invite, recipient in result.all()]


async def claim_pending_invite(db: AsyncSession, invite_id: str) -> bool:
    """Flip an invite pending → accepted; False when someone else already used it."""
    result = await db.execute(
        update(RecipientInviteORM)
        .where(
            RecipientInviteORM.id == invite_id,
            RecipientInviteORM.status == INVITE_PENDING,
        )
        .values(status=INVITE_ACCEPTED)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Objective session operations
# ---------------------------------------------------------------------------

async def get_session_for_date(
    db: AsyncSession, user_id: str, session_date: date
) -> Optional[ObjectiveSessionORM]:
    result = await db.execute(
        select(ObjectiveSessionORM)
        .where(
            ObjectiveSessionORM.user_id == user_id,
            ObjectiveSessionORM.session_date == session_date,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_session_by_id(db: AsyncSession, session_id: str) -> Optional[ObjectiveSessionORM]:
    result = await db.execute(
        select(ObjectiveSessionORM)
        .where(ObjectiveSessionORM.id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _insert_for(db: AsyncSession):
    """Dialect-specific insert() — both PostgreSQL and SQLite support ON CONFLICT."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def insert_session_if_absent(db: AsyncSession, values: dict[str, Any]) -> bool:
    """
    INSERT ... ON CONFLICT (user_id, session_date) DO NOTHING.

    Returns True when this call created the row. Concurrent callers for the
    same user/day converge on the single row the unique constraint allows.
    """
    insert = _insert_for(db)
    stmt = (
        insert(ObjectiveSessionORM.__table__)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["user_id", "session_date"])
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def list_sweep_candidates(
    db: AsyncSession,
) -> list[tuple[ObjectiveSessionORM, UserORM]]:
    """Unpaid sessions in a sweepable status, joined with their owner."""
    result = await db.execute(
        select(ObjectiveSessionORM, UserORM)
        .join(UserORM, UserORM.id == ObjectiveSessionORM.user_id)
        .where(
            ObjectiveSessionORM.status.in_(SWEEPABLE_STATUSES),
            ObjectiveSessionORM.payout_triggered.is_(False),
        )
        .order_by(ObjectiveSessionORM.session_date, ObjectiveSessionORM.created_at)
    )
    return [(session, user) for session, user in result.all()]


async def claim_session_for_payout(db: AsyncSession, session_id: str) -> bool:
    """
    Atomically flip payout_triggered false → true.

    Exactly one caller sees True for a given session; everyone else (an
    overlapping sweep, a retried request) sees False and must not move money.
    """
    result = await db.execute(
        update(ObjectiveSessionORM)
        .where(
            ObjectiveSessionORM.id == session_id,
            ObjectiveSessionORM.payout_triggered.is_(False),
            ObjectiveSessionORM.status.in_(SWEEPABLE_STATUSES),
        )
        .values(payout_triggered=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_session_accepted(db: AsyncSession, session_id: str) -> bool:
    """Late-completion correction; only applies while no payout was triggered."""
    result = await db.execute(
        update(ObjectiveSessionORM)
        .where(
            ObjectiveSessionORM.id == session_id,
            ObjectiveSessionORM.payout_triggered.is_(False),
            ObjectiveSessionORM.status.in_(SWEEPABLE_STATUSES),
        )
        .values(status=ACCEPTED)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_session_missed(db: AsyncSession, session_id: str, transaction_id: str) -> None:
    """Final state of a claimed session once its payout is recorded."""
    await db.execute(
        update(ObjectiveSessionORM)
        .where(ObjectiveSessionORM.id == session_id)
        .values(status=MISSED, payout_transaction_id=transaction_id)
        .execution_options(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Transaction operations
# ---------------------------------------------------------------------------

async def add_transaction(db: AsyncSession, **values: Any) -> TransactionORM:
    """Append a ledger row and flush so its id is available to the caller."""
    tx = TransactionORM(**values)
    db.add(tx)
    await db.flush()
    logger.info(
        "Ledger append tx_id=%s user_id=%s type=%s status=%s amount_cents=%d",
        tx.id,
        tx.user_id,
        tx.type,
        tx.status,
        tx.amount_cents,
    )
    return tx


async def get_transaction(db: AsyncSession, tx_id: str) -> Optional[TransactionORM]:
    result = await db.execute(select(TransactionORM).where(TransactionORM.id == tx_id))
    return result.scalar_one_or_none()


async def get_transaction_by_reference(
    db: AsyncSession, reference: str
) -> Optional[TransactionORM]:
    result = await db.execute(
        select(TransactionORM).where(TransactionORM.processor_reference == reference)
    )
    return result.scalar_one_or_none()


async def list_transactions(
    db: AsyncSession, user_id: str, limit: int = 100
) -> list[TransactionORM]:
    """Transactions where the user is the account owner or the credited recipient."""
    result = await db.execute(
        select(TransactionORM)
        .where(
            or_(
                TransactionORM.user_id == user_id,
                TransactionORM.recipient_user_id == user_id,
            )
        )
        .order_by(TransactionORM.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Withdrawal queue operations
# ---------------------------------------------------------------------------

async def list_pending_withdrawal_ids(db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(WithdrawalRequestORM.id)
        .where(WithdrawalRequestORM.status == STATUS_PENDING)
        .order_by(WithdrawalRequestORM.created_at)
    )
    return list(result.scalars().all())


async def lock_pending_withdrawal(db: AsyncSession, request_id: str) -> Optional[WithdrawalRequestORM]:
    """The request row, locked, if it is still pending; None once another worker finished it."""
    result = await db.execute(
        select(WithdrawalRequestORM)
        .where(
            WithdrawalRequestORM.id == request_id,
            WithdrawalRequestORM.status == STATUS_PENDING,
        )
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def list_pending_withdrawals(db: AsyncSession, user_id: str) -> list[WithdrawalRequestORM]:
    result = await db.execute(
        select(WithdrawalRequestORM)
        .where(
            WithdrawalRequestORM.user_id == user_id,
            WithdrawalRequestORM.status == STATUS_PENDING,
        )
        .order_by(WithdrawalRequestORM.created_at.desc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Charity operations
# ---------------------------------------------------------------------------

async def charity_totals(db: AsyncSession) -> list[dict[str, Any]]:
    """Per-charity sums of forfeited stakes, split by payout status."""
    pending = case((CharityPayoutORM.status == CHARITY_PENDING, CharityPayoutORM.amount_cents), else_=0)
    paid = case((CharityPayoutORM.status == CHARITY_PAID_OUT, CharityPayoutORM.amount_cents), else_=0)
    result = await db.execute(
        select(
            CharityPayoutORM.charity_name,
            func.sum(CharityPayoutORM.amount_cents),
            func.sum(pending),
            func.sum(paid),
            func.count(CharityPayoutORM.id),
        )
        .group_by(CharityPayoutORM.charity_name)
        .order_by(CharityPayoutORM.charity_name)
    )
    return [
        {
            "charity_name": name,
            "total_cents": int(total or 0),
            "pending_cents": int(pending_cents or 0),
            "paid_out_cents": int(paid_cents or 0),
            "payout_count": count,
        }
        for name, total, pending_cents, paid_cents, count in result.all()
    ]


async def mark_charity_paid_out(db: AsyncSession, charity_name: str) -> int:
    """Flip every pending row for one charity to paid_out; returns the row count."""
    result = await db.execute(
        update(CharityPayoutORM)
        .where(
            CharityPayoutORM.charity_name == charity_name,
            CharityPayoutORM.status == CHARITY_PENDING,
        )
        .values(status=CHARITY_PAID_OUT)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
