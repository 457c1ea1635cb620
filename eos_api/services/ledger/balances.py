"""
balances.py — the only code that changes users.balance_cents.

Every mutation locks the user row (SELECT ... FOR UPDATE) and applies the
change as a delta expression in SQL, inside the caller's transaction.
"""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from eos_api import store
from eos_api.errors import InsufficientFunds, NotFound
from eos_api.models.user import UserORM

logger = logging.getLogger(__name__)


async def _locked(db: AsyncSession, user_id: str) -> UserORM:
    user = await store.lock_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def _apply_delta(db: AsyncSession, user: UserORM, delta_cents: int) -> int:
    user.balance_cents = UserORM.balance_cents + delta_cents
    await db.flush()
    await db.refresh(user, ["balance_cents"])
    return user.balance_cents


async def credit(db: AsyncSession, user_id: str, amount_cents: int) -> int:
    """Add to a balance; returns the new balance."""
    user = await _locked(db, user_id)
    balance = await _apply_delta(db, user, amount_cents)
    logger.info("Balance credit user_id=%s amount_cents=%d balance_cents=%d", user_id, amount_cents, balance)
    return balance


async def debit(
    db: AsyncSession, user_id: str, amount_cents: int, allow_partial: bool = False
) -> tuple[int, int]:
    """
    Subtract from a balance; returns (amount actually debited, new balance).

    With allow_partial the debit is capped at the available balance, otherwise
    a short balance raises InsufficientFunds and nothing changes.
    """
    user = await _locked(db, user_id)
    available = user.balance_cents
    if allow_partial:
        amount_cents = min(amount_cents, available)
    elif available < amount_cents:
        raise InsufficientFunds(amount_cents, available)
    balance = await _apply_delta(db, user, -amount_cents)
    logger.info("Balance debit user_id=%s amount_cents=%d balance_cents=%d", user_id, amount_cents, balance)
    return amount_cents, balance


def balance_view(user: UserORM) -> dict[str, Any]:
    # activeBalanceCents mirrors balanceCents for older clients
    return {
        "balanceCents": user.balance_cents,
        "activeBalanceCents": user.balance_cents,
        "balanceDollars": round(user.balance_cents / 100, 2),
    }
