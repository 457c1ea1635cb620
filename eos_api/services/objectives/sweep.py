"""
sweep.py — Payout sweep over sessions whose deadline has passed.

Called by the external scheduler through POST /objectives/check-missed.

Per candidate, in its own transaction:
  1. Re-read the session; skip stale (older than stale_session_days) or not-yet-due ones
  2. Objective met      → mark accepted (no money moves)
  3. Lock the payer row, require a positive balance and stake
  4. Claim: UPDATE ... SET payout_triggered = true WHERE payout_triggered = false
  5. Debit min(balance, stake), credit the destination, append one Transaction,
     mark the session missed

A failure at any step rolls back that candidate only (claim included), is
logged, and the session is retried on the next pass. A Redis lock keeps two
overlapping scheduler triggers from scanning at the same time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eos_api import store
from eos_api.cache import sweep_lock
from eos_api.config import settings
from eos_api.errors import NotFound
from eos_api.models.ledger import STATUS_COMPLETED, TX_PAYOUT, CharityPayoutORM
from eos_api.models.objective_session import ObjectiveSessionORM
from eos_api.models.user import UserORM
from eos_api.services.ledger.balances import credit, debit
from eos_api.services.objectives.sessions import deadline_at, objective_met, user_zone

logger = logging.getLogger(__name__)

DESTINATION_CHARITY = "charity"
DESTINATION_CUSTOM = "custom"

# Outcome labels reported per session
OUTCOME_PAYOUT = "payout"
OUTCOME_ACCEPTED = "accepted"
OUTCOME_NOT_DUE = "not_due"
OUTCOME_STALE = "stale"
OUTCOME_NO_STAKE = "no_stake"
OUTCOME_NO_BALANCE = "no_balance"
OUTCOME_ALREADY_HANDLED = "already_handled"
OUTCOME_ERROR = "error"


def _outcome(session: ObjectiveSessionORM, outcome: str, **extra: Any) -> dict[str, Any]:
    return {"sessionId": session.id, "userId": session.user_id, "outcome": outcome, **extra}


def resolve_destination(user: UserORM) -> tuple[str, Optional[str]]:
    """(destination, recipient_id). Custom without a recipient falls back to charity."""
    destination = user.committed_destination or user.payout_destination or DESTINATION_CHARITY
    recipient_id = user.committed_recipient_id or user.custom_recipient_id
    if destination == DESTINATION_CUSTOM and not recipient_id:
        logger.warning("Custom destination without recipient user_id=%s, paying charity", user.id)
        return DESTINATION_CHARITY, None
    if destination != DESTINATION_CUSTOM:
        return DESTINATION_CHARITY, None
    return DESTINATION_CUSTOM, recipient_id


async def _resolve_recipient_user(db: AsyncSession, recipient_id: str) -> UserORM:
    recipient = await store.get_recipient(db, recipient_id)
    if recipient is None or not recipient.email:
        raise NotFound(f"Recipient {recipient_id} has no email on file")
    recipient_user = await store.get_user_by_email(db, recipient.email)
    if recipient_user is None:
        raise NotFound(f"Recipient {recipient_id} has no platform account")
    return recipient_user


async def process_candidate(
    db: AsyncSession, session_id: str, now: datetime
) -> dict[str, Any]:
    """Evaluate one session inside the caller's transaction."""
    session = await store.get_session_by_id(db, session_id)
    if session is None or session.payout_triggered or session.status not in store.SWEEPABLE_STATUSES:
        return {"sessionId": session_id, "outcome": OUTCOME_ALREADY_HANDLED}

    user = await store.get_user(db, session.user_id)
    zone = user_zone(user)
    local_now = now.astimezone(zone)

    if (local_now.date() - session.session_date).days > settings.stale_session_days:
        return _outcome(session, OUTCOME_STALE)
    if local_now < deadline_at(session, zone):
        return _outcome(session, OUTCOME_NOT_DUE)

    if objective_met(session.objective_type, session.completed_count, session.target_count):
        if await store.mark_session_accepted(db, session.id):
            logger.info("Session accepted session_id=%s count=%d/%d", session.id, session.completed_count, session.target_count)
            return _outcome(session, OUTCOME_ACCEPTED)
        return _outcome(session, OUTCOME_ALREADY_HANDLED)

    if session.payout_amount_cents <= 0:
        return _outcome(session, OUTCOME_NO_STAKE)

    payer = await store.lock_user(db, session.user_id)
    if payer.balance_cents <= 0:
        return _outcome(session, OUTCOME_NO_BALANCE)

    if not await store.claim_session_for_payout(db, session.id):
        return _outcome(session, OUTCOME_ALREADY_HANDLED)

    destination, recipient_id = resolve_destination(payer)
    recipient_user = None
    if destination == DESTINATION_CUSTOM:
        recipient_user = await _resolve_recipient_user(db, recipient_id)

    amount_cents, new_balance = await debit(db, payer.id, session.payout_amount_cents, allow_partial=True)

    details: dict[str, Any] = {"destination": destination, "session_id": session.id}
    if destination == DESTINATION_CHARITY:
        charity_name = payer.committed_charity or settings.default_charity
        db.add(
            CharityPayoutORM(
                user_id=payer.id,
                session_id=session.id,
                charity_name=charity_name,
                amount_cents=amount_cents,
            )
        )
        details["charity_name"] = charity_name
    else:
        await credit(db, recipient_user.id, amount_cents)
        details["recipient_id"] = recipient_id

    tx = await store.add_transaction(
        db,
        user_id=payer.id,
        recipient_user_id=recipient_user.id if recipient_user else None,
        amount_cents=amount_cents,
        type=TX_PAYOUT,
        status=STATUS_COMPLETED,
        description="Missed objective payout",
        details=details,
    )
    await store.mark_session_missed(db, session.id, tx.id)

    logger.info(
        "Payout processed session_id=%s user_id=%s destination=%s amount_cents=%d tx_id=%s",
        session.id,
        payer.id,
        destination,
        amount_cents,
        tx.id,
    )
    return _outcome(
        session,
        OUTCOME_PAYOUT,
        amountCents=amount_cents,
        destination=destination,
        transactionId=tx.id,
        newBalanceCents=new_balance,
    )


async def run_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    redis_client=None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """One pass over every sweepable session. `now` must be tz-aware."""
    now = now or datetime.now(timezone.utc)
    results: list[dict[str, Any]] = []

    async with sweep_lock(redis_client) as acquired:
        if not acquired:
            return {
                "checked": False,
                "serverTime": now.isoformat(),
                "payoutsProcessed": 0,
                "results": [],
            }

        async with session_factory() as db:
            candidates = [session.id for session, _ in await store.list_sweep_candidates(db)]
        logger.info("Payout sweep started candidates=%d", len(candidates))

        for session_id in candidates:
            try:
                async with session_factory() as db, db.begin():
                    results.append(await process_candidate(db, session_id, now))
            except Exception as exc:
                logger.exception("Payout sweep failed for session_id=%s", session_id)
                results.append({"sessionId": session_id, "outcome": OUTCOME_ERROR, "error": str(exc)})

    payouts = sum(1 for r in results if r["outcome"] == OUTCOME_PAYOUT)
    logger.info("Payout sweep finished checked=%d payouts=%d", len(results), payouts)
    return {
        "checked": True,
        "serverTime": now.isoformat(),
        "payoutsProcessed": payouts,
        "results": results,
    }
