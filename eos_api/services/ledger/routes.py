"""
Ledger HTTP routes.

  User (Bearer token):
    GET  /users/{userId}/balance
    GET  /users/{userId}/transactions
    POST /create-payment-intent
    POST /deposits/confirm
    POST /withdraw
    GET  /withdrawals/pending/{userId}
  Scheduler / admin (X-Cron-Secret):
    POST /withdrawals/process-queue
    GET  /admin/charity-totals
    POST /admin/charity-payout/{charityName}
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eos_api import store
from eos_api.database import get_db, get_session_factory
from eos_api.errors import NotFound
from eos_api.gateways import PaymentGateway, get_payments
from eos_api.security import ensure_same_user, get_current_user_id, require_cron_secret, require_path_user
from eos_api.services.ledger import deposits, withdrawals
from eos_api.services.ledger.balances import balance_view
from eos_api.services.ledger.schemas import (
    ConfirmDepositRequest,
    PaymentIntentRequest,
    WithdrawRequest,
    transaction_to_dict,
    withdrawal_to_dict,
)

router = APIRouter(tags=["ledger"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Read-only projections
# ---------------------------------------------------------------------------

@router.get("/users/{userId}/balance")
async def get_balance(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await store.get_user(db, userId)
    if user is None:
        raise NotFound("User not found")
    return balance_view(user)


@router.get("/users/{userId}/transactions")
async def get_transactions(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    transactions = await store.list_transactions(db, userId)
    return {"transactions": [transaction_to_dict(tx) for tx in transactions]}


@router.get("/withdrawals/pending/{userId}")
async def pending_withdrawals(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    pending = await store.list_pending_withdrawals(db, userId)
    return {"withdrawals": [withdrawal_to_dict(r) for r in pending]}


# ---------------------------------------------------------------------------
# Deposits
# ---------------------------------------------------------------------------

@router.post("/create-payment-intent")
async def create_payment_intent(
    body: PaymentIntentRequest,
    current_user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentGateway = Depends(get_payments),
) -> dict:
    ensure_same_user(current_user_id, body.user_id)
    return await deposits.create_deposit_intent(db, payments, body.user_id, body.amount)


@router.post("/deposits/confirm")
async def confirm_deposit(
    body: ConfirmDepositRequest,
    current_user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentGateway = Depends(get_payments),
) -> dict:
    ensure_same_user(current_user_id, body.user_id)
    return await deposits.confirm_deposit(db, payments, body.user_id, body.payment_intent_id)


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------

@router.post("/withdraw")
async def withdraw(
    body: WithdrawRequest,
    current_user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentGateway = Depends(get_payments),
) -> dict:
    ensure_same_user(current_user_id, body.user_id)
    return await withdrawals.request_withdrawal(db, payments, body.user_id, body.amount_cents)


@router.post("/withdrawals/process-queue", dependencies=[Depends(require_cron_secret)])
async def process_withdrawal_queue(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    payments: PaymentGateway = Depends(get_payments),
) -> dict:
    return await withdrawals.process_queue(session_factory, payments)


# ---------------------------------------------------------------------------
# Charity admin
# ---------------------------------------------------------------------------

@router.get("/admin/charity-totals", dependencies=[Depends(require_cron_secret)])
async def charity_totals(db: AsyncSession = Depends(get_db)) -> dict:
    charities = await store.charity_totals(db)
    return {
        "charities": charities,
        "grand_total_cents": sum(c["total_cents"] for c in charities),
    }


@router.post("/admin/charity-payout/{charityName}", dependencies=[Depends(require_cron_secret)])
async def charity_payout(charityName: str, db: AsyncSession = Depends(get_db)) -> dict:
    updated = await store.mark_charity_paid_out(db, charityName)
    logger.info("Charity marked paid out charity=%s rows=%d", charityName, updated)
    return {"message": "Marked as paid out", "updated_count": updated}
