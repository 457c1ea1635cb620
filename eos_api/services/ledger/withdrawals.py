"""
withdrawals.py — Outbound transfers of a user's balance to their payout account.

POST /withdraw debits first, then attempts the transfer. A transfer the
processor refuses (including "platform balance insufficient") leaves the
debit in place and queues a WithdrawalRequest. The queue processor retries
pending requests; after settings.withdrawal_max_retries failures the request
and its transaction are marked failed and the amount is credited back.
"""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eos_api import store
from eos_api.config import settings
from eos_api.errors import NotFound, UpstreamFailure, ValidationFailed
from eos_api.gateways import PaymentGateway
from eos_api.models.ledger import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    TX_WITHDRAWAL,
    WithdrawalRequestORM,
)
from eos_api.services.ledger.balances import credit, debit

logger = logging.getLogger(__name__)

WITHDRAWAL_DESCRIPTION = "Withdrawal to payout account"


async def request_withdrawal(
    db: AsyncSession, payments: PaymentGateway, user_id: str, amount_cents: int
) -> dict[str, Any]:
    user = await store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    account = await store.find_payout_account(db, user.email)
    if account is None:
        raise ValidationFailed.for_fields(
            {"destination": "No payout account on file. Complete payout setup first."}
        )

    _, new_balance = await debit(db, user_id, amount_cents)
    tx = await store.add_transaction(
        db,
        user_id=user_id,
        amount_cents=amount_cents,
        type=TX_WITHDRAWAL,
        status=STATUS_PENDING,
        description=WITHDRAWAL_DESCRIPTION,
        details={"destination_account_id": account.processor_account_id},
    )

    try:
        transfer_id = await payments.transfer(
            amount_cents,
            account.processor_account_id,
            WITHDRAWAL_DESCRIPTION,
            {"user_id": user_id, "transaction_id": tx.id},
        )
    except UpstreamFailure as exc:
        queued = WithdrawalRequestORM(
            user_id=user_id,
            transaction_id=tx.id,
            amount_cents=amount_cents,
            destination_account_id=account.processor_account_id,
            status=STATUS_PENDING,
            retry_count=0,
            last_error=exc.message[:500],
        )
        db.add(queued)
        await db.flush()
        logger.warning(
            "Withdrawal queued request_id=%s user_id=%s amount_cents=%d reason=%s",
            queued.id,
            user_id,
            amount_cents,
            exc.code,
        )
        return {
            "success": True,
            "status": "queued",
            "transactionId": tx.id,
            "withdrawalRequestId": queued.id,
            "balanceCents": new_balance,
            "message": "Withdrawal queued and will be retried shortly.",
        }

    tx.status = STATUS_COMPLETED
    tx.processor_reference = transfer_id
    await db.flush()
    logger.info("Withdrawal completed tx_id=%s user_id=%s amount_cents=%d", tx.id, user_id, amount_cents)
    return {
        "success": True,
        "status": STATUS_COMPLETED,
        "transactionId": tx.id,
        "transferId": transfer_id,
        "balanceCents": new_balance,
    }


async def _retry_one(db: AsyncSession, payments: PaymentGateway, request_id: str) -> dict[str, Any]:
    req = await store.lock_pending_withdrawal(db, request_id)
    if req is None:
        return {"id": request_id, "outcome": "skipped"}
    tx = await store.get_transaction(db, req.transaction_id)

    try:
        transfer_id = await payments.transfer(
            req.amount_cents,
            req.destination_account_id,
            WITHDRAWAL_DESCRIPTION,
            {"user_id": req.user_id, "transaction_id": req.transaction_id},
        )
    except UpstreamFailure as exc:
        req.retry_count += 1
        req.last_error = exc.message[:500]
        if req.retry_count < settings.withdrawal_max_retries:
            logger.info("Withdrawal retry failed request_id=%s attempt=%d", req.id, req.retry_count)
            return {"id": req.id, "outcome": "retry", "retryCount": req.retry_count}

        req.status = STATUS_FAILED
        if tx is not None:
            tx.status = STATUS_FAILED
        await credit(db, req.user_id, req.amount_cents)
        logger.warning(
            "Withdrawal failed permanently request_id=%s user_id=%s refunded_cents=%d",
            req.id,
            req.user_id,
            req.amount_cents,
        )
        return {"id": req.id, "outcome": "failed_refunded", "retryCount": req.retry_count}

    req.status = STATUS_COMPLETED
    if tx is not None:
        tx.status = STATUS_COMPLETED
        tx.processor_reference = transfer_id
    logger.info("Queued withdrawal completed request_id=%s transfer_id=%s", req.id, transfer_id)
    return {"id": req.id, "outcome": "completed", "transferId": transfer_id}


async def process_queue(
    session_factory: async_sessionmaker[AsyncSession], payments: PaymentGateway
) -> dict[str, Any]:
    """Retry every pending request, each in its own transaction."""
    async with session_factory() as db:
        request_ids = await store.list_pending_withdrawal_ids(db)

    results = []
    for request_id in request_ids:
        try:
            async with session_factory() as db, db.begin():
                results.append(await _retry_one(db, payments, request_id))
        except Exception as exc:
            logger.exception("Withdrawal queue item failed request_id=%s", request_id)
            results.append({"id": request_id, "outcome": "error", "error": str(exc)})

    completed = sum(1 for r in results if r["outcome"] == "completed")
    logger.info("Withdrawal queue processed=%d completed=%d", len(results), completed)
    return {"processed": len(results), "completed": completed, "results": results}
