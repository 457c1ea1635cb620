"""
deposits.py — Adding funds through the payment processor.

The charge is grossed up for processing fees so the user's balance receives
the full amount they asked to deposit. Crediting is keyed on the payment
intent id (transactions.processor_reference is UNIQUE), so confirming the
same intent twice credits once.
"""
import logging
import math
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from eos_api import store
from eos_api.errors import Forbidden, NotFound, ValidationFailed
from eos_api.gateways import PaymentGateway
from eos_api.models.ledger import STATUS_COMPLETED, TX_DEPOSIT
from eos_api.services.ledger.balances import credit

logger = logging.getLogger(__name__)

FEE_FIXED_CENTS = 30
FEE_PERCENT = 0.029


def gross_up(amount_cents: int) -> int:
    """Charge needed so that amount_cents remains after 2.9% + 30¢."""
    return math.ceil((amount_cents + FEE_FIXED_CENTS) / (1 - FEE_PERCENT))


async def create_deposit_intent(
    db: AsyncSession, payments: PaymentGateway, user_id: str, amount_cents: int
) -> dict[str, Any]:
    user = await store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    charge_cents = gross_up(amount_cents)
    intent = await payments.create_payment_intent(
        charge_cents, {"user_id": user_id, "deposit_cents": str(amount_cents)}
    )
    logger.info(
        "Deposit intent created intent_id=%s user_id=%s deposit_cents=%d charge_cents=%d",
        intent["id"],
        user_id,
        amount_cents,
        charge_cents,
    )
    return {
        "paymentIntentId": intent["id"],
        "paymentIntentClientSecret": intent["client_secret"],
        "depositAmountCents": amount_cents,
        "chargeAmountCents": charge_cents,
    }


async def confirm_deposit(
    db: AsyncSession, payments: PaymentGateway, user_id: str, intent_id: str
) -> dict[str, Any]:
    existing = await store.get_transaction_by_reference(db, intent_id)
    if existing is not None:
        if existing.user_id != user_id:
            raise Forbidden("Payment does not belong to this user")
        user = await store.get_user(db, user_id)
        return {
            "credited": False,
            "transactionId": existing.id,
            "amountCents": existing.amount_cents,
            "balanceCents": user.balance_cents,
        }

    intent = await payments.retrieve_payment_intent(intent_id)
    if intent["metadata"].get("user_id") != user_id:
        raise Forbidden("Payment does not belong to this user")
    if intent["status"] != "succeeded":
        raise ValidationFailed.for_fields({"paymentIntentId": f"Payment is {intent['status']}, not succeeded"})

    amount_cents = int(intent["metadata"].get("deposit_cents") or intent["amount_received"])
    tx = await store.add_transaction(
        db,
        user_id=user_id,
        amount_cents=amount_cents,
        type=TX_DEPOSIT,
        status=STATUS_COMPLETED,
        description="Deposit",
        processor_reference=intent_id,
        details={"charged_cents": intent["amount_received"]},
    )
    balance = await credit(db, user_id, amount_cents)
    return {
        "credited": True,
        "transactionId": tx.id,
        "amountCents": amount_cents,
        "balanceCents": balance,
    }
