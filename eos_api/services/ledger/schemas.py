"""
schemas.py — Ledger request contracts and row serializers.
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from eos_api.models.ledger import TransactionORM, WithdrawalRequestORM


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PaymentIntentRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1, max_length=36)
    amount: int = Field(gt=0, description="Deposit the user wants credited, in cents")


class ConfirmDepositRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1, max_length=36)
    payment_intent_id: str = Field(alias="paymentIntentId", min_length=1, max_length=64)


class WithdrawRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1, max_length=36)
    amount_cents: int = Field(alias="amountCents", gt=0)


def transaction_to_dict(tx: TransactionORM) -> dict[str, Any]:
    return {
        "id": tx.id,
        "user_id": tx.user_id,
        "recipient_user_id": tx.recipient_user_id,
        "amount_cents": tx.amount_cents,
        "type": tx.type,
        "status": tx.status,
        "description": tx.description,
        "processor_reference": tx.processor_reference,
        "metadata": tx.details or {},
        "created_at": tx.created_at.isoformat(),
    }


def withdrawal_to_dict(req: WithdrawalRequestORM) -> dict[str, Any]:
    return {
        "id": req.id,
        "transaction_id": req.transaction_id,
        "amount_cents": req.amount_cents,
        "status": req.status,
        "retry_count": req.retry_count,
        "last_error": req.last_error,
        "created_at": req.created_at.isoformat(),
        "updated_at": req.updated_at.isoformat(),
    }
