"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order matters for FK dependencies: users before everything that references it.
"""
from eos_api.models.user import UserORM
from eos_api.models.recipient import PayoutRuleORM, RecipientInviteORM, RecipientORM
from eos_api.models.objective_session import ObjectiveSessionORM
from eos_api.models.ledger import CharityPayoutORM, TransactionORM, WithdrawalRequestORM

__all__ = [
    "UserORM",
    "RecipientORM",
    "RecipientInviteORM",
    "PayoutRuleORM",
    "ObjectiveSessionORM",
    "TransactionORM",
    "CharityPayoutORM",
    "WithdrawalRequestORM",
]
