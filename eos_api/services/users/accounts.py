"""
accounts.py — User record store: profile upsert, sign-in, snapshot serializer.

Profile writes are keyed by normalized email. The first write creates the
account (full name required, optional bcrypt password); later writes merge
only the fields the client supplied and require the account's own token.
"""
import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eos_api import store
from eos_api.errors import Conflict, Forbidden, Unauthorized, ValidationFailed
from eos_api.gateways import PaymentGateway
from eos_api.models.user import UserORM
from eos_api.security import hash_password, verify_password
from eos_api.services.users.schemas import ProfileRequest

logger = logging.getLogger(__name__)

# Request fields copied onto the user as-is when supplied
_PLAIN_FIELDS = (
    "phone",
    "timezone",
    "objective_type",
    "objective_count",
    "objective_schedule",
    "objective_deadline",
    "payout_destination",
    "payout_committed",
    "destination_committed",
    "committed_destination",
    "committed_charity",
)


def user_to_dict(user: UserORM) -> dict[str, Any]:
    """Client-facing user snapshot. Money fields in cents, pledge also in dollars."""
    return {
        "id": user.id,
        "fullName": user.full_name,
        "email": user.email,
        "phone": user.phone,
        "balanceCents": user.balance_cents,
        "activeBalanceCents": user.balance_cents,
        "timezone": user.timezone,
        "objective_type": user.objective_type,
        "objective_count": user.objective_count,
        "objective_schedule": user.objective_schedule,
        "objective_deadline": user.objective_deadline,
        "missed_goal_payout": user.missed_goal_payout_cents / 100,
        "missed_goal_payout_cents": user.missed_goal_payout_cents,
        "payout_destination": user.payout_destination,
        "payout_committed": user.payout_committed,
        "destination_committed": user.destination_committed,
        "committed_destination": user.committed_destination,
        "committed_charity": user.committed_charity,
        "custom_recipient_id": user.custom_recipient_id,
        "committed_recipient_id": user.committed_recipient_id,
        "stripeCustomerId": user.stripe_customer_id,
    }


async def _valid_recipient_id(db: AsyncSession, recipient_id: Optional[str], field: str) -> Optional[str]:
    if not recipient_id:
        return None
    if await store.get_recipient(db, recipient_id) is None:
        logger.info("Dropping dangling %s=%s, no such recipient", field, recipient_id)
        return None
    return recipient_id


async def upsert_profile(
    db: AsyncSession,
    payments: PaymentGateway,
    req: ProfileRequest,
    current_user_id: Optional[str],
) -> tuple[UserORM, bool]:
    """
    Create or update the account for req.email. Returns (user, created).

    Raises:
        Conflict:         createOnly and the email is taken
        ValidationFailed: creating without a full name
        Unauthorized / Forbidden: updating without the account's token
    """
    user = await store.get_user_by_email(db, req.email)
    created = user is None

    if user is not None:
        if req.create_only:
            raise Conflict("An account with this email already exists. Please sign in instead.")
        if current_user_id is None:
            raise Unauthorized("Sign in to update this profile")
        if current_user_id != user.id:
            raise Forbidden("Token does not grant access to this profile")
    else:
        if not req.full_name or not req.full_name.strip():
            raise ValidationFailed.for_fields({"fullName": "Full name is required."})
        user = UserORM(email=req.email, full_name=req.full_name.strip(), balance_cents=0)

    if req.full_name and req.full_name.strip():
        user.full_name = req.full_name.strip()
    for field in _PLAIN_FIELDS:
        value = getattr(req, field)
        if value is not None:
            setattr(user, field, value)
    if req.missed_goal_payout is not None:
        user.missed_goal_payout_cents = round(req.missed_goal_payout * 100)
    if req.password:
        user.password_hash = hash_password(req.password)

    custom_id = await _valid_recipient_id(db, req.custom_recipient_id, "custom_recipient_id")
    if custom_id:
        user.custom_recipient_id = custom_id
    committed_id = await _valid_recipient_id(db, req.committed_recipient_id, "committed_recipient_id")
    if committed_id:
        user.committed_recipient_id = committed_id

    if user.stripe_customer_id is None:
        user.stripe_customer_id = await payments.create_customer(user.email, user.full_name, user.phone)

    if created:
        db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent first write for the same email
        raise Conflict("An account with this email already exists. Please sign in instead.") from exc

    logger.info("Profile %s user_id=%s", "created" if created else "updated", user.id)
    return user, created


async def authenticate(db: AsyncSession, email: str, password: str) -> UserORM:
    user = await store.get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Sign-in rejected")
        raise Unauthorized("Invalid email or password.")
    logger.info("Sign-in succeeded user_id=%s", user.id)
    return user
