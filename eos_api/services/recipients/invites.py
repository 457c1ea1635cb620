"""
invites.py — Recipient / invite registry.

Lifecycle of an invite code:

  create (SMS or code-only) ──▶ pending ──signup/onboarding──▶ accepted
                                                                  │
                         payer selects a different recipient ──▶ available

A payer has at most one selected recipient (users.custom_recipient_id). The
invite status column is kept in step with that pointer: the selected
recipient's invites read 'accepted', the payer's other accepted invites read
'available'.
"""
import logging
import secrets
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from eos_api import store
from eos_api.cache import clear_invite_sms_cooldown, start_invite_sms_cooldown
from eos_api.config import settings
from eos_api.errors import Conflict, Forbidden, NotFound, UpstreamFailure, ValidationFailed
from eos_api.gateways import MessagingGateway, PaymentGateway
from eos_api.models.recipient import (
    INVITE_ACCEPTED,
    INVITE_AVAILABLE,
    INVITE_PENDING,
    PayoutRuleORM,
    RecipientInviteORM,
    RecipientORM,
)
from eos_api.models.user import UserORM
from eos_api.security import hash_password

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 5
DESTINATION_CUSTOM = "custom"
DESTINATION_CHARITY = "charity"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_code() -> str:
    alphabet = settings.invite_code_alphabet
    return "".join(secrets.choice(alphabet) for _ in range(settings.invite_code_length))


def build_invite_message(payer_name: str, invite_code: str) -> str:
    return (
        f"{payer_name} selected you to receive payouts when they miss their fitness goals. "
        f"Your code: {invite_code}. Setup payouts: {settings.invite_base_url}"
    )


def recipient_to_dict(recipient: Optional[RecipientORM]) -> Optional[dict[str, Any]]:
    if recipient is None:
        return None
    return {
        "id": recipient.id,
        "name": recipient.name,
        "email": recipient.email,
        "phone": recipient.phone,
    }


async def _payer_by_email(db: AsyncSession, email: str, current_user_id: str) -> UserORM:
    """The payer named by email, who must be the caller."""
    payer = await store.get_user_by_email(db, email)
    if payer is None or payer.id != current_user_id:
        logger.warning(
            "Invite for another payer refused token_user=%s payer_user_id=%s",
            current_user_id,
            payer.id if payer else None,
        )
        raise Forbidden("Token does not grant access to this payer")
    return payer


async def _require_user(db: AsyncSession, user_id: str) -> UserORM:
    user = await store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def _mint_invite(db: AsyncSession, payer_id: str, phone: Optional[str]) -> RecipientInviteORM:
    for _ in range(_CODE_ATTEMPTS):
        code = generate_code()
        if await store.get_invite_by_code(db, code) is None:
            break
    else:
        raise RuntimeError("Could not allocate a unique invite code")

    invite = RecipientInviteORM(payer_user_id=payer_id, phone=phone, invite_code=code, status=INVITE_PENDING)
    db.add(invite)
    await db.flush()
    logger.info("Invite created invite_id=%s payer_user_id=%s", invite.id, payer_id)
    return invite


async def _require_pending(db: AsyncSession, code: str) -> RecipientInviteORM:
    invite = await store.get_invite_by_code(db, code)
    if invite is None:
        raise NotFound("Invalid invite code")
    if invite.status != INVITE_PENDING:
        raise Conflict("Invite already used")
    return invite


# ---------------------------------------------------------------------------
# Invite creation / verification
# ---------------------------------------------------------------------------

async def create_invite(
    db: AsyncSession,
    messaging: MessagingGateway,
    redis_client,
    payer_email: str,
    phone: str,
    current_user_id: str,
    payer_name: Optional[str] = None,
) -> dict[str, Any]:
    """
    Invite a phone number to become the payer's recipient.

    A pending invite for the same payer and phone is re-sent with its existing
    code. The SMS is skipped while the invite's cooldown window is open.
    """
    payer = await _payer_by_email(db, payer_email, current_user_id)
    phone = phone.strip()

    invite = await store.find_pending_invite(db, payer.id, phone)
    resent = invite is not None
    if invite is None:
        invite = await _mint_invite(db, payer.id, phone)

    sms_sent = False
    if await start_invite_sms_cooldown(redis_client, invite.id):
        body = build_invite_message((payer_name or payer.full_name).strip(), invite.invite_code)
        try:
            await messaging.send_sms(phone, body)
        except UpstreamFailure:
            await clear_invite_sms_cooldown(redis_client, invite.id)
            raise
        sms_sent = True

    return {
        "id": invite.id,
        "inviteCode": invite.invite_code,
        "status": invite.status,
        "resent": resent,
        "smsSent": sms_sent,
    }


async def create_code_only_invite(
    db: AsyncSession, payer_email: str, current_user_id: str
) -> dict[str, Any]:
    payer = await _payer_by_email(db, payer_email, current_user_id)
    invite = await _mint_invite(db, payer.id, None)
    return {
        "id": invite.id,
        "inviteCode": invite.invite_code,
        "message": "Invite code generated successfully. Share it manually.",
    }


async def verify_invite(db: AsyncSession, code: str) -> dict[str, Any]:
    invite = await _require_pending(db, code)
    payer = await store.get_user(db, invite.payer_user_id)
    return {
        "code": invite.invite_code,
        "inviteCode": invite.invite_code,
        "status": invite.status,
        "payerName": payer.full_name if payer else "EOS User",
        "payerEmail": payer.email if payer else None,
        "phone": invite.phone,
        "payoutAmount": payer.missed_goal_payout_cents / 100 if payer else 0,
        "payoutAmountCents": payer.missed_goal_payout_cents if payer else 0,
    }


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------

async def _accept(
    db: AsyncSession,
    invite: RecipientInviteORM,
    name: str,
    email: str,
    phone: Optional[str],
    password: Optional[str],
    processor_account_id: Optional[str] = None,
) -> tuple[RecipientORM, bool]:
    """Accept a pending invite. Returns (recipient, became_selected)."""
    if not await store.claim_pending_invite(db, invite.id):
        raise Conflict("Invite already used")

    email = store.normalize_email(email)
    phone = invite.phone or (phone.strip() if phone else None)

    recipient = await store.find_recipient(db, phone=phone, email=email)
    if recipient is None:
        recipient = RecipientORM(
            type="individual",
            name=name.strip(),
            email=email,
            phone=phone,
            processor_account_id=processor_account_id,
        )
        db.add(recipient)
        await db.flush()
        logger.info("Recipient created recipient_id=%s", recipient.id)
    else:
        recipient.email = recipient.email or email
        recipient.phone = recipient.phone or phone
        if processor_account_id:
            recipient.processor_account_id = processor_account_id

    if await store.get_user_by_email(db, email) is None:
        db.add(
            UserORM(
                email=email,
                full_name=name.strip(),
                phone=phone,
                password_hash=hash_password(password) if password else None,
                balance_cents=0,
            )
        )
        logger.info("Platform account created for recipient_id=%s", recipient.id)

    payer = await store.get_user(db, invite.payer_user_id)
    db.add(
        PayoutRuleORM(
            payer_user_id=payer.id,
            recipient_id=recipient.id,
            fixed_amount_cents=payer.missed_goal_payout_cents or settings.default_payout_rule_cents,
            active=True,
        )
    )

    # A committed destination is only changed through commit_destination
    selected = payer.custom_recipient_id == recipient.id or (
        payer.custom_recipient_id is None and not payer.destination_committed
    )
    if selected and not payer.destination_committed:
        payer.custom_recipient_id = recipient.id
        payer.payout_destination = DESTINATION_CUSTOM
    invite.recipient_id = recipient.id
    invite.status = INVITE_ACCEPTED if selected else INVITE_AVAILABLE
    await db.flush()

    logger.info(
        "Invite accepted invite_id=%s recipient_id=%s payer_user_id=%s selected=%s",
        invite.id,
        recipient.id,
        payer.id,
        selected,
    )
    return recipient, selected


async def accept_invite(
    db: AsyncSession,
    code: str,
    name: str,
    email: str,
    phone: Optional[str] = None,
    password: Optional[str] = None,
) -> dict[str, Any]:
    invite = await _require_pending(db, code)
    recipient, selected = await _accept(db, invite, name, email, phone, password)
    return {
        "success": True,
        "recipientId": recipient.id,
        "inviteStatus": invite.status,
        "selected": selected,
    }


def missing_onboarding_fields(req) -> dict[str, str]:
    """Every absent or malformed onboarding field, keyed by its request name."""
    missing: dict[str, str] = {}
    if not (req.name and req.name.strip()):
        missing["name"] = "Name is required"
    if not (req.email and "@" in req.email):
        missing["email"] = "A valid email is required"
    dob = req.dob
    for part in ("month", "day", "year"):
        if dob is None or getattr(dob, part) is None:
            missing[f"dob.{part}"] = "Date of birth is required"
    address = req.address
    for part in ("line1", "city", "state", "postal_code"):
        if address is None or not (getattr(address, part) or "").strip():
            missing[f"address.{part}"] = "Full address is required"
    if not (req.ssn_last4 and len(req.ssn_last4) == 4 and req.ssn_last4.isdigit()):
        missing["ssnLast4"] = "Last 4 digits of SSN are required"
    if not req.payment_token:
        missing["paymentToken"] = "Payment method (bank or card) is required"
    return missing


async def hybrid_onboarding(
    db: AsyncSession,
    payments: PaymentGateway,
    messaging: MessagingGateway,
    req,
    client_ip: str,
    tos_date: int,
) -> dict[str, Any]:
    """
    Provision a payee account with the payment processor, then accept the invite.

    The database work is committed here so that a failed write can still
    delete the freshly created processor account.
    """
    missing = missing_onboarding_fields(req)
    if missing:
        raise ValidationFailed.for_fields(missing)

    invite = await _require_pending(db, req.invite_code)
    account_id = await payments.create_payee_account(
        {
            "name": req.name.strip(),
            "email": store.normalize_email(req.email),
            "phone": invite.phone or req.phone,
            "dob": req.dob.model_dump(),
            "address": req.address.model_dump(),
            "ssn_last4": req.ssn_last4,
            "payment_token": req.payment_token,
            "tos_date": tos_date,
            "tos_ip": client_ip,
        }
    )

    try:
        recipient, selected = await _accept(
            db, invite, req.name, req.email, req.phone, req.password, processor_account_id=account_id
        )
        payer = await store.get_user(db, invite.payer_user_id)
        payer_name = payer.full_name
        amount_cents = payer.missed_goal_payout_cents or settings.default_payout_rule_cents
        await db.commit()
    except Exception:
        logger.error("Onboarding write failed, deleting payee account account_id=%s", account_id)
        await db.rollback()
        try:
            await payments.delete_account(account_id)
        except UpstreamFailure:
            logger.exception("Could not delete orphaned payee account account_id=%s", account_id)
        raise

    recipient_phone = invite.phone or req.phone
    if recipient_phone:
        method = "bank account" if req.payment_token.startswith("btok_") else "debit card"
        body = (
            f"EOS setup complete! You will receive ${amount_cents / 100:.2f} to your {method} "
            f"each time {payer_name} misses their fitness goal."
        )
        try:
            await messaging.send_sms(recipient_phone, body)
        except UpstreamFailure:
            # Onboarding is already committed; the confirmation text is best effort
            logger.warning("Onboarding confirmation SMS failed recipient_id=%s", recipient.id)

    return {
        "success": True,
        "message": "Setup complete! You will receive payouts when goals are missed.",
        "recipientId": recipient.id,
        "stripeAccountId": account_id,
        "selected": selected,
    }


# ---------------------------------------------------------------------------
# Payer-side views and selection
# ---------------------------------------------------------------------------

async def select_recipient(db: AsyncSession, payer_id: str, recipient_id: str) -> dict[str, Any]:
    payer = await _require_user(db, payer_id)
    accepted = [
        invite
        for invite, _ in await store.list_invites_with_recipients(db, payer_id)
        if invite.recipient_id and invite.status in (INVITE_ACCEPTED, INVITE_AVAILABLE)
    ]
    if not any(invite.recipient_id == recipient_id for invite in accepted):
        raise NotFound("Recipient not found among your accepted invites")
    if payer.destination_committed:
        raise Conflict("Payout destination is committed and cannot be changed")

    payer.custom_recipient_id = recipient_id
    payer.payout_destination = DESTINATION_CUSTOM
    for invite in accepted:
        invite.status = INVITE_ACCEPTED if invite.recipient_id == recipient_id else INVITE_AVAILABLE
    await db.flush()
    logger.info("Recipient selected payer_user_id=%s recipient_id=%s", payer_id, recipient_id)
    return {"success": True, "selectedRecipientId": recipient_id, "destination": DESTINATION_CUSTOM}


def _invite_entry(invite: RecipientInviteORM, recipient: Optional[RecipientORM], selected: bool) -> dict[str, Any]:
    return {
        "id": invite.id,
        "phone": invite.phone,
        "invite_code": invite.invite_code,
        "status": invite.status,
        "recipient_id": invite.recipient_id,
        "recipient": recipient_to_dict(recipient),
        "isSelected": selected,
        "created_at": invite.created_at.isoformat(),
    }


async def list_invites(db: AsyncSession, payer_id: str) -> list[dict[str, Any]]:
    """
    Selected recipient first, then other accepted recipients alphabetically
    (one entry per recipient), then the most recent pending invite.
    """
    payer = await _require_user(db, payer_id)
    selected_id = payer.custom_recipient_id

    selected_entry = None
    others: dict[str, tuple[str, dict[str, Any]]] = {}
    pending_entry = None
    for invite, recipient in await store.list_invites_with_recipients(db, payer_id):
        if invite.status == INVITE_PENDING:
            if pending_entry is None:
                pending_entry = _invite_entry(invite, None, False)
        elif recipient is None:
            continue
        elif recipient.id == selected_id:
            if selected_entry is None:
                selected_entry = _invite_entry(invite, recipient, True)
        elif recipient.id not in others:
            others[recipient.id] = (recipient.name.lower(), _invite_entry(invite, recipient, False))

    ordered = [entry for _, entry in sorted(others.values(), key=lambda item: item[0])]
    if selected_entry is not None:
        ordered.insert(0, selected_entry)
    if pending_entry is not None:
        ordered.append(pending_entry)
    return ordered


async def get_recipient_summary(db: AsyncSession, payer_id: str) -> dict[str, Any]:
    payer = await _require_user(db, payer_id)
    recipient = None
    if payer.custom_recipient_id:
        recipient = await store.get_recipient(db, payer.custom_recipient_id)
    return {
        "hasRecipient": recipient is not None,
        "recipient": recipient_to_dict(recipient),
        "isCommitted": payer.destination_committed,
        "destination": payer.payout_destination or DESTINATION_CHARITY,
    }


async def commit_destination(
    db: AsyncSession,
    payer_id: str,
    destination: str,
    recipient_id: Optional[str] = None,
    charity: Optional[str] = None,
) -> dict[str, Any]:
    """Lock in where missed stakes go. Custom requires an existing recipient."""
    payer = await _require_user(db, payer_id)
    if destination == DESTINATION_CUSTOM:
        recipient_id = recipient_id or payer.custom_recipient_id
        if not recipient_id:
            raise ValidationFailed.for_fields({"recipientId": "Select a recipient before committing"})
        if await store.get_recipient(db, recipient_id) is None:
            raise NotFound("Recipient not found")
        payer.custom_recipient_id = recipient_id
        payer.committed_recipient_id = recipient_id
    else:
        payer.committed_charity = charity or payer.committed_charity or settings.default_charity

    payer.destination_committed = True
    payer.committed_destination = destination
    payer.payout_destination = destination
    await db.flush()
    logger.info("Destination committed payer_user_id=%s destination=%s", payer_id, destination)
    return {"success": True, "destination": destination, "committed": True}
