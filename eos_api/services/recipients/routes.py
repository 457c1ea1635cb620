"""
Recipient / invite HTTP routes.

  Public (recipient side, authenticated by the invite code itself):
    GET  /verify-invite/{code}
    POST /recipient-signup
    POST /recipient-onboarding
  Payer side (Bearer token, subject must be the payer):
    POST /recipient-invites, POST /recipient-invites/code-only   (payerEmail must match the token)
    POST /users/{userId}/select-recipient
    GET  /users/{userId}/invites
    GET  /users/{userId}/recipient
    POST /users/{userId}/commit-destination
"""
import logging
import time

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from eos_api.cache import get_redis
from eos_api.database import get_db
from eos_api.gateways import MessagingGateway, PaymentGateway, get_messaging, get_payments
from eos_api.security import get_current_user_id, require_path_user
from eos_api.services.recipients import invites
from eos_api.services.recipients.schemas import (
    CodeOnlyInviteRequest,
    CommitDestinationRequest,
    CreateInviteRequest,
    OnboardingRequest,
    RecipientSignupRequest,
    SelectRecipientRequest,
)

router = APIRouter(tags=["recipients"])
logger = logging.getLogger(__name__)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


# ---------------------------------------------------------------------------
# Invite lifecycle
# ---------------------------------------------------------------------------

@router.post("/recipient-invites")
async def create_invite(
    body: CreateInviteRequest,
    current_user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    messaging: MessagingGateway = Depends(get_messaging),
    redis_client=Depends(get_redis),
) -> dict:
    return await invites.create_invite(
        db, messaging, redis_client, body.payer_email, body.phone, current_user_id, body.payer_name
    )


@router.post("/recipient-invites/code-only")
async def create_code_only_invite(
    body: CodeOnlyInviteRequest,
    current_user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await invites.create_code_only_invite(db, body.payer_email, current_user_id)


@router.get("/verify-invite/{code}")
async def verify_invite(code: str, db: AsyncSession = Depends(get_db)) -> dict:
    return await invites.verify_invite(db, code)


@router.post("/recipient-signup")
async def recipient_signup(
    body: RecipientSignupRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await invites.accept_invite(
        db, body.invite_code, body.name, body.email, body.phone, body.password
    )


@router.post("/recipient-onboarding")
async def recipient_onboarding(
    body: OnboardingRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    payments: PaymentGateway = Depends(get_payments),
    messaging: MessagingGateway = Depends(get_messaging),
) -> dict:
    return await invites.hybrid_onboarding(
        db, payments, messaging, body, _client_ip(request), int(time.time())
    )


# ---------------------------------------------------------------------------
# Payer-side recipient management
# ---------------------------------------------------------------------------

@router.post("/users/{userId}/select-recipient")
async def select_recipient(
    userId: str,
    body: SelectRecipientRequest,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await invites.select_recipient(db, userId, body.recipient_id)


@router.get("/users/{userId}/invites")
async def list_invites(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return {"invites": await invites.list_invites(db, userId)}


@router.get("/users/{userId}/recipient")
async def get_recipient(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await invites.get_recipient_summary(db, userId)


@router.post("/users/{userId}/commit-destination")
async def commit_destination(
    userId: str,
    body: CommitDestinationRequest,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await invites.commit_destination(
        db, userId, body.destination, body.recipient_id, body.charity
    )
