"""
User HTTP routes — POST /users/profile, POST /signin, POST /auth/login
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from eos_api.database import get_db
from eos_api.gateways import PaymentGateway, get_payments
from eos_api.security import create_access_token, get_optional_user_id
from eos_api.services.users.accounts import authenticate, upsert_profile, user_to_dict
from eos_api.services.users.schemas import ProfileRequest, SignInRequest

router = APIRouter(tags=["users"])
logger = logging.getLogger(__name__)


@router.post("/users/profile")
async def save_profile(
    body: ProfileRequest,
    current_user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentGateway = Depends(get_payments),
) -> dict:
    user, created = await upsert_profile(db, payments, body, current_user_id)
    content = user_to_dict(user)
    if created:
        content["accessToken"] = create_access_token(user.id)
        content["tokenType"] = "bearer"
    return content


async def _sign_in(body: SignInRequest, db: AsyncSession) -> dict:
    user = await authenticate(db, body.email, body.password)
    return {
        "message": "Sign-in successful",
        "user": user_to_dict(user),
        "accessToken": create_access_token(user.id),
        "tokenType": "bearer",
    }


@router.post("/signin")
async def sign_in(body: SignInRequest, db: AsyncSession = Depends(get_db)) -> dict:
    return await _sign_in(body, db)


@router.post("/auth/login")
async def login(body: SignInRequest, db: AsyncSession = Depends(get_db)) -> dict:
    """Alias of /signin kept for older clients."""
    return await _sign_in(body, db)

