"""
security.py — password hashing, access tokens and auth dependencies.

Sign-in issues a signed, expiring JWT whose subject is the user id. Every
user-scoped route depends on require_path_user(), which rejects requests whose
token subject differs from the {userId} in the path (or the userId in the body,
via ensure_same_user()). Scheduler/admin routes depend on require_cron_secret().
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header
from jose import JWTError, jwt
from passlib.context import CryptContext

from eos_api.config import settings
from eos_api.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a valid token; Unauthorized otherwise."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise Unauthorized("Invalid or expired token") from exc
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    return user_id


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Not authenticated")
    return decode_access_token(authorization.split(" ", 1)[1])


async def get_optional_user_id(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Like get_current_user_id but returns None when no token was sent."""
    if not authorization:
        return None
    return await get_current_user_id(authorization)


def ensure_same_user(current_user_id: str, user_id: str) -> None:
    if current_user_id != user_id:
        logger.warning("Token subject mismatch token_user=%s path_user=%s", current_user_id, user_id)
        raise Forbidden("Token does not grant access to this user")


async def require_path_user(
    userId: str,
    authorization: Optional[str] = Header(None),
) -> str:
    """Dependency for routes with a {userId} path parameter."""
    current = await get_current_user_id(authorization)
    ensure_same_user(current, userId)
    return current


async def require_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """Scheduler/admin endpoints; open when CRON_SECRET is not configured."""
    if not settings.cron_secret:
        return
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.cron_secret):
        raise Unauthorized("Missing or invalid scheduler secret")
