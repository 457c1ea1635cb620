"""
Objective HTTP routes.

  Scheduler (X-Cron-Secret):
    POST /objectives/create-daily-sessions
    POST /objectives/check-missed
  User (Bearer token, subject must match {userId}):
    GET  /objectives/today/{userId}
    POST /objectives/ensure-session/{userId}
    POST /objectives/complete/{userId}
    POST /objectives/settings/{userId}
    POST /objectives/sessions/log           (userId in body)
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eos_api.cache import get_redis
from eos_api.database import get_db, get_session_factory
from eos_api.security import ensure_same_user, get_current_user_id, require_cron_secret, require_path_user
from eos_api.services.objectives import sessions
from eos_api.services.objectives.schemas import (
    CompleteRequest,
    LogProgressRequest,
    ObjectiveSettingsRequest,
)
from eos_api.services.objectives.sweep import run_sweep
from eos_api.services.users.accounts import user_to_dict

router = APIRouter(prefix="/objectives", tags=["objectives"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scheduler endpoints
# ---------------------------------------------------------------------------

@router.post("/create-daily-sessions", dependencies=[Depends(require_cron_secret)])
async def create_daily_sessions(db: AsyncSession = Depends(get_db)) -> dict:
    created = await sessions.create_daily_sessions(db)
    return {
        "success": True,
        "created": len(created),
        "sessions": [sessions.session_to_dict(s) for s in created],
    }


@router.post("/check-missed", dependencies=[Depends(require_cron_secret)])
async def check_missed(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis_client=Depends(get_redis),
) -> dict:
    return await run_sweep(session_factory, redis_client)


# ---------------------------------------------------------------------------
# User endpoints
# ---------------------------------------------------------------------------

@router.get("/today/{userId}")
async def get_today(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    session, today = await sessions.get_today(db, userId)
    return {"session": sessions.session_to_dict(session), "date": today.isoformat()}


@router.post("/ensure-session/{userId}")
async def ensure_session(
    userId: str,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    session, created = await sessions.ensure_session_for(db, userId)
    return {
        "session": sessions.session_to_dict(session),
        "created": created,
        "scheduled": session is not None,
    }


@router.post("/complete/{userId}")
async def complete(
    userId: str,
    body: CompleteRequest,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    session, already = await sessions.complete(db, userId, body.completed_count)
    if already:
        return {"message": "Already completed", "session": sessions.session_to_dict(session)}
    return {
        "success": True,
        "completed": session.status == sessions.COMPLETED,
        "session": sessions.session_to_dict(session),
    }


@router.post("/sessions/log")
async def log_progress(
    body: LogProgressRequest,
    current_user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    ensure_same_user(current_user_id, body.user_id)
    session = await sessions.log_progress(db, body.user_id, body.rep_count)
    if session.status == sessions.COMPLETED:
        message = "Objective completed!"
    else:
        message = f"Progress: {session.completed_count}/{session.target_count}"
    return {"session": sessions.session_to_dict(session), "message": message}


@router.post("/settings/{userId}")
async def update_settings(
    userId: str,
    body: ObjectiveSettingsRequest,
    _: str = Depends(require_path_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = body.model_dump(exclude_none=True, exclude={"missed_goal_payout"})
    if body.missed_goal_payout is not None:
        changes["missed_goal_payout_cents"] = round(body.missed_goal_payout * 100)
    user, session = await sessions.apply_settings_change(db, userId, changes)
    return {
        "success": True,
        "user": user_to_dict(user),
        "session": sessions.session_to_dict(session),
    }
