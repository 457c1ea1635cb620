"""
sessions.py — Daily objective session lifecycle.

A session is the per-day record of progress toward the user's objective:

  pending ──log──▶ in_progress ──log──▶ completed
     │                  │
     └──── sweep ───────┴──▶ missed          (deadline passed, stake moved)
     └──── sweep ──────────▶ accepted        (deadline passed, objective met)

"Today" is always the calendar day in the user's own timezone, falling back to
settings.default_timezone. Creation is idempotent: the row is inserted with
ON CONFLICT DO NOTHING against UNIQUE (user_id, session_date) and re-read.
"""
import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession

from eos_api import store
from eos_api.config import settings
from eos_api.errors import Conflict, NotFound
from eos_api.models.objective_session import (
    ACCEPTED,
    COMPLETED,
    IN_PROGRESS,
    PENDING,
    ObjectiveSessionORM,
)
from eos_api.models.user import UserORM

logger = logging.getLogger(__name__)

# Objectives where the total must stay at or under the target ("limit")
# rather than reach it ("reach"). Judged only at the deadline.
LIMIT_OBJECTIVES = frozenset({"screen_time", "calories"})

SCHEDULE_DAILY = "daily"
SCHEDULE_WEEKDAYS = "weekdays"
_WEEKEND = (5, 6)

# Sessions whose outcome for the day is already decided
SETTLED_STATUSES = frozenset({COMPLETED, ACCEPTED})


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def user_zone(user: UserORM) -> ZoneInfo:
    name = user.timezone or settings.default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for user_id=%s, using default", name, user.id)
        return ZoneInfo(settings.default_timezone)


def validate_timezone(name: str) -> str:
    """Return `name` if it is a known IANA zone; ValueError otherwise."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone {name!r}") from exc
    return name


def local_now(user: UserORM, now: Optional[datetime] = None) -> datetime:
    """Current instant (or `now`, which must be tz-aware) in the user's timezone."""
    return (now or datetime.now(timezone.utc)).astimezone(user_zone(user))


def local_today(user: UserORM, now: Optional[datetime] = None) -> date:
    return local_now(user, now).date()


def parse_deadline(value: str) -> time:
    """'HH:MM' or 'HH:MM:SS' → time. Raises ValueError on anything else."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid deadline {value!r}, expected HH:MM")
    return time(*(int(p) for p in parts))


def deadline_at(session: ObjectiveSessionORM, zone: ZoneInfo) -> datetime:
    """The session's deadline as an aware datetime on its own calendar day."""
    return datetime.combine(session.session_date, parse_deadline(session.deadline), tzinfo=zone)


def is_scheduled_day(user: UserORM, day: date) -> bool:
    if user.objective_schedule == SCHEDULE_WEEKDAYS:
        return day.weekday() not in _WEEKEND
    return True


# ---------------------------------------------------------------------------
# Objective evaluation
# ---------------------------------------------------------------------------

def objective_met(objective_type: str, completed_count: int, target_count: int) -> bool:
    if objective_type in LIMIT_OBJECTIVES:
        return completed_count <= target_count
    return completed_count >= target_count


def progress_status(objective_type: str, completed_count: int, target_count: int) -> str:
    # A limit can still be broken until the deadline, so it never completes early
    if objective_type in LIMIT_OBJECTIVES:
        return IN_PROGRESS
    return COMPLETED if completed_count >= target_count else IN_PROGRESS


def session_to_dict(session: Optional[ObjectiveSessionORM]) -> Optional[dict[str, Any]]:
    if session is None:
        return None
    return {
        "id": session.id,
        "user_id": session.user_id,
        "session_date": session.session_date.isoformat(),
        "objective_type": session.objective_type,
        "target_count": session.target_count,
        "completed_count": session.completed_count,
        "deadline": session.deadline,
        "status": session.status,
        "payout_amount_cents": session.payout_amount_cents,
        "payout_triggered": session.payout_triggered,
        "payout_transaction_id": session.payout_transaction_id,
        "completed_at": session.completed_at.isoformat() if session.completed_at else None,
    }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def _require_user(db: AsyncSession, user_id: str) -> UserORM:
    user = await store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def _require_today_session(
    db: AsyncSession, user: UserORM, now: Optional[datetime]
) -> ObjectiveSessionORM:
    session = await store.get_session_for_date(db, user.id, local_today(user, now))
    if session is None:
        raise NotFound("No session found for today")
    return session


def _new_session_values(user: UserORM, day: date) -> dict[str, Any]:
    stamp = datetime.now(timezone.utc)
    return {
        "id": str(uuid.uuid4()),
        "user_id": user.id,
        "session_date": day,
        "objective_type": user.objective_type or settings.default_objective_type,
        "target_count": user.objective_count or settings.default_objective_count,
        "completed_count": 0,
        "deadline": user.objective_deadline or settings.default_deadline,
        "status": PENDING,
        "payout_amount_cents": user.missed_goal_payout_cents or 0,
        "payout_triggered": False,
        "created_at": stamp,
        "updated_at": stamp,
    }


async def ensure_session(
    db: AsyncSession, user: UserORM, now: Optional[datetime] = None
) -> tuple[Optional[ObjectiveSessionORM], bool]:
    """
    Return (today's session, created) for a user, creating it if absent.

    Returns (None, False) on days the user's schedule skips.
    """
    today = local_today(user, now)
    if not is_scheduled_day(user, today):
        return None, False

    existing = await store.get_session_for_date(db, user.id, today)
    if existing is not None:
        return existing, False

    created = await store.insert_session_if_absent(db, _new_session_values(user, today))
    session = await store.get_session_for_date(db, user.id, today)
    if created:
        logger.info(
            "Session created session_id=%s user_id=%s date=%s target=%d payout_cents=%d",
            session.id,
            user.id,
            today,
            session.target_count,
            session.payout_amount_cents,
        )
    return session, created


async def ensure_session_for(
    db: AsyncSession, user_id: str, now: Optional[datetime] = None
) -> tuple[Optional[ObjectiveSessionORM], bool]:
    user = await _require_user(db, user_id)
    return await ensure_session(db, user, now)


async def create_daily_sessions(
    db: AsyncSession, now: Optional[datetime] = None
) -> list[ObjectiveSessionORM]:
    """Ensure today's session for every committed user; return those actually created."""
    created_sessions = []
    for user in await store.list_committed_users(db):
        session, created = await ensure_session(db, user, now)
        if created:
            created_sessions.append(session)
    logger.info("Daily sessions created count=%d", len(created_sessions))
    return created_sessions


async def get_today(
    db: AsyncSession, user_id: str, now: Optional[datetime] = None
) -> tuple[Optional[ObjectiveSessionORM], date]:
    user = await _require_user(db, user_id)
    today = local_today(user, now)
    return await store.get_session_for_date(db, user.id, today), today


async def log_progress(
    db: AsyncSession, user_id: str, delta: int, now: Optional[datetime] = None
) -> ObjectiveSessionORM:
    """Add `delta` to today's count. No balance change."""
    user = await _require_user(db, user_id)
    session = await _require_today_session(db, user, now)
    if session.payout_triggered:
        raise Conflict("The payout for today's session has already been processed")
    if session.status == ACCEPTED:
        raise Conflict("Today's session has already been settled")

    # Increment in SQL so concurrent logs for the same session add up
    session.completed_count = ObjectiveSessionORM.completed_count + delta
    await db.flush()
    await db.refresh(session)

    session.status = progress_status(
        session.objective_type, session.completed_count, session.target_count
    )
    if session.status == COMPLETED and session.completed_at is None:
        session.completed_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info(
        "Progress logged session_id=%s delta=%d count=%d/%d status=%s",
        session.id,
        delta,
        session.completed_count,
        session.target_count,
        session.status,
    )
    return session


async def complete(
    db: AsyncSession,
    user_id: str,
    completed_count: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[ObjectiveSessionORM, bool]:
    """
    Record an absolute count for today (defaults to the target).

    Returns (session, already_completed). The stored count is never lowered.
    """
    user = await _require_user(db, user_id)
    session = await _require_today_session(db, user, now)
    if session.status in SETTLED_STATUSES:
        return session, True
    if session.payout_triggered:
        raise Conflict("The payout for today's session has already been processed")

    requested = session.target_count if completed_count is None else completed_count
    session.completed_count = max(session.completed_count, requested)
    session.status = progress_status(
        session.objective_type, session.completed_count, session.target_count
    )
    if session.status == COMPLETED:
        session.completed_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info(
        "Session completion recorded session_id=%s count=%d/%d status=%s",
        session.id,
        session.completed_count,
        session.target_count,
        session.status,
    )
    return session, False


async def apply_settings_change(
    db: AsyncSession,
    user_id: str,
    changes: dict[str, Any],
    now: Optional[datetime] = None,
) -> tuple[UserORM, Optional[ObjectiveSessionORM]]:
    """
    Merge objective settings onto the user and restart today's session.

    `changes` holds only the supplied fields, already in storage units
    (missed_goal_payout_cents). Changing the target restarts the day: today's
    session goes back to pending with completed_count 0, unless the day is
    already settled (payout triggered, completed or accepted), in which case
    the session is left untouched and the new config applies from tomorrow.
    """
    user = await _require_user(db, user_id)
    for field in ("objective_type", "objective_count", "objective_schedule", "objective_deadline", "timezone"):
        if changes.get(field) is not None:
            setattr(user, field, changes[field])
    payout_cents = changes.get("missed_goal_payout_cents")
    if payout_cents is not None:
        user.missed_goal_payout_cents = payout_cents
        if payout_cents > 0:
            user.payout_committed = True
    await db.flush()

    today = local_today(user, now)
    session = await store.get_session_for_date(db, user.id, today)
    if session is None:
        if not is_scheduled_day(user, today):
            return user, None
        session, _ = await ensure_session(db, user, now)
    elif session.payout_triggered or session.status in SETTLED_STATUSES:
        logger.info(
            "Settings changed after today was settled, session_id=%s status=%s left as is",
            session.id,
            session.status,
        )
    else:
        session.objective_type = user.objective_type
        session.target_count = user.objective_count
        session.deadline = user.objective_deadline
        session.payout_amount_cents = user.missed_goal_payout_cents
        session.completed_count = 0
        session.completed_at = None
        session.status = PENDING
        await db.flush()
        logger.info(
            "Session reset after settings change session_id=%s target=%d deadline=%s",
            session.id,
            session.target_count,
            session.deadline,
        )
    return user, session
