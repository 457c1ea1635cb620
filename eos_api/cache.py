"""
cache.py — Redis coordination layer for EOS.

Namespace conventions:
  lock:payout-sweep            → held while one sweep pass runs      TTL sweep_lock_timeout_seconds
  invite-sms:{invite_id}       → set when an invite SMS is sent      TTL invite_sms_cooldown_seconds

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param — no module-level global state
  - client=None (REDIS_URL empty or Redis down at startup) degrades to
    "no coordination": correctness of payouts never depends on Redis, only
    the avoidance of redundant work does
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Request
from redis.exceptions import LockError

from eos_api.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
SWEEP_LOCK_KEY = "lock:payout-sweep"
INVITE_SMS_PREFIX = "invite-sms"


def make_invite_sms_key(invite_id: str) -> str:
    """Build Redis key for the invite SMS cooldown: invite-sms:{invite_id}"""
    return f"{INVITE_SMS_PREFIX}:{invite_id}"


# ---------------------------------------------------------------------------
# Pool factory: called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup — stored on app.state.redis.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


def get_redis(request: Request) -> Optional[aioredis.Redis]:
    """FastAPI dependency — None when Redis is disabled."""
    return getattr(request.app.state, "redis", None)


# ---------------------------------------------------------------------------
# Sweep lock
# ---------------------------------------------------------------------------

@asynccontextmanager
async def sweep_lock(client: Optional[aioredis.Redis]) -> AsyncIterator[bool]:
    """
    Non-blocking lock around one sweep pass.

    Yields True when this caller owns the pass (or Redis is disabled), False
    when another pass is already running. The per-session claim in the sweep
    is what guarantees one payout per session; this only avoids two passes
    racing through the same candidate list.
    """
    if client is None:
        yield True
        return

    lock = client.lock(SWEEP_LOCK_KEY, timeout=settings.sweep_lock_timeout_seconds)
    acquired = await lock.acquire(blocking=False)
    if not acquired:
        logger.info("Payout sweep already running — skipping this trigger")
        yield False
        return
    try:
        yield True
    finally:
        try:
            await lock.release()
        except LockError:
            # Lock expired mid-pass; nothing left to release
            logger.warning("Payout sweep lock expired before release")


# ---------------------------------------------------------------------------
# Invite SMS cooldown
# ---------------------------------------------------------------------------

async def start_invite_sms_cooldown(
    client: Optional[aioredis.Redis], invite_id: str
) -> bool:
    """
    Atomically start the cooldown window for an invite SMS.

    Returns True when the caller may send (no SMS went out for this invite
    within the window), False while the previous send is still cooling down.
    """
    if client is None:
        return True
    key = make_invite_sms_key(invite_id)
    started = await client.set(key, "1", ex=settings.invite_sms_cooldown_seconds, nx=True)
    if not started:
        logger.info("Invite SMS suppressed (cooldown) invite_id=%s", invite_id)
    return bool(started)


async def clear_invite_sms_cooldown(client: Optional[aioredis.Redis], invite_id: str) -> None:
    """Drop the cooldown after a failed send so the next attempt is not suppressed."""
    if client is None:
        return
    await client.delete(make_invite_sms_key(invite_id))
