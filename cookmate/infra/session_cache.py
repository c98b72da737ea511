"""Redis-backed cache for live cooking sessions.

Key layout:
- session:{session_id}            live session document, sliding TTL
- user:{user_id}:context          skill level + preferences snapshot
- timer:{session_id}:{timer_id}   countdown timer, expires with the timer

A missing key is never an error: callers fall back to the database.
"""

import json
import math
from typing import Any, Optional

from ..core import clock
from ..settings import settings
from .redis_client import get_redis

SESSION_PREFIX = "session:"
USER_PREFIX = "user:"
TIMER_PREFIX = "timer:"


async def get_json(key: str) -> Optional[Any]:
    r = await get_redis()
    raw = await r.get(key)
    return json.loads(raw) if raw else None


async def set_json(key: str, value, ttl_sec: int) -> None:
    r = await get_redis()
    await r.set(key, json.dumps(value), ex=ttl_sec)


async def delete_key(key: str) -> None:
    r = await get_redis()
    await r.delete(key)


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def user_context_key(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}:context"


def timer_key(session_id: str, timer_id: str) -> str:
    return f"{TIMER_PREFIX}{session_id}:{timer_id}"


class SessionCache:
    def __init__(self, ttl_sec: Optional[int] = None, user_ttl_sec: Optional[int] = None):
        self.ttl_sec = ttl_sec or settings.session_ttl_sec
        self.user_ttl_sec = user_ttl_sec or settings.user_context_ttl_sec

    # --- Sessions ---

    async def set_session(self, session_id: str, data: dict) -> None:
        await set_json(session_key(session_id), data, self.ttl_sec)

    async def get_session(self, session_id: str) -> Optional[dict]:
        return await get_json(session_key(session_id))

    async def update_session(self, session_id: str, updates: dict) -> Optional[dict]:
        """Shallow-merge updates into an existing entry and refresh its TTL.

        Returns None (and writes nothing) when the entry has expired or was
        never cached.
        """
        existing = await self.get_session(session_id)
        if existing is None:
            return None
        updated = {**existing, **updates}
        await self.set_session(session_id, updated)
        return updated

    async def delete_session(self, session_id: str) -> None:
        await delete_key(session_key(session_id))

    # --- User context ---

    async def set_user_context(self, user_id: str, context: dict) -> None:
        await set_json(user_context_key(user_id), context, self.user_ttl_sec)

    async def get_user_context(self, user_id: str) -> Optional[dict]:
        return await get_json(user_context_key(user_id))

    # --- Timers ---

    async def set_timer(self, session_id: str, timer_id: str, duration: int, description: str) -> dict:
        timer = {
            "timer_id": timer_id,
            "duration": duration,
            "description": description,
            "start_time": int(clock.utcnow().timestamp() * 1000),
        }
        await set_json(timer_key(session_id, timer_id), timer, duration)
        return timer

    async def get_timer(self, session_id: str, timer_id: str) -> Optional[dict]:
        timer = await get_json(timer_key(session_id, timer_id))
        if timer is None:
            return None
        elapsed_ms = int(clock.utcnow().timestamp() * 1000) - timer["start_time"]
        remaining_ms = max(0, timer["duration"] * 1000 - elapsed_ms)
        return {**timer, "remaining": int(math.floor(remaining_ms / 1000))}

    async def delete_timer(self, session_id: str, timer_id: str) -> None:
        await delete_key(timer_key(session_id, timer_id))


session_cache = SessionCache()
