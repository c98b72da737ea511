"""Cooking session lifecycle across the Redis cache and the database.

Policy:
- every mutation writes the database row and, if one exists, the cache
  entry (refreshing its TTL)
- reads hit the cache first and fall back to the database; a miss never
  repopulates the cache
- once a session ends its cache entry is deleted and the row is the only
  copy

There is no locking or version check: concurrent writers to the same
session race and the last write wins in each store.
"""

import logging
import math
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core import clock
from ..errors import Forbidden, NotFound, ValidationError
from ..infra.session_cache import SessionCache, session_cache
from ..models import CookingSession, User, UserProgress, default_session_context
from ..realtime.session_bus import publish_event
from ..schemas import InteractionOut, SessionOut
from .progress import ProgressAggregator

logger = logging.getLogger("cookmate.sessions")

UPDATABLE_FIELDS = ("current_step", "status", "context")
ACTIVE_STATUSES = ("active", "paused")
DEFAULT_PAGE_SIZE = 10


def session_from_cache(doc: dict) -> SessionOut:
    return SessionOut(
        id=doc["session_id"],
        user_id=doc["user_id"],
        recipe_id=doc["recipe_id"],
        recipe_name=doc["recipe_name"],
        current_step=doc.get("current_step", 0),
        total_steps=doc["total_steps"],
        status=doc.get("status", "active"),
        started_at=doc.get("start_time"),
        context=doc.get("context") or {},
        timers=doc.get("timers") or [],
        source="cache",
    )


def session_from_row(row: CookingSession, include_interactions: bool = False) -> SessionOut:
    return SessionOut(
        id=row.id,
        user_id=row.user_id,
        recipe_id=row.recipe_id,
        recipe_name=row.recipe_name,
        current_step=row.current_step,
        total_steps=row.total_steps,
        status=row.status,
        started_at=clock.as_utc(row.started_at),
        completed_at=clock.as_utc(row.completed_at),
        duration=row.duration,
        feedback=row.feedback,
        context=row.context or {},
        source="store",
        interactions=(
            [InteractionOut.model_validate(i) for i in row.interactions] if include_interactions else None
        ),
    )


class SessionOrchestrator:
    def __init__(self, db: Session, cache: Optional[SessionCache] = None):
        self.db = db
        self.cache = cache or session_cache

    # --- Lookups ---

    def _load_owned(self, session_id: str, user_id: str) -> CookingSession:
        row = self.db.get(CookingSession, session_id)
        if not row:
            raise NotFound("Session not found")
        if row.user_id != user_id:
            logger.warning(f"User {user_id} denied access to session {session_id}")
            raise Forbidden("Unauthorized access to session")
        return row

    async def get_session(self, session_id: str, user_id: str) -> SessionOut:
        """Cache first; on a miss the database row plus its interaction history."""
        cached = await self.cache.get_session(session_id)
        if cached is not None:
            if cached.get("user_id") != user_id:
                logger.warning(f"User {user_id} denied access to cached session {session_id}")
                raise Forbidden("Unauthorized access to session")
            return session_from_cache(cached)

        row = self._load_owned(session_id, user_id)
        return session_from_row(row, include_interactions=True)

    # --- Lifecycle ---

    async def start_session(
        self,
        user: User,
        recipe_id: str,
        recipe_name: str,
        total_steps: int,
        initial_context: Optional[dict] = None,
    ) -> SessionOut:
        errors = []
        if not recipe_name or not recipe_name.strip():
            errors.append({"field": "recipe_name", "message": "Recipe name is required"})
        if total_steps is None or total_steps < 1:
            errors.append({"field": "total_steps", "message": "Total steps must be a positive integer"})
        if errors:
            raise ValidationError(errors=errors)

        context = {
            **default_session_context(),
            "skill_level": user.skill_level,
            **(initial_context or {}),
        }
        row = CookingSession(
            id=str(uuid.uuid4()),
            user_id=user.id,
            recipe_id=str(recipe_id),
            recipe_name=recipe_name.strip(),
            total_steps=total_steps,
            current_step=0,
            status="active",
            context=context,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)

        await self.cache.set_session(row.id, {
            "session_id": row.id,
            "user_id": user.id,
            "recipe_id": row.recipe_id,
            "recipe_name": row.recipe_name,
            "current_step": 0,
            "total_steps": total_steps,
            "status": "active",
            "start_time": clock.iso(row.started_at),
            "context": context,
            "timers": [],
        })

        logger.info(f"Started session {row.id} for user {user.id} recipe {row.recipe_id}")
        await publish_event(row.id, "session_started", {
            "recipe_name": row.recipe_name,
            "total_steps": total_steps,
        })
        return session_from_row(row)

    async def update_session(self, session_id: str, user_id: str, updates: dict) -> SessionOut:
        """Shallow-merge ``updates`` into both stores.

        Top-level keys replace what is stored (``context`` is replaced as a
        whole, not deep-merged).
        """
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(errors=[
                {"field": k, "message": "Field cannot be updated"} for k in sorted(unknown)
            ])

        row = self._load_owned(session_id, user_id)
        step = updates.get("current_step")
        if step is not None and not 0 <= step <= row.total_steps:
            raise ValidationError.for_field(
                "current_step", f"Current step must be between 0 and {row.total_steps}"
            )

        await self._write_through(row, updates)
        await publish_event(session_id, "session_updated", {"updates": updates})
        return session_from_row(row)

    async def end_session(
        self, session_id: str, user_id: str, feedback: Optional[dict] = None
    ) -> tuple[SessionOut, UserProgress]:
        row = self._load_owned(session_id, user_id)
        if row.completed_at is not None:
            raise ValidationError.for_field("session_id", "Session has already ended")

        feedback = feedback or {}
        row.completed_at = clock.utcnow()
        row.duration = row.calculate_duration()
        row.status = "completed"
        row.feedback = feedback

        progress = ProgressAggregator(self.db).record_completion(
            user_id=user_id,
            recipe_id=row.recipe_id,
            recipe_name=row.recipe_name,
            duration=row.duration,
            feedback=feedback,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(row)
        self.db.refresh(progress)

        await self.cache.delete_session(session_id)

        logger.info(f"Session {session_id} completed in {row.duration}s")
        await publish_event(session_id, "session_ended", {
            "duration": row.duration,
            "feedback": feedback,
        })
        return session_from_row(row), progress

    async def apply_updates(self, session_id: str, updates: dict) -> None:
        """Write-through for callers that already resolved ownership."""
        row = self.db.get(CookingSession, session_id)
        if not row:
            raise NotFound("Session not found")
        await self._write_through(row, updates)

    async def _write_through(self, row: CookingSession, updates: dict, cache_extra: Optional[dict] = None) -> None:
        for field, value in updates.items():
            setattr(row, field, value)
        self.db.commit()
        self.db.refresh(row)
        await self.cache.update_session(row.id, {**updates, **(cache_extra or {})})

    # --- Queries ---

    def list_active_sessions(self, user_id: str) -> list[SessionOut]:
        rows = self.db.scalars(
            select(CookingSession)
            .where(CookingSession.user_id == user_id, CookingSession.status.in_(ACTIVE_STATUSES))
            .order_by(CookingSession.started_at.desc())
        ).all()
        return [session_from_row(r) for r in rows]

    def list_session_history(self, user_id: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> dict:
        page = max(page, 1)
        page_size = max(page_size, 1)
        total = self.db.scalar(
            select(func.count()).select_from(CookingSession).where(CookingSession.user_id == user_id)
        ) or 0
        rows = self.db.scalars(
            select(CookingSession)
            .where(CookingSession.user_id == user_id)
            .order_by(CookingSession.started_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        ).all()
        return {
            "results": len(rows),
            "total_pages": math.ceil(total / page_size),
            "current_page": page,
            "sessions": [session_from_row(r) for r in rows],
        }

    # --- Timers ---

    async def start_timer(self, session_id: str, user_id: str, duration_sec: int, description: str) -> dict:
        view = await self.get_session(session_id, user_id)
        timer_id = str(uuid.uuid4())
        timer = await self.cache.set_timer(session_id, timer_id, duration_sec, description)

        record = {
            "timer_id": timer_id,
            "description": description,
            "duration": duration_sec,
            "started_at": clock.iso(clock.utcnow()),
            "step": view.current_step,
        }
        context = {**view.context, "timers_used": [*view.context.get("timers_used", []), record]}
        row = self._load_owned(session_id, user_id)
        await self._write_through(row, {"context": context}, cache_extra={"timers": [*view.timers, record]})

        await publish_event(session_id, "timer_started", {"timer": record})
        return {**timer, "remaining": duration_sec}

    async def get_timer(self, session_id: str, user_id: str, timer_id: str) -> dict:
        await self.get_session(session_id, user_id)
        timer = await self.cache.get_timer(session_id, timer_id)
        if timer is None:
            raise NotFound("Timer not found or already finished")
        return timer

    async def cancel_timer(self, session_id: str, user_id: str, timer_id: str) -> None:
        await self.get_session(session_id, user_id)
        await self.cache.delete_timer(session_id, timer_id)
