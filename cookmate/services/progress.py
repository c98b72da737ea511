"""Progress ledger: per (user, recipe) mastery plus analytics over history."""

import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core import clock
from ..models import CookingSession, User, UserProgress, round_half_up
from ..schemas import ProgressOut

logger = logging.getLogger("cookmate.progress")

RECENT_ACTIVITY_LIMIT = 10
RECENT_SESSIONS_PER_RECIPE = 5
SPEED_COOK_SECONDS = 30 * 60
STREAK_DAYS = 7


def skill_bucket(mastery_level: int) -> str:
    if mastery_level < 30:
        return "beginner"
    if mastery_level < 70:
        return "intermediate"
    return "expert"


def _streak_reached_on(days: list[date], length: int) -> Optional[date]:
    """First day on which ``length`` consecutive cooking days were reached."""
    run = 0
    prev: Optional[date] = None
    for day in sorted(set(days)):
        run = run + 1 if prev and day - prev == timedelta(days=1) else 1
        if run >= length:
            return day
        prev = day
    return None


class ProgressAggregator:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, user_id: str, recipe_id: str) -> Optional[UserProgress]:
        return self.db.scalar(
            select(UserProgress).where(UserProgress.user_id == user_id, UserProgress.recipe_id == recipe_id)
        )

    def record_completion(
        self,
        user_id: str,
        recipe_id: str,
        recipe_name: str,
        duration: Optional[int],
        feedback: Optional[dict] = None,
        commit: bool = True,
    ) -> UserProgress:
        progress = self._get(user_id, recipe_id)
        if progress is None:
            progress = UserProgress(user_id=user_id, recipe_id=recipe_id, recipe_name=recipe_name)
            self.db.add(progress)

        progress.update_progress(duration, feedback)
        logger.info(
            f"Progress for user {user_id} recipe {recipe_id}: "
            f"count={progress.completion_count} mastery={progress.mastery_level}"
        )

        if commit:
            self.db.commit()
            self.db.refresh(progress)
        else:
            self.db.flush()
        return progress

    def get_overview(self, user_id: str) -> dict:
        records = self.db.scalars(
            select(UserProgress)
            .where(UserProgress.user_id == user_id)
            .order_by(UserProgress.last_cooked.desc())
        ).all()
        completed = self.db.scalars(
            select(CookingSession.id).where(
                CookingSession.user_id == user_id, CookingSession.status == "completed"
            )
        ).all()

        breakdown = {"beginner": 0, "intermediate": 0, "expert": 0}
        for p in records:
            breakdown[skill_bucket(p.mastery_level)] += 1

        average_mastery = (
            round_half_up(sum(p.mastery_level for p in records) / len(records)) if records else 0
        )

        return {
            "overview": {
                "total_recipes": len(records),
                "total_sessions": len(completed),
                "average_mastery": average_mastery,
                "skill_level_breakdown": breakdown,
            },
            "recent_activity": [
                {
                    "recipe_id": p.recipe_id,
                    "recipe_name": p.recipe_name,
                    "mastery_level": p.mastery_level,
                    "last_cooked": clock.iso(p.last_cooked),
                    "completion_count": p.completion_count,
                }
                for p in records[:RECENT_ACTIVITY_LIMIT]
            ],
            "all_progress": [ProgressOut.model_validate(p).model_dump(mode="json") for p in records],
        }

    def get_recipe_progress(self, user_id: str, recipe_id: str) -> dict:
        progress = self._get(user_id, recipe_id)
        if progress is None:
            return {"progress": None, "message": "No progress found for this recipe"}

        sessions = self.db.scalars(
            select(CookingSession)
            .where(CookingSession.user_id == user_id, CookingSession.recipe_id == recipe_id)
            .order_by(CookingSession.started_at.desc())
            .limit(RECENT_SESSIONS_PER_RECIPE)
        ).all()
        return {
            "progress": ProgressOut.model_validate(progress).model_dump(mode="json"),
            "recent_sessions": [
                {
                    "id": s.id,
                    "status": s.status,
                    "started_at": clock.iso(s.started_at),
                    "completed_at": clock.iso(s.completed_at),
                    "duration": s.duration,
                    "feedback": s.feedback,
                }
                for s in sessions
            ],
        }

    def get_stats(self, user_id: str, period_days: int = 30) -> dict:
        since = clock.utcnow() - timedelta(days=period_days)
        sessions = self.db.scalars(
            select(CookingSession)
            .where(CookingSession.user_id == user_id, CookingSession.started_at >= since)
            .order_by(CookingSession.started_at.asc())
        ).all()

        timed = [s for s in sessions if s.status == "completed" and s.duration]
        favorite_recipes: dict[str, int] = {}
        daily_activity: dict[str, int] = {}
        for s in sessions:
            if s.recipe_name:
                favorite_recipes[s.recipe_name] = favorite_recipes.get(s.recipe_name, 0) + 1
            day = clock.as_utc(s.started_at).date().isoformat()
            daily_activity[day] = daily_activity.get(day, 0) + 1

        progression = self.db.scalars(
            select(UserProgress)
            .where(UserProgress.user_id == user_id)
            .order_by(UserProgress.updated_at.asc())
        ).all()

        return {
            "period": f"{period_days} days",
            "stats": {
                "total_sessions": len(sessions),
                "completed_sessions": sum(1 for s in sessions if s.status == "completed"),
                "total_cooking_time": sum(s.duration or 0 for s in sessions),
                "average_session_time": (
                    round_half_up(sum(s.duration for s in timed) / len(timed)) if timed else 0
                ),
                "favorite_recipes": favorite_recipes,
                "daily_activity": daily_activity,
                "skill_progression": [
                    {"date": clock.iso(p.updated_at), "recipe": p.recipe_name, "mastery_level": p.mastery_level}
                    for p in progression
                ],
            },
        }

    def get_achievements(self, user: User) -> dict:
        records = self.db.scalars(
            select(UserProgress)
            .where(UserProgress.user_id == user.id)
            .order_by(UserProgress.created_at.asc())
        ).all()
        completed = self.db.scalars(
            select(CookingSession)
            .where(CookingSession.user_id == user.id, CookingSession.status == "completed")
            .order_by(CookingSession.completed_at.asc())
        ).all()

        speedy = next((s for s in completed if s.duration and s.duration < SPEED_COOK_SECONDS), None)
        perfect = next((p for p in records if p.mastery_level >= 100), None)
        streak_day = _streak_reached_on(
            [clock.as_utc(s.completed_at).date() for s in completed if s.completed_at], STREAK_DAYS
        )
        upgraded = user.skill_level != "beginner"

        achievements = [
            {
                "id": "first_recipe",
                "name": "First Recipe",
                "description": "Complete your first recipe",
                "unlocked": bool(completed),
                "unlocked_at": clock.iso(completed[0].completed_at) if completed else None,
            },
            {
                "id": "recipe_master",
                "name": "Recipe Master",
                "description": "Complete 10 different recipes",
                "unlocked": len(records) >= 10,
                "unlocked_at": clock.iso(records[9].created_at) if len(records) >= 10 else None,
            },
            {
                "id": "speed_cook",
                "name": "Speed Cook",
                "description": "Complete a recipe in under 30 minutes",
                "unlocked": speedy is not None,
                "unlocked_at": clock.iso(speedy.completed_at) if speedy else None,
            },
            {
                "id": "perfectionist",
                "name": "Perfectionist",
                "description": "Achieve 100% mastery on any recipe",
                "unlocked": perfect is not None,
                "unlocked_at": clock.iso(perfect.updated_at) if perfect else None,
            },
            {
                "id": "consistent_cook",
                "name": "Consistent Cook",
                "description": f"Cook for {STREAK_DAYS} days in a row",
                "unlocked": streak_day is not None,
                "unlocked_at": streak_day.isoformat() if streak_day else None,
            },
            {
                "id": "skill_upgrade",
                "name": "Skill Upgrade",
                "description": "Upgrade your skill level",
                "unlocked": upgraded,
                "unlocked_at": clock.iso(user.updated_at) if upgraded else None,
            },
        ]

        unlocked = sum(1 for a in achievements if a["unlocked"])
        return {
            "achievements": achievements,
            "summary": {
                "unlocked": unlocked,
                "total": len(achievements),
                "percentage": round_half_up(unlocked / len(achievements) * 100),
            },
        }
