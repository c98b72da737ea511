"""SQLAlchemy ORM models for CookMate.

Tables:
- users: Account + cooking profile (never hard-deleted, deactivated via is_active)
- cooking_sessions: One user's run through one recipe (durable copy of the cached session)
- coaching_interactions: One AI exchange inside a session
- user_progress: Per (user, recipe) mastery ledger
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Integer,
    Boolean,
    Float,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from .core import clock
from .db import Base


SKILL_LEVELS = ("beginner", "intermediate", "expert")
SESSION_STATUSES = ("active", "paused", "completed", "abandoned")
INTERACTION_TYPES = (
    "step_guidance",
    "question_answer",
    "tip_suggestion",
    "troubleshooting",
    "encouragement",
    "timer_management",
    "substitution_help",
    "technique_explanation",
)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return clock.utcnow()


def default_preferences() -> dict:
    return {
        "dietary_restrictions": [],
        "cuisine_preferences": [],
        "cooking_goals": [],
        "voice_settings": {"speed": "normal", "voice": "default"},
    }


def default_session_context() -> dict:
    return {
        "pace": "normal",
        "questions_asked": [],
        "tips_provided": [],
        "timers_used": [],
        "adaptations": [],
    }


def default_session_feedback() -> dict:
    return {"rating": None, "difficulty": None, "comments": None, "improvements": []}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    skill_level: Mapped[str] = mapped_column(String(20), nullable=False, default="beginner")
    preferences: Mapped[dict] = mapped_column(JSONB, nullable=False, default=default_preferences)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    sessions: Mapped[list["CookingSession"]] = relationship(
        "CookingSession", back_populates="user", order_by="desc(CookingSession.started_at)"
    )
    progress: Mapped[list["UserProgress"]] = relationship("UserProgress", back_populates="user")


class CookingSession(Base):
    """A user's run through one recipe.

    The mutable fields are mirrored in the Redis session cache while the
    session is live; this row is the permanent record.
    """
    __tablename__ = "cooking_sessions"
    __table_args__ = (
        Index("ix_cooking_sessions_user_id", "user_id"),
        Index("ix_cooking_sessions_recipe_id", "recipe_id"),
        Index("ix_cooking_sessions_status", "status"),
        Index("ix_cooking_sessions_started_at", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    recipe_id: Mapped[str] = mapped_column(String(36), nullable=False)
    recipe_name: Mapped[str] = mapped_column(String(255), nullable=False)

    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds

    feedback: Mapped[dict] = mapped_column(JSONB, nullable=False, default=default_session_feedback)
    skill_improvements: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    context: Mapped[dict] = mapped_column(JSONB, nullable=False, default=default_session_context)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    user: Mapped["User"] = relationship("User", back_populates="sessions")
    interactions: Mapped[list["CoachingInteraction"]] = relationship(
        "CoachingInteraction", back_populates="session", cascade="all, delete-orphan",
        order_by="CoachingInteraction.timestamp"
    )

    def calculate_duration(self) -> Optional[int]:
        if self.completed_at and self.started_at:
            delta = clock.as_utc(self.completed_at) - clock.as_utc(self.started_at)
            return int(math.floor(delta.total_seconds()))
        return None

    def get_progress(self) -> dict:
        total = self.total_steps or 0
        return {
            "current": self.current_step,
            "total": total,
            "percentage": round_half_up(self.current_step / total * 100) if total else 0,
        }


class CoachingInteraction(Base):
    """One AI exchange within a session. Written once; only feedback mutates it."""
    __tablename__ = "coaching_interactions"
    __table_args__ = (
        Index("ix_coaching_interactions_session_id", "session_id"),
        Index("ix_coaching_interactions_type", "interaction_type"),
        Index("ix_coaching_interactions_timestamp", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cooking_sessions.id", ondelete="CASCADE"), nullable=False
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    user_input: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    coach_response: Mapped[str] = mapped_column(Text, nullable=False)
    interaction_type: Mapped[str] = mapped_column(String(40), nullable=False)
    context: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # ms
    user_satisfaction: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 1-5
    provider: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)  # e.g. "gemini"

    session: Mapped["CookingSession"] = relationship("CookingSession", back_populates="interactions")


class UserProgress(Base):
    """Per (user, recipe) mastery ledger, updated on every completed session."""
    __tablename__ = "user_progress"
    __table_args__ = (
        Index("ix_user_progress_user_id", "user_id"),
        Index("ix_user_progress_recipe_id", "recipe_id"),
        Index("ix_user_progress_mastery_level", "mastery_level"),
        UniqueConstraint("user_id", "recipe_id", name="uq_user_progress_user_recipe"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    recipe_id: Mapped[str] = mapped_column(String(36), nullable=False)
    recipe_name: Mapped[str] = mapped_column(String(255), nullable=False)

    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    best_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    last_cooked: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    mastery_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0-100

    skills_learned: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    difficulty_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    personal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    adaptations: Mapped[dict] = mapped_column(
        JSONB, nullable=False, default=lambda: {"ingredients": [], "techniques": [], "timing": []}
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    user: Mapped["User"] = relationship("User", back_populates="progress")

    def update_progress(self, duration: Optional[int], feedback: Optional[dict]) -> None:
        """Fold one completed session into the ledger.

        Order matters: the count is bumped first so the running mean is
        weighted by the prior count.
        """
        self.completion_count = (self.completion_count or 0) + 1
        self.last_cooked = clock.utcnow()

        if duration:
            if not self.average_time:
                self.average_time = duration
            else:
                n = self.completion_count
                self.average_time = round_half_up((self.average_time * (n - 1) + duration) / n)

            if not self.best_time or duration < self.best_time:
                self.best_time = duration

        rating = (feedback or {}).get("rating") or 0
        self.mastery_level = min(100, self.completion_count * 10 + rating * 5)
        # mastery changes must bump updated_at even if nothing else did
        self.updated_at = clock.utcnow()
