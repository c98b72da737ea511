"""Pydantic schemas for the CookMate API.

Request/response models for:
- Auth + user profile
- Cooking sessions (cache or database view)
- Coaching interactions and analytics
- Progress ledger
"""

import re
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

SkillLevel = Literal["beginner", "intermediate", "expert"]
SessionStatus = Literal["active", "paused", "completed", "abandoned"]

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def ok(data: Optional[dict] = None, **extra) -> dict:
    """Success envelope shared by every endpoint."""
    body: dict[str, Any] = {"status": "success"}
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


# --- Auth / Users ---

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str
    password: str = Field(..., min_length=8)
    skill_level: Optional[SkillLevel] = None
    preferences: Optional[dict] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        if not EMAIL_RE.match(v):
            raise ValueError("Please provide a valid email")
        return v.lower()

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if not PASSWORD_RE.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, and one number"
            )
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        if not EMAIL_RE.match(v):
            raise ValueError("Please provide a valid email")
        return v.lower()


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    skill_level: str
    preferences: dict
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    skill_level: Optional[SkillLevel] = None
    preferences: Optional[dict] = None


class PreferencesUpdateRequest(BaseModel):
    dietary_restrictions: Optional[list[str]] = None
    cuisine_preferences: Optional[list[str]] = None
    cooking_goals: Optional[list[str]] = None
    voice_settings: Optional[dict] = None


class AccountDeleteRequest(BaseModel):
    confirm_password: Optional[str] = None


# --- Sessions ---

class SessionFeedback(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    difficulty: Optional[int] = Field(None, ge=1, le=5)
    comments: Optional[str] = None
    improvements: list[str] = []


class SessionStartRequest(BaseModel):
    recipe_id: UUID
    recipe_name: str = Field(..., min_length=1, max_length=255)
    total_steps: int = Field(..., ge=1)
    context: Optional[dict] = None


class SessionUpdateRequest(BaseModel):
    current_step: Optional[int] = Field(None, ge=0)
    status: Optional[SessionStatus] = None
    context: Optional[dict] = None


class SessionEndRequest(BaseModel):
    feedback: Optional[SessionFeedback] = None


class TimerCreateRequest(BaseModel):
    duration_sec: int = Field(..., ge=1, le=24 * 60 * 60)
    description: str = Field("", max_length=200)


class InteractionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    timestamp: datetime
    user_input: Optional[str] = None
    coach_response: str
    interaction_type: str
    context: dict = {}
    response_time: Optional[int] = None
    user_satisfaction: Optional[int] = None
    provider: Optional[str] = None


class SessionOut(BaseModel):
    """A session as seen by clients, whichever store served it."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    recipe_id: str
    recipe_name: str
    current_step: int
    total_steps: int
    status: str = "active"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None
    feedback: Optional[dict] = None
    context: dict = {}
    timers: list[dict] = []
    source: Literal["cache", "store"] = "store"
    interactions: Optional[list[InteractionOut]] = None


class ProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    recipe_id: str
    recipe_name: str
    completion_count: int
    average_time: Optional[int] = None
    best_time: Optional[int] = None
    last_cooked: Optional[datetime] = None
    mastery_level: int
    skills_learned: list = []
    difficulty_rating: Optional[float] = None
    personal_notes: Optional[str] = None
    adaptations: dict = {}
    updated_at: Optional[datetime] = None


# --- Coach ---

class StepData(BaseModel):
    model_config = ConfigDict(extra="allow")

    instruction: Optional[str] = None
    ingredients: list[str] = []
    estimated_time: Optional[str] = None
    difficulty: Optional[str] = None


class AskRequest(BaseModel):
    session_id: UUID
    question: str = Field(..., min_length=1, max_length=2000)
    context: Optional[dict] = None


class StepGuidanceRequest(BaseModel):
    session_id: UUID
    step_number: int = Field(..., ge=1)
    step_data: Optional[StepData] = None


class TroubleshootRequest(BaseModel):
    session_id: UUID
    issue: str = Field(..., min_length=1, max_length=2000)
    context: Optional[dict] = None


class SubstituteRequest(BaseModel):
    session_id: UUID
    ingredient: str = Field(..., min_length=1, max_length=200)
    context: Optional[dict] = None


class FeedbackRequest(BaseModel):
    session_id: UUID
    interaction_id: UUID
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = None


class CoachReply(BaseModel):
    interaction_id: str
    interaction_type: str
    response: str
    response_time: int
    provider: str
    usage: dict = {}


class SessionAnalytics(BaseModel):
    total_interactions: int = 0
    interaction_types: dict[str, int] = {}
    average_response_time: int = 0
    average_satisfaction: str | int = 0
    adaptations_made: int = 0
