"""User profile, preferences, progress and achievements."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..errors import AuthenticationError, ValidationError
from ..models import User
from ..schemas import (
    AccountDeleteRequest,
    PreferencesUpdateRequest,
    ProfileUpdateRequest,
    UserOut,
    ok,
)
from ..security import verify_password
from ..services.progress import ProgressAggregator
from .auth import cache_user_context

logger = logging.getLogger("cookmate.users")

router = APIRouter(prefix="/users")


def _user_body(user: User) -> dict:
    return {"user": UserOut.model_validate(user).model_dump(mode="json")}


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return ok(_user_body(user))


@router.put("/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in updates:
        user.name = updates["name"].strip()
    if "skill_level" in updates:
        user.skill_level = updates["skill_level"]
    if "preferences" in updates:
        user.preferences = {**(user.preferences or {}), **updates["preferences"]}
    db.commit()
    db.refresh(user)

    await cache_user_context(user)
    return ok(_user_body(user))


@router.put("/preferences")
async def update_preferences(
    body: PreferencesUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError.for_field("preferences", "No preferences provided")

    user.preferences = {**(user.preferences or {}), **changes}
    db.commit()
    db.refresh(user)

    await cache_user_context(user)
    return ok({"preferences": user.preferences})


@router.get("/progress")
def progress_overview(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(ProgressAggregator(db).get_overview(user.id))


@router.get("/progress/{recipe_id}")
def recipe_progress(recipe_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(ProgressAggregator(db).get_recipe_progress(user.id, recipe_id))


@router.get("/stats")
def stats(
    period: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return ok(ProgressAggregator(db).get_stats(user.id, period_days=period))


@router.get("/achievements")
def achievements(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(ProgressAggregator(db).get_achievements(user))


@router.delete("/account")
def delete_account(
    body: AccountDeleteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not body.confirm_password:
        raise ValidationError.for_field("confirm_password", "Password confirmation is required")
    if not verify_password(user.password_hash, body.confirm_password):
        raise AuthenticationError("Incorrect password")

    user.is_active = False
    db.commit()
    logger.info(f"User {user.id} deactivated their account")
    return ok(message="Account deactivated")
