"""Account endpoints: signup, login, logout, token refresh, current user."""

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core import clock
from ..db import get_db
from ..deps import get_current_user
from ..errors import AuthenticationError, ValidationError
from ..infra.rate_limit import limiter
from ..infra.session_cache import session_cache
from ..models import User, default_preferences
from ..schemas import LoginRequest, RefreshRequest, SignupRequest, UserOut, ok
from ..security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from ..settings import settings

logger = logging.getLogger("cookmate.auth")

router = APIRouter(prefix="/auth")


def _set_auth_cookies(response: Response, access: str, refresh: str) -> None:
    response.set_cookie(
        "jwt", access,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True, secure=settings.cookie_secure, samesite="lax",
    )
    response.set_cookie(
        "refresh_token", refresh,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        httponly=True, secure=settings.cookie_secure, samesite="lax",
    )


async def cache_user_context(user: User) -> None:
    await session_cache.set_user_context(user.id, {
        "skill_level": user.skill_level,
        "preferences": user.preferences,
    })


async def _issue_tokens(user: User, response: Response) -> dict:
    access = create_access_token(user.id)
    refresh = create_refresh_token(user.id)
    _set_auth_cookies(response, access, refresh)
    await cache_user_context(user)
    return ok(
        {"user": UserOut.model_validate(user).model_dump(mode="json")},
        token=access,
        refresh_token=refresh,
    )


@router.post("/signup", status_code=201)
@limiter.limit("10/minute")
async def signup(request: Request, body: SignupRequest, response: Response, db: Session = Depends(get_db)):
    if db.scalar(select(User.id).where(User.email == body.email)):
        raise ValidationError.for_field("email", "Email already in use")

    user = User(
        name=body.name.strip(),
        email=body.email,
        password_hash=hash_password(body.password),
        skill_level=body.skill_level or "beginner",
        preferences={**default_preferences(), **(body.preferences or {})},
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"New user signed up: {user.id}")
    return await _issue_tokens(user, response)


@router.post("/login")
@limiter.limit("10/minute")
async def login(request: Request, body: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.email == body.email))
    if not user or not verify_password(user.password_hash, body.password):
        raise AuthenticationError("Incorrect email or password")
    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated.")

    user.last_login_at = clock.utcnow()
    db.commit()
    db.refresh(user)

    logger.info(f"User logged in: {user.id}")
    return await _issue_tokens(user, response)


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("jwt")
    response.delete_cookie("refresh_token")
    return ok()


@router.post("/refresh")
def refresh(
    response: Response,
    body: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: Session = Depends(get_db),
):
    token = (body.refresh_token if body else None) or refresh_cookie
    if not token:
        raise AuthenticationError("Refresh token is required")

    payload = decode_token(token, expected_type=REFRESH)
    user = db.get(User, payload["sub"])
    if not user or not user.is_active:
        raise AuthenticationError("The user belonging to this token does no longer exist.")

    access = create_access_token(user.id)
    response.set_cookie(
        "jwt", access,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True, secure=settings.cookie_secure, samesite="lax",
    )
    return ok(token=access)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return ok({"user": UserOut.model_validate(user).model_dump(mode="json")})
