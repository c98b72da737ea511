"""FastAPI dependencies for the CookMate API.

Provides:
- Current user resolution (Bearer header → ``jwt`` cookie)
- AI gateway access (overridable in tests)
"""

from typing import Optional

from fastapi import Cookie, Depends, Header
from sqlalchemy.orm import Session

from .ai.providers import AIGateway, get_ai_gateway
from .db import get_db
from .errors import AuthenticationError
from .models import User
from .security import decode_token


def _extract_token(authorization: Optional[str], jwt_cookie: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return jwt_cookie


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(None),
    jwt_cookie: Optional[str] = Cookie(None, alias="jwt"),
) -> User:
    """Resolve the authenticated user.

    Raises:
        AuthenticationError (401) when the token is missing, invalid or
        expired, or the user no longer exists / was deactivated.
    """
    token = _extract_token(authorization, jwt_cookie)
    if not token:
        raise AuthenticationError("You are not logged in! Please log in to get access.")

    payload = decode_token(token)
    user = db.get(User, payload["sub"])
    if not user:
        raise AuthenticationError("The user belonging to this token does no longer exist.")
    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated.")
    return user


def get_gateway() -> AIGateway:
    return get_ai_gateway()
