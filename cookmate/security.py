import jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthenticationError
from .settings import settings

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def _create_token(user_id: str, token_type: str, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    payload = {"sub": user_id, "type": token_type, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        user_id, ACCESS, expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )


def create_refresh_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        user_id, REFRESH, expires_delta or timedelta(days=settings.refresh_token_expire_days)
    )


def decode_token(token: str, expected_type: str = ACCESS) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Your token has expired! Please log in again.")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token. Please log in again.")

    if payload.get("type") != expected_type or not payload.get("sub"):
        raise AuthenticationError("Invalid token. Please log in again.")
    return payload
