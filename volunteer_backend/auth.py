"""
Password hashing, session tokens and the auth dependencies used by routes.

The session token is a signed JWT carried in the ``auth_token`` cookie; an
``Authorization: Bearer`` header is accepted as well.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel

from volunteer_backend.config import get_settings
from volunteer_backend.errors import AuthenticationError, AuthorizationError
from volunteer_backend.types import Role

AUTH_COOKIE = "auth_token"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    volunteer_id: int
    email: str
    role: str
    iat: int
    exp: int

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(volunteer_id: int, email: str, role: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(volunteer_id),
        "volunteer_id": volunteer_id,
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.jwt_expires_seconds)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> CurrentUser:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
        return CurrentUser(**payload)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except (jwt.InvalidTokenError, ValueError):
        raise AuthenticationError("Invalid token")


def set_auth_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        AUTH_COOKIE,
        token,
        max_age=settings.jwt_expires_seconds,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(AUTH_COOKIE, path="/")


def _token_from_request(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(AUTH_COOKIE) or None


def optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[CurrentUser]:
    """Current user if a valid token is present, otherwise ``None``."""
    token = _token_from_request(request, credentials)
    if not token:
        return None
    try:
        return decode_token(token)
    except AuthenticationError:
        return None


def require_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    token = _token_from_request(request, credentials)
    if not token:
        raise AuthenticationError("Unauthorized")
    return decode_token(token)


def require_admin(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not user.is_admin:
        raise AuthorizationError("Forbidden - Admin access required")
    return user


def require_self_or_admin(user: CurrentUser, volunteer_id: int) -> None:
    if not user.is_admin and user.volunteer_id != volunteer_id:
        raise AuthorizationError("Forbidden - you can only access your own account")
