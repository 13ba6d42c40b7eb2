import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext

from ..config import Settings
from ..errors import AccessDeniedError, AuthenticationError, ValidationError
from ..schemas.users import UserRead
from ..services.policy import has_role_at_least


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

MIN_PASSWORD_LENGTH = 6


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # unknown or malformed hash
        return False


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def _create_token(settings: Settings, sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(settings: Settings, user: UserRead) -> str:
    return _create_token(
        settings,
        str(user.id),
        settings.jwt_ttl_seconds,
        extra={"type": "access", "email": user.email, "role": user.role.value},
    )


def create_refresh_token(settings: Settings, user_id: uuid.UUID) -> str:
    return _create_token(settings, str(user_id), settings.refresh_ttl_seconds, extra={"type": "refresh"})


def decode_token(settings: Settings, token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def subject_of(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Invalid subject")


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> UserRead:
    if creds is None:
        raise AuthenticationError("Not authenticated")
    payload = decode_token(request.app.state.settings, creds.credentials)
    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token")
    user = request.app.state.users.get_user_by_id(subject_of(payload))
    if user is None or not user.is_active:
        raise AuthenticationError("User not active")
    return user


def require_role(min_role: str):
    def _dep(user: UserRead = Depends(get_current_user)) -> UserRead:
        if not has_role_at_least(user.role, min_role):
            raise AccessDeniedError("Forbidden")
        return user

    return _dep
