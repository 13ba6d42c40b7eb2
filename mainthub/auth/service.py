from typing import Optional

import structlog

from ..config import Settings
from ..db import Database
from ..errors import AuthenticationError
from ..models.models import User, utcnow
from ..schemas.auth import TokenResponse
from ..schemas.users import UserCreate, UserRead, UserRole
from ..services.audit import AuditTrail
from ..services.user_service import UserService
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    subject_of,
    verify_password,
)


log = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


class AuthService:
    def __init__(self, db: Database, users: UserService, settings: Settings, *, audit: Optional[AuditTrail] = None):
        self.db = db
        self.users = users
        self.settings = settings
        self.audit = audit or AuditTrail()

    def _issue(self, user: UserRead) -> TokenResponse:
        return TokenResponse(
            access_token=create_access_token(self.settings, user),
            refresh_token=create_refresh_token(self.settings, user.id),
            expires_in=self.settings.jwt_ttl_seconds,
            user=user,
        )

    def login(self, email: str, password: str) -> TokenResponse:
        normalized = (email or "").strip().lower()
        with self.db.transaction() as session:
            user = session.query(User).filter(User.email == normalized).first()
            if user is None or not verify_password(password or "", user.password_hash):
                log.info("login_failed", email=normalized)
                raise AuthenticationError(INVALID_CREDENTIALS)
            if not user.is_active:
                log.info("login_inactive", user_id=str(user.id))
                raise AuthenticationError("Account is deactivated")
            user.last_login = utcnow()
            session.flush()
            current = UserRead.model_validate(user)

        log.info("login_succeeded", user_id=str(current.id), role=current.role.value)
        self.audit.record("user", current.id, "LOGIN", actor_id=current.id)
        return self._issue(current)

    def register(self, email: str, name: str, password: str) -> TokenResponse:
        # self-registration never grants more than operator
        user = self.users.create_user(UserCreate(email=email, name=name, password=password, role=UserRole.operator))
        return self._issue(user)

    def refresh(self, refresh_token: str) -> TokenResponse:
        payload = decode_token(self.settings, refresh_token)
        if payload.get("type") != "refresh":
            raise AuthenticationError("Invalid refresh token")
        user = self.users.get_user_by_id(subject_of(payload))
        if user is None or not user.is_active:
            raise AuthenticationError("User not active")
        return self._issue(user)
