import uuid
from typing import Any, Dict, Optional

import structlog
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, or_, select

from ..auth.security import get_password_hash, validate_password
from ..db import Database
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import ROLES, Task, TaskAttachment, TaskNote, User, utcnow
from ..schemas.tasks import Page
from ..schemas.users import (
    TaskReferences,
    UserCreate,
    UserFilters,
    UserPagination,
    UserRead,
    UserStats,
    UserUpdate,
)
from .aggregates import OPEN_STATUSES, where_all
from .audit import AuditTrail, compute_diff
from .task_service import as_uuid


log = structlog.get_logger(__name__)

USER_COLUMNS = ("email", "name", "role", "is_active", "profile_image")


def normalize_email(email: Optional[str]) -> str:
    try:
        valid = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"invalid email format: {exc}")
    return valid.normalized.lower()


def _required_name(name: Optional[str]) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationError("name is required")
    return value


def _valid_role(role) -> str:
    value = getattr(role, "value", role)
    if value not in ROLES:
        raise ValidationError("invalid role")
    return value


class UserService:
    """Sole writer of user rows, apart from last_login which the login flow stamps."""

    def __init__(self, db: Database, *, audit: Optional[AuditTrail] = None):
        self.db = db
        self.audit = audit or AuditTrail()

    def _get_user_or_404(self, session, user_id: Any) -> User:
        uid = as_uuid(user_id)
        user = session.get(User, uid) if uid is not None else None
        if user is None:
            raise NotFoundError("user not found")
        return user

    @staticmethod
    def _email_taken(session, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return session.scalar(stmt) is not None

    # -- writes --------------------------------------------------------

    def create_user(self, data: UserCreate, created_by: Optional[uuid.UUID] = None) -> UserRead:
        email = normalize_email(data.email)
        name = _required_name(data.name)
        password = validate_password(data.password)
        role = _valid_role(data.role)

        with self.db.transaction() as session:
            if self._email_taken(session, email):
                raise ConflictError("a user with this email already exists")
            user = User(
                id=uuid.uuid4(),
                email=email,
                name=name,
                password_hash=get_password_hash(password),
                role=role,
                is_active=True,
                created_at=utcnow(),
            )
            session.add(user)
            session.flush()
            result = UserRead.model_validate(user)

        log.info("user_created", user_id=str(result.id), role=role, created_by=str(created_by))
        self.audit.record("user", result.id, "CREATE", actor_id=created_by, context={"role": role})
        return result

    def update_user(self, user_id: Any, patch: UserUpdate, updated_by: Optional[uuid.UUID] = None) -> UserRead:
        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("no fields to update")

        values: Dict[str, Any] = {}
        for field, value in changes.items():
            if field == "email":
                values["email"] = normalize_email(value)
            elif field == "name":
                values["name"] = _required_name(value)
            elif field == "password":
                values["password_hash"] = get_password_hash(validate_password(value))
            elif field == "role":
                values["role"] = _valid_role(value)
            elif field == "is_active":
                if value is None:
                    raise ValidationError("is_active cannot be empty")
                values["is_active"] = bool(value)
            elif field == "profile_image":
                values["profile_image"] = value

        with self.db.transaction() as session:
            user = self._get_user_or_404(session, user_id)
            if "email" in values and self._email_taken(session, values["email"], exclude_id=user.id):
                raise ConflictError("a user with this email already exists")
            before = {c: getattr(user, c) for c in USER_COLUMNS}
            for field, value in values.items():
                setattr(user, field, value)
            session.flush()
            diff = compute_diff(before, {c: getattr(user, c) for c in USER_COLUMNS})
            result = UserRead.model_validate(user)

        if "password_hash" in values:
            diff["password"] = "changed"
        log.info("user_updated", user_id=str(result.id), updated_by=str(updated_by), fields=sorted(changes))
        self.audit.record("user", result.id, "UPDATE", actor_id=updated_by, changes=diff)
        return result

    def deactivate_user(self, user_id: Any, deactivated_by: Optional[uuid.UUID] = None) -> UserRead:
        with self.db.transaction() as session:
            user = self._get_user_or_404(session, user_id)
            if not user.is_active:
                raise ValidationError("user is already inactive")
            open_assignments = session.scalar(
                select(func.count(Task.id)).where(Task.assigned_to == user.id, Task.status.in_(OPEN_STATUSES))
            )
            user.is_active = False
            session.flush()
            result = UserRead.model_validate(user)

        if open_assignments:
            # assignments are kept; the assignee check only runs at assignment time
            log.warning("deactivated_user_has_open_tasks", user_id=str(result.id), open_tasks=open_assignments)
        log.info("user_deactivated", user_id=str(result.id), deactivated_by=str(deactivated_by))
        self.audit.record("user", result.id, "DEACTIVATE", actor_id=deactivated_by)
        return result

    def reactivate_user(self, user_id: Any, reactivated_by: Optional[uuid.UUID] = None) -> UserRead:
        with self.db.transaction() as session:
            user = self._get_user_or_404(session, user_id)
            if user.is_active:
                raise ValidationError("user is already active")
            user.is_active = True
            session.flush()
            result = UserRead.model_validate(user)

        log.info("user_reactivated", user_id=str(result.id), reactivated_by=str(reactivated_by))
        self.audit.record("user", result.id, "REACTIVATE", actor_id=reactivated_by)
        return result

    def delete_user(self, user_id: Any, deleted_by: Optional[uuid.UUID] = None) -> None:
        with self.db.transaction() as session:
            user = self._get_user_or_404(session, user_id)
            references = self._task_references(session, user.id)
            if references.total:
                raise ConflictError("user is referenced by tasks; deactivate the account instead")
            uid = user.id
            session.delete(user)

        log.info("user_deleted", user_id=str(uid), deleted_by=str(deleted_by))
        self.audit.record("user", uid, "DELETE", actor_id=deleted_by)

    # -- reads ---------------------------------------------------------

    def get_user_by_id(self, user_id: Any) -> Optional[UserRead]:
        uid = as_uuid(user_id)
        if uid is None:
            return None
        with self.db.session() as session:
            user = session.get(User, uid)
            return UserRead.model_validate(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRead]:
        with self.db.session() as session:
            user = session.scalar(select(User).where(User.email == (email or "").strip().lower()))
            return UserRead.model_validate(user) if user else None

    def list_users(self, filters: Optional[UserFilters] = None, pagination: Optional[UserPagination] = None) -> Page[UserRead]:
        filters = filters or UserFilters()
        pagination = pagination or UserPagination()
        conditions = []
        if filters.role is not None:
            conditions.append(User.role == filters.role.value)
        if filters.is_active is not None:
            conditions.append(User.is_active == filters.is_active)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            conditions.append(or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))

        column = getattr(User, pagination.sort_by.value)
        order = column.asc() if pagination.sort_order.value == "asc" else column.desc()

        with self.db.session() as session:
            total = session.scalar(where_all(select(func.count(User.id)), conditions)) or 0
            stmt = (
                where_all(select(User), conditions)
                .order_by(order, User.id.asc())
                .offset((pagination.page - 1) * pagination.limit)
                .limit(pagination.limit)
            )
            items = [UserRead.model_validate(u) for u in session.scalars(stmt)]

        return Page[UserRead](
            items=items,
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=-(-total // pagination.limit),
        )

    def get_user_stats(self) -> UserStats:
        with self.db.session() as session:
            total = session.scalar(select(func.count(User.id))) or 0
            active = session.scalar(select(func.count(User.id)).where(User.is_active.is_(True))) or 0
            by_role = dict.fromkeys(ROLES, 0)
            for role, count in session.execute(select(User.role, func.count(User.id)).group_by(User.role)):
                by_role[role] = count
        return UserStats(total=total, active=active, inactive=total - active, by_role=by_role)

    @staticmethod
    def _task_references(session, user_id: uuid.UUID) -> TaskReferences:
        def _count(stmt):
            return session.scalar(stmt) or 0

        return TaskReferences(
            created=_count(select(func.count(Task.id)).where(Task.created_by == user_id)),
            assigned=_count(select(func.count(Task.id)).where(Task.assigned_to == user_id)),
            notes=_count(select(func.count(TaskNote.id)).where(TaskNote.user_id == user_id)),
            attachments=_count(select(func.count(TaskAttachment.id)).where(TaskAttachment.uploaded_by == user_id)),
        )

    def count_task_references(self, user_id: Any) -> TaskReferences:
        with self.db.session() as session:
            user = self._get_user_or_404(session, user_id)
            return self._task_references(session, user.id)

    def can_delete_user(self, user_id: Any) -> bool:
        return self.count_task_references(user_id).total == 0
