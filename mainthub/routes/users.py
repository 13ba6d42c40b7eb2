import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth.security import get_current_user, require_role
from ..config import Settings
from ..deps import get_settings, get_user_service, ok
from ..errors import NotFoundError
from ..schemas.tasks import SortOrder
from ..schemas.users import (
    UserCreate,
    UserFilters,
    UserPagination,
    UserRead,
    UserRole,
    UserSortField,
    UserUpdate,
)
from ..services import policy
from ..services.user_service import UserService


router = APIRouter(prefix="/users", tags=["users"])


def _existing_user(users: UserService, user_id: uuid.UUID) -> UserRead:
    user = users.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError("user not found")
    return user


@router.get("")
def list_users(
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: UserSortField = UserSortField.created_at,
    sort_order: SortOrder = SortOrder.desc,
    settings: Settings = Depends(get_settings),
    _: UserRead = Depends(require_role("supervisor")),
    users: UserService = Depends(get_user_service),
):
    """
    List users with pagination

    Args:
        search: matches name or email, case-insensitive
        limit: items per page, capped at MAX_PAGE_SIZE
    """
    filters = UserFilters(role=role, is_active=is_active, search=search)
    pagination = UserPagination(
        page=page, limit=min(limit, settings.max_page_size), sort_by=sort_by, sort_order=sort_order
    )
    return ok(users.list_users(filters, pagination))


@router.get("/stats")
def user_stats(
    _: UserRead = Depends(require_role("supervisor")),
    users: UserService = Depends(get_user_service),
):
    return ok(users.get_user_stats())


@router.get("/me")
def get_me(user: UserRead = Depends(get_current_user)):
    return ok(user)


@router.put("/me")
def update_me(
    body: UserUpdate,
    user: UserRead = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    policy.ensure_self_update_allowed(body.model_fields_set)
    return ok(users.update_user(user.id, body, user.id), "Profile updated")


@router.get("/{user_id}")
def get_user(
    user_id: uuid.UUID,
    actor: UserRead = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    policy.ensure_can_view_user(actor, user_id)
    return ok(_existing_user(users, user_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreate,
    actor: UserRead = Depends(require_role("admin")),
    users: UserService = Depends(get_user_service),
):
    return ok(users.create_user(body, actor.id), "User created")


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    actor: UserRead = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    policy.ensure_can_view_user(actor, user_id)
    target = _existing_user(users, user_id)
    policy.ensure_can_update_user(actor, target, body.model_fields_set, new_role=body.role)
    return ok(users.update_user(user_id, body, actor.id), "User updated")


@router.post("/{user_id}/deactivate")
def deactivate_user(
    user_id: uuid.UUID,
    actor: UserRead = Depends(require_role("supervisor")),
    users: UserService = Depends(get_user_service),
):
    target = _existing_user(users, user_id)
    policy.ensure_can_toggle_activation(actor, target)
    return ok(users.deactivate_user(user_id, actor.id), "User deactivated")


@router.post("/{user_id}/reactivate")
def reactivate_user(
    user_id: uuid.UUID,
    actor: UserRead = Depends(require_role("supervisor")),
    users: UserService = Depends(get_user_service),
):
    target = _existing_user(users, user_id)
    policy.ensure_can_toggle_activation(actor, target)
    return ok(users.reactivate_user(user_id, actor.id), "User reactivated")


@router.get("/{user_id}/can-delete")
def can_delete_user(
    user_id: uuid.UUID,
    _: UserRead = Depends(require_role("admin")),
    users: UserService = Depends(get_user_service),
):
    references = users.count_task_references(user_id)
    return ok({"can_delete": references.total == 0, "references": references})


@router.delete("/{user_id}")
def delete_user(
    user_id: uuid.UUID,
    actor: UserRead = Depends(require_role("admin")),
    users: UserService = Depends(get_user_service),
):
    policy.ensure_can_delete_user(actor, user_id)
    users.delete_user(user_id, actor.id)
    return ok(message="User deleted")
