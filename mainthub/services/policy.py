"""
Role policy for task and user operations.

Entity services are role-agnostic; this module turns the caller's identity
into narrowed filters or an AccessDeniedError before a service is called.
"""
from typing import Iterable, Optional

from ..errors import AccessDeniedError


ROLE_RANK = {"admin": 3, "supervisor": 2, "operator": 1}

# fields an operator may touch on a task assigned to them
OPERATOR_TASK_FIELDS = frozenset({"status", "description"})


def _role_name(role) -> str:
    return getattr(role, "value", role)


def has_role_at_least(role, min_role) -> bool:
    return ROLE_RANK.get(_role_name(role), 0) >= ROLE_RANK[_role_name(min_role)]


def is_admin(user) -> bool:
    return _role_name(user.role) == "admin"


def is_operator(user) -> bool:
    return _role_name(user.role) == "operator"


# Tasks

def effective_task_filters(user, filters):
    """Operators only ever list their own assignments, whatever they asked for."""
    if is_operator(user):
        return filters.model_copy(update={"assigned_to": user.id})
    return filters


def can_view_task(user, task) -> bool:
    if not is_operator(user):
        return True
    return task.assigned_to == user.id or task.created_by == user.id


def ensure_can_view_task(user, task) -> None:
    if not can_view_task(user, task):
        raise AccessDeniedError("You do not have access to this task")


def ensure_can_update_task(user, task, fields: Iterable[str]) -> None:
    if not is_operator(user):
        return
    if task.assigned_to != user.id:
        raise AccessDeniedError("You can only update tasks assigned to you")
    fields = set(fields)
    if "assigned_to" in fields:
        raise AccessDeniedError("Operators cannot change task assignment")
    extra = fields - OPERATOR_TASK_FIELDS
    if extra:
        raise AccessDeniedError(f"Operators can only update: {', '.join(sorted(OPERATOR_TASK_FIELDS))}")


def ensure_can_change_status(user, task) -> None:
    if is_operator(user) and task.assigned_to != user.id:
        raise AccessDeniedError("You can only update tasks assigned to you")


# Users

def ensure_can_view_user(actor, target_id) -> None:
    if is_operator(actor) and actor.id != target_id:
        raise AccessDeniedError("You can only view your own profile")


def ensure_can_update_user(actor, target, fields: Iterable[str], new_role: Optional[str] = None) -> None:
    fields = set(fields)
    if is_operator(actor):
        if actor.id != target.id:
            raise AccessDeniedError("You can only update your own profile")
        if fields & {"role", "is_active"}:
            raise AccessDeniedError("You cannot change your own role or active status")
        return
    if is_admin(actor):
        if actor.id == target.id and fields & {"role", "is_active"}:
            raise AccessDeniedError("You cannot change your own role or active status")
        return
    # supervisor
    if is_admin(target):
        raise AccessDeniedError("Supervisors cannot modify administrators")
    if new_role is not None and _role_name(new_role) == "admin":
        raise AccessDeniedError("Supervisors cannot grant the admin role")
    if actor.id == target.id and fields & {"role", "is_active"}:
        raise AccessDeniedError("You cannot change your own role or active status")


def ensure_self_update_allowed(fields: Iterable[str]) -> None:
    if set(fields) & {"role", "is_active"}:
        raise AccessDeniedError("You cannot change your own role or active status")


def ensure_can_toggle_activation(actor, target) -> None:
    if actor.id == target.id:
        raise AccessDeniedError("You cannot deactivate or reactivate your own account")
    if not is_admin(actor) and is_admin(target):
        raise AccessDeniedError("Supervisors cannot modify administrators")


def ensure_can_delete_user(actor, target_id) -> None:
    if actor.id == target_id:
        raise AccessDeniedError("You cannot delete your own account")
