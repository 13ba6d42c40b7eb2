import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth.security import get_current_user, require_role
from ..config import Settings
from ..deps import get_settings, get_task_service, ok
from ..errors import NotFoundError
from ..schemas.tasks import (
    Pagination,
    SortOrder,
    TaskAssign,
    TaskAttachmentCreate,
    TaskCreate,
    TaskFilters,
    TaskNoteCreate,
    TaskPriority,
    TaskRead,
    TaskSortField,
    TaskStatus,
    TaskStatusUpdate,
    TaskType,
    TaskUpdate,
)
from ..schemas.users import UserRead
from ..services import policy
from ..services.task_service import TaskService


router = APIRouter(prefix="/tasks", tags=["tasks"])


def task_filters(
    type: Optional[TaskType] = None,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    assigned_to: Optional[uuid.UUID] = None,
    created_by: Optional[uuid.UUID] = None,
    due_before: Optional[datetime] = None,
    due_after: Optional[datetime] = None,
) -> TaskFilters:
    return TaskFilters(
        type=type,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        created_by=created_by,
        due_before=due_before,
        due_after=due_after,
    )


def task_pagination(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: TaskSortField = TaskSortField.created_at,
    sort_order: SortOrder = SortOrder.desc,
    settings: Settings = Depends(get_settings),
) -> Pagination:
    return Pagination(page=page, limit=min(limit, settings.max_page_size), sort_by=sort_by, sort_order=sort_order)


def _visible_task(tasks: TaskService, task_id: uuid.UUID, user: UserRead) -> TaskRead:
    task = tasks.get_task_by_id(task_id)
    if task is None:
        raise NotFoundError("task not found")
    policy.ensure_can_view_task(user, task)
    return task


@router.get("")
def list_tasks(
    filters: TaskFilters = Depends(task_filters),
    pagination: Pagination = Depends(task_pagination),
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(tasks.list_tasks(policy.effective_task_filters(user, filters), pagination))


@router.get("/stats")
def task_stats(
    user: UserRead = Depends(require_role("supervisor")),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(tasks.get_task_stats())


@router.get("/overdue")
def overdue_tasks(
    user: UserRead = Depends(require_role("supervisor")),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(tasks.get_overdue_tasks())


@router.get("/my")
def my_tasks(
    filters: TaskFilters = Depends(task_filters),
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(tasks.get_tasks_by_user(user.id, filters))


@router.get("/{task_id}")
def get_task(
    task_id: uuid.UUID,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(_visible_task(tasks, task_id, user))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_task(
    body: TaskCreate,
    user: UserRead = Depends(require_role("supervisor")),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(tasks.create_task(body, user.id), "Task created")


@router.put("/{task_id}")
def update_task(
    task_id: uuid.UUID,
    body: TaskUpdate,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    current = _visible_task(tasks, task_id, user)
    policy.ensure_can_update_task(user, current, body.model_fields_set)
    return ok(tasks.update_task(task_id, body, user.id), "Task updated")


@router.patch("/{task_id}/status")
def update_task_status(
    task_id: uuid.UUID,
    body: TaskStatusUpdate,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    current = _visible_task(tasks, task_id, user)
    policy.ensure_can_change_status(user, current)
    return ok(tasks.update_task_status(task_id, body.status, user.id), "Task status updated")


@router.patch("/{task_id}/assign")
def assign_task(
    task_id: uuid.UUID,
    body: TaskAssign,
    user: UserRead = Depends(require_role("supervisor")),
    tasks: TaskService = Depends(get_task_service),
):
    return ok(tasks.assign_task(task_id, body.assigned_to, user.id), "Task assigned")


@router.delete("/{task_id}")
def delete_task(
    task_id: uuid.UUID,
    user: UserRead = Depends(require_role("admin")),
    tasks: TaskService = Depends(get_task_service),
):
    tasks.delete_task(task_id, user.id)
    return ok(message="Task deleted")


@router.get("/{task_id}/notes")
def list_notes(
    task_id: uuid.UUID,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    _visible_task(tasks, task_id, user)
    return ok(tasks.list_task_notes(task_id))


@router.post("/{task_id}/notes", status_code=status.HTTP_201_CREATED)
def add_note(
    task_id: uuid.UUID,
    body: TaskNoteCreate,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    _visible_task(tasks, task_id, user)
    return ok(tasks.add_task_note(task_id, body.content, user.id), "Note added")


@router.get("/{task_id}/attachments")
def list_attachments(
    task_id: uuid.UUID,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    _visible_task(tasks, task_id, user)
    return ok(tasks.list_task_attachments(task_id))


@router.post("/{task_id}/attachments", status_code=status.HTTP_201_CREATED)
def add_attachment(
    task_id: uuid.UUID,
    body: TaskAttachmentCreate,
    user: UserRead = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    _visible_task(tasks, task_id, user)
    attachment = tasks.add_task_attachment(
        task_id, body.file_name, body.file_url, body.file_type, user.id, file_size=body.file_size
    )
    return ok(attachment, "Attachment added")
