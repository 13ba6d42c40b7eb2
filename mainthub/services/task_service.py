import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from ..db import Database
from ..errors import NotFoundError, ValidationError
from ..models.models import Task, TaskAttachment, TaskNote, User, TASK_STATUSES, TASK_TYPES, TASK_PRIORITIES, utcnow
from ..schemas.tasks import (
    PRIORITY_RANK,
    Page,
    Pagination,
    TaskAttachmentRead,
    TaskCreate,
    TaskFilters,
    TaskNoteRead,
    TaskRead,
    TaskStats,
    TaskUpdate,
)
from .aggregates import avg_hours, count_where, overdue_condition, round2, week_start, where_all
from .audit import AuditTrail, compute_diff


log = structlog.get_logger(__name__)

ASSIGNEE_ERROR = "assigned user does not exist or is inactive"

ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset({"in_progress"}),
    "cancelled": frozenset({"pending"}),
}

TEXT_FIELDS = ("title", "description", "location")
ENUM_FIELDS = ("type", "priority", "status")
TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "type",
    "priority",
    "status",
    "assigned_to",
    "created_by",
    "location",
    "required_tools",
    "estimated_duration",
    "due_date",
    "created_at",
    "started_at",
    "completed_at",
)

USER_TASK_LIMIT = 1000


def as_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _required_text(value: Optional[str], field: str) -> str:
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{field} is required")
    return text


def _positive_duration(value: Optional[int]) -> int:
    if value is None or value <= 0:
        raise ValidationError("estimated_duration must be a positive number of minutes")
    return value


def _enum_value(value) -> str:
    return getattr(value, "value", value)


def _task_snapshot(task: Task) -> Dict[str, Any]:
    return {c: getattr(task, c) for c in TASK_COLUMNS}


def _task_read(task: Task, notes: Iterable[TaskNote] = (), attachments: Iterable[TaskAttachment] = ()) -> TaskRead:
    return TaskRead(
        **_task_snapshot(task),
        notes=[TaskNoteRead.model_validate(n) for n in notes],
        attachments=[TaskAttachmentRead.model_validate(a) for a in attachments],
    )


def _task_conditions(filters: TaskFilters) -> List:
    conditions = []
    for field in ("type", "status", "priority"):
        value = getattr(filters, field)
        if value is not None:
            conditions.append(getattr(Task, field) == _enum_value(value))
    if filters.assigned_to is not None:
        conditions.append(Task.assigned_to == filters.assigned_to)
    if filters.created_by is not None:
        conditions.append(Task.created_by == filters.created_by)
    if filters.due_before is not None:
        conditions.append(Task.due_date <= to_utc_naive(filters.due_before))
    if filters.due_after is not None:
        conditions.append(Task.due_date >= to_utc_naive(filters.due_after))
    return conditions


def _task_order(pagination: Pagination) -> List:
    sort_by = _enum_value(pagination.sort_by)
    if sort_by == "priority":
        column = case(PRIORITY_RANK, value=Task.priority, else_=1)
    else:
        column = getattr(Task, sort_by)
    primary = column.asc() if _enum_value(pagination.sort_order) == "asc" else column.desc()
    # id as final key keeps page boundaries stable between calls
    return [primary, Task.id.asc()]


class TaskService:
    """Owns task rows and their notes/attachments.

    Role-agnostic: callers narrow filters and check permissions before
    calling in (see services.policy).
    """

    def __init__(self, db: Database, *, enforce_transitions: bool = False, audit: Optional[AuditTrail] = None):
        self.db = db
        self.enforce_transitions = enforce_transitions
        self.audit = audit or AuditTrail()

    # -- helpers -------------------------------------------------------

    @staticmethod
    def _ensure_active_assignee(session: Session, user_id: uuid.UUID) -> None:
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            raise ValidationError(ASSIGNEE_ERROR)

    @staticmethod
    def _get_task_or_404(session: Session, task_id: Any) -> Task:
        tid = as_uuid(task_id)
        task = session.get(Task, tid) if tid is not None else None
        if task is None:
            raise NotFoundError("task not found")
        return task

    @staticmethod
    def _children(session: Session, task_id: uuid.UUID):
        notes = session.scalars(
            select(TaskNote).where(TaskNote.task_id == task_id).order_by(TaskNote.created_at.asc())
        ).all()
        attachments = session.scalars(
            select(TaskAttachment)
            .where(TaskAttachment.task_id == task_id)
            .order_by(TaskAttachment.uploaded_at.asc())
        ).all()
        return notes, attachments

    def _apply_status(self, task: Task, new_status: str, now: datetime) -> None:
        old_status = task.status
        if new_status == old_status:
            return
        if self.enforce_transitions and new_status not in ALLOWED_TRANSITIONS[old_status]:
            raise ValidationError(f"cannot change status from {old_status} to {new_status}")
        if new_status in ("in_progress", "completed") and task.started_at is None:
            task.started_at = now
        if new_status == "completed":
            task.completed_at = now
        elif old_status == "completed":
            task.completed_at = None
        task.status = new_status

    # -- writes --------------------------------------------------------

    def create_task(self, data: TaskCreate, creator_id: uuid.UUID) -> TaskRead:
        title = _required_text(data.title, "title")
        description = _required_text(data.description, "description")
        location = _required_text(data.location, "location")
        estimated_duration = _positive_duration(data.estimated_duration)
        due_date = to_utc_naive(data.due_date)
        now = utcnow()
        if due_date <= now:
            raise ValidationError("due_date must be in the future")

        with self.db.transaction() as session:
            if data.assigned_to is not None:
                self._ensure_active_assignee(session, data.assigned_to)
            task = Task(
                id=uuid.uuid4(),
                title=title,
                description=description,
                type=_enum_value(data.type),
                priority=_enum_value(data.priority),
                status="pending",
                assigned_to=data.assigned_to,
                created_by=creator_id,
                location=location,
                required_tools=list(data.required_tools),
                estimated_duration=estimated_duration,
                due_date=due_date,
                created_at=now,
            )
            session.add(task)
            session.flush()
            result = _task_read(task)

        log.info("task_created", task_id=str(result.id), created_by=str(creator_id), assigned_to=str(result.assigned_to))
        self.audit.record("task", result.id, "CREATE", actor_id=creator_id)
        return result

    def update_task(self, task_id: Any, patch: TaskUpdate, updater_id: uuid.UUID) -> TaskRead:
        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("no fields to update")

        values: Dict[str, Any] = {}
        for field, value in changes.items():
            if field in TEXT_FIELDS:
                values[field] = _required_text(value, field)
            elif field == "estimated_duration":
                values[field] = _positive_duration(value)
            elif field in ENUM_FIELDS:
                if value is None:
                    raise ValidationError(f"{field} cannot be empty")
                values[field] = _enum_value(value)
            elif field == "due_date":
                if value is None:
                    raise ValidationError("due_date cannot be empty")
                values[field] = to_utc_naive(value)
            elif field == "required_tools":
                values[field] = list(value or [])
            elif field == "assigned_to":
                values[field] = value

        now = utcnow()
        with self.db.transaction() as session:
            task = self._get_task_or_404(session, task_id)
            before = _task_snapshot(task)
            if values.get("assigned_to") is not None:
                self._ensure_active_assignee(session, values["assigned_to"])
            if "status" in values:
                self._apply_status(task, values.pop("status"), now)
            for field, value in values.items():
                setattr(task, field, value)
            session.flush()
            diff = compute_diff(before, _task_snapshot(task))
            notes, attachments = self._children(session, task.id)
            result = _task_read(task, notes, attachments)

        log.info("task_updated", task_id=str(result.id), updated_by=str(updater_id), fields=sorted(changes))
        self.audit.record("task", result.id, "UPDATE", actor_id=updater_id, changes=diff)
        return result

    def update_task_status(self, task_id: Any, status, updater_id: uuid.UUID) -> TaskRead:
        return self.update_task(task_id, TaskUpdate(status=status), updater_id)

    def assign_task(self, task_id: Any, user_id: Optional[uuid.UUID], updater_id: uuid.UUID) -> TaskRead:
        return self.update_task(task_id, TaskUpdate(assigned_to=user_id), updater_id)

    def add_task_note(self, task_id: Any, content: str, author_id: uuid.UUID) -> TaskNoteRead:
        content = _required_text(content, "content")
        with self.db.transaction() as session:
            task = self._get_task_or_404(session, task_id)
            note = TaskNote(id=uuid.uuid4(), task_id=task.id, user_id=author_id, content=content, created_at=utcnow())
            session.add(note)
            session.flush()
            result = TaskNoteRead.model_validate(note)
        log.info("task_note_added", task_id=str(result.task_id), note_id=str(result.id), user_id=str(author_id))
        return result

    def add_task_attachment(
        self,
        task_id: Any,
        file_name: str,
        file_url: str,
        file_type: str,
        uploader_id: uuid.UUID,
        file_size: Optional[int] = None,
    ) -> TaskAttachmentRead:
        for field, value in (("file_name", file_name), ("file_url", file_url), ("file_type", file_type)):
            _required_text(value, field)
        with self.db.transaction() as session:
            task = self._get_task_or_404(session, task_id)
            attachment = TaskAttachment(
                id=uuid.uuid4(),
                task_id=task.id,
                file_name=file_name,
                file_url=file_url,
                file_type=file_type,
                file_size=file_size,
                uploaded_by=uploader_id,
                uploaded_at=utcnow(),
            )
            session.add(attachment)
            session.flush()
            result = TaskAttachmentRead.model_validate(attachment)
        log.info("task_attachment_added", task_id=str(result.task_id), attachment_id=str(result.id))
        return result

    def delete_task(self, task_id: Any, deleted_by: Optional[uuid.UUID] = None) -> None:
        with self.db.transaction() as session:
            task = self._get_task_or_404(session, task_id)
            tid = task.id
            session.delete(task)
        log.info("task_deleted", task_id=str(tid), deleted_by=str(deleted_by))
        self.audit.record("task", tid, "DELETE", actor_id=deleted_by)

    # -- reads ---------------------------------------------------------

    def get_task_by_id(self, task_id: Any) -> Optional[TaskRead]:
        tid = as_uuid(task_id)
        if tid is None:
            return None
        with self.db.session() as session:
            task = session.get(Task, tid)
            if task is None:
                return None
            notes, attachments = self._children(session, tid)
            return _task_read(task, notes, attachments)

    def list_task_notes(self, task_id: Any) -> List[TaskNoteRead]:
        with self.db.session() as session:
            task = self._get_task_or_404(session, task_id)
            notes, _ = self._children(session, task.id)
            return [TaskNoteRead.model_validate(n) for n in notes]

    def list_task_attachments(self, task_id: Any) -> List[TaskAttachmentRead]:
        with self.db.session() as session:
            task = self._get_task_or_404(session, task_id)
            _, attachments = self._children(session, task.id)
            return [TaskAttachmentRead.model_validate(a) for a in attachments]

    def list_tasks(self, filters: Optional[TaskFilters] = None, pagination: Optional[Pagination] = None) -> Page[TaskRead]:
        filters = filters or TaskFilters()
        pagination = pagination or Pagination()
        conditions = _task_conditions(filters)

        with self.db.session() as session:
            total = session.scalar(where_all(select(func.count(Task.id)), conditions)) or 0
            stmt = (
                where_all(select(Task), conditions)
                .order_by(*_task_order(pagination))
                .offset((pagination.page - 1) * pagination.limit)
                .limit(pagination.limit)
            )
            items = [_task_read(t) for t in session.scalars(stmt)]

        total_pages = -(-total // pagination.limit)
        return Page[TaskRead](
            items=items, total=total, page=pagination.page, limit=pagination.limit, total_pages=total_pages
        )

    def get_tasks_by_user(self, user_id: uuid.UUID, filters: Optional[TaskFilters] = None) -> Page[TaskRead]:
        filters = (filters or TaskFilters()).model_copy(update={"assigned_to": user_id})
        return self.list_tasks(filters, Pagination(page=1, limit=USER_TASK_LIMIT))

    def get_overdue_tasks(self) -> List[TaskRead]:
        now = utcnow()
        with self.db.session() as session:
            stmt = select(Task).where(overdue_condition(now)).order_by(Task.due_date.asc(), Task.id.asc())
            return [_task_read(t) for t in session.scalars(stmt)]

    def get_task_stats(self) -> TaskStats:
        now = utcnow()
        completed = Task.status == "completed"
        with self.db.session() as session:
            row = session.execute(
                select(
                    func.count(Task.id),
                    count_where(overdue_condition(now)),
                    count_where(and_(completed, Task.completed_at >= week_start(now))),
                    avg_hours(self.db.dialect, Task.created_at, Task.completed_at, completed),
                )
            ).one()
            breakdown = {}
            for field, values in (("status", TASK_STATUSES), ("type", TASK_TYPES), ("priority", TASK_PRIORITIES)):
                column = getattr(Task, field)
                counts = dict.fromkeys(values, 0)
                for key, count in session.execute(select(column, func.count(Task.id)).group_by(column)):
                    counts[key] = count
                breakdown[field] = counts

        total, overdue, completed_this_week, avg_completion = row
        return TaskStats(
            total=total,
            by_status=breakdown["status"],
            by_type=breakdown["type"],
            by_priority=breakdown["priority"],
            overdue=overdue,
            completed_this_week=completed_this_week,
            average_completion_hours=round2(avg_completion),
        )
