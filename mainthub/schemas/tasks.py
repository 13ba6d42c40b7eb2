import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator


T = TypeVar("T")


# Enums
class TaskType(str, Enum):
    electrical = "electrical"
    mechanical = "mechanical"


class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class TaskStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class TaskSortField(str, Enum):
    priority = "priority"
    due_date = "due_date"
    created_at = "created_at"
    title = "title"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


PRIORITY_RANK: Dict[str, int] = {"urgent": 4, "high": 3, "medium": 2, "low": 1}


# Requests
class TaskCreate(BaseModel):
    title: str
    description: str
    type: TaskType
    priority: TaskPriority
    location: str
    estimated_duration: int
    due_date: datetime
    assigned_to: Optional[uuid.UUID] = None
    required_tools: List[str] = []

    @field_validator("required_tools", mode="before")
    @classmethod
    def _tools_none_as_empty(cls, v):
        return [] if v is None else v


class TaskUpdate(BaseModel):
    """Partial update; only fields explicitly sent are applied (see model_fields_set)."""

    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[TaskType] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    location: Optional[str] = None
    estimated_duration: Optional[int] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[uuid.UUID] = None
    required_tools: Optional[List[str]] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskAssign(BaseModel):
    assigned_to: Optional[uuid.UUID]


class TaskNoteCreate(BaseModel):
    content: str


class TaskAttachmentCreate(BaseModel):
    file_name: str
    file_url: str
    file_type: str
    file_size: Optional[int] = Field(default=None, gt=0)

    @field_validator("file_name", "file_url", "file_type", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class TaskFilters(BaseModel):
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    due_before: Optional[datetime] = None
    due_after: Optional[datetime] = None


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    sort_by: TaskSortField = TaskSortField.created_at
    sort_order: SortOrder = SortOrder.desc


# Responses
class TaskNoteRead(BaseModel):
    id: uuid.UUID
    task_id: uuid.UUID
    user_id: uuid.UUID
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class TaskAttachmentRead(BaseModel):
    id: uuid.UUID
    task_id: uuid.UUID
    file_name: str
    file_url: str
    file_type: str
    file_size: Optional[int] = None
    uploaded_by: uuid.UUID
    uploaded_at: datetime

    class Config:
        from_attributes = True


class TaskRead(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    type: TaskType
    priority: TaskPriority
    status: TaskStatus
    assigned_to: Optional[uuid.UUID] = None
    created_by: uuid.UUID
    location: str
    required_tools: List[str] = []
    estimated_duration: int
    due_date: datetime
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: List[TaskNoteRead] = []
    attachments: List[TaskAttachmentRead] = []

    class Config:
        from_attributes = True


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


class TaskStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_type: Dict[str, int]
    by_priority: Dict[str, int]
    overdue: int
    completed_this_week: int
    average_completion_hours: float
