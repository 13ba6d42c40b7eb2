import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from .tasks import TaskPriority, TaskStatus, TaskType


class ExportFormat(str, Enum):
    json = "json"
    csv = "csv"
    pdf = "pdf"


class ReportKind(str, Enum):
    productivity = "productivity"
    performance = "performance"


class ReportFilters(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    user_id: Optional[uuid.UUID] = None
    task_type: Optional[TaskType] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _naive_utc(cls, v):
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class ExportRequest(BaseModel):
    report: ReportKind
    format: ExportFormat = ExportFormat.json
    filters: ReportFilters = ReportFilters()
