import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from .tasks import SortOrder


class UserRole(str, Enum):
    admin = "admin"
    supervisor = "supervisor"
    operator = "operator"


class UserSortField(str, Enum):
    name = "name"
    email = "email"
    created_at = "created_at"
    last_login = "last_login"


class UserCreate(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: UserRole = UserRole.operator


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    password: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    profile_image: Optional[str] = None


class UserFilters(BaseModel):
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None


class UserPagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    sort_by: UserSortField = UserSortField.created_at
    sort_order: SortOrder = SortOrder.desc


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: UserRole
    is_active: bool
    created_at: datetime
    last_login: Optional[datetime] = None
    profile_image: Optional[str] = None

    class Config:
        from_attributes = True


class UserStats(BaseModel):
    total: int
    active: int
    inactive: int
    by_role: Dict[str, int]


class TaskReferences(BaseModel):
    created: int
    assigned: int
    notes: int
    attachments: int

    @property
    def total(self) -> int:
        return self.created + self.assigned + self.notes + self.attachments
