"""
Name: Shared test fixtures

Responsibilities:
  - Throwaway SQLite database per test (foreign keys on)
  - Service instances wired to that database
  - Factories for users and tasks, plus bearer headers for API tests
"""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from mainthub.auth.security import create_access_token, get_password_hash
from mainthub.config import Settings
from mainthub.db import Database
from mainthub.main import create_app
from mainthub.models.models import Task, User, utcnow
from mainthub.schemas.tasks import TaskCreate
from mainthub.schemas.users import UserRead
from mainthub.services.dashboard_service import DashboardService
from mainthub.services.report_service import ReportService
from mainthub.services.task_service import TaskService
from mainthub.services.user_service import UserService


PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'mainthub-test.db'}",
        JWT_SECRET="test-secret",
        RATE_LIMIT="10000/minute",
        ENABLE_METRICS=False,
        AUTO_CREATE_DB=True,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def db(settings):
    database = Database.from_settings(settings)
    database.create_all()
    yield database
    database.drop_all()
    database.dispose()


@pytest.fixture
def tasks(db):
    return TaskService(db)


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def dashboards(db):
    return DashboardService(db)


@pytest.fixture
def reports(db):
    return ReportService(db)


@pytest.fixture
def make_user(db):
    def _make(role: str = "operator", *, email: str = None, name: str = None, is_active: bool = True) -> UserRead:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            name=name or role.title(),
            password_hash=PASSWORD_HASH,
            role=role,
            is_active=is_active,
            created_at=utcnow(),
        )
        with db.transaction() as session:
            session.add(user)
        return UserRead.model_validate(user)

    return _make


def task_payload(**overrides) -> TaskCreate:
    data = {
        "title": "Replace breaker panel",
        "description": "Panel B3 trips under load",
        "type": "electrical",
        "priority": "medium",
        "location": "Plant 2, bay 4",
        "estimated_duration": 90,
        "due_date": utcnow() + timedelta(days=7),
        "required_tools": ["multimeter", "insulated gloves"],
    }
    data.update(overrides)
    return TaskCreate(**data)


@pytest.fixture
def make_task(tasks):
    def _make(creator: UserRead, **overrides):
        return tasks.create_task(task_payload(**overrides), creator.id)

    return _make


@pytest.fixture
def set_task_fields(db):
    """Write columns directly, e.g. to move due dates or completion times into the past."""

    def _set(task_id, **fields):
        with db.transaction() as session:
            task = session.get(Task, task_id)
            for key, value in fields.items():
                setattr(task, key, value)

    return _set


@pytest.fixture
def app(settings, db):
    return create_app(settings, db=db)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(settings):
    def _headers(user: UserRead) -> dict:
        return {"Authorization": f"Bearer {create_access_token(settings, user)}"}

    return _headers
