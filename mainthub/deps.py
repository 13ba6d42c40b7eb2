from typing import Any, Optional

from fastapi import Request

from .auth.service import AuthService
from .config import Settings
from .services.dashboard_service import DashboardService
from .services.report_service import ReportService
from .services.task_service import TaskService
from .services.user_service import UserService


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    return {"success": True, "data": data, "message": message}


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_task_service(request: Request) -> TaskService:
    return request.app.state.tasks


def get_user_service(request: Request) -> UserService:
    return request.app.state.users


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def get_dashboard_service(request: Request) -> DashboardService:
    return request.app.state.dashboard


def get_report_service(request: Request) -> ReportService:
    return request.app.state.reports
