import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ..auth.security import get_current_user, require_role
from ..deps import get_dashboard_service, get_report_service, ok
from ..schemas.reports import ExportRequest, ReportFilters, ReportKind
from ..schemas.tasks import TaskPriority, TaskStatus, TaskType
from ..schemas.users import UserRead
from ..services import policy
from ..services.dashboard_service import DashboardService
from ..services.report_service import ReportService


router = APIRouter(prefix="/dashboard", tags=["dashboard"])

MAX_ACTIVITY = 50
MAX_ALERTS = 50
MAX_UPCOMING = 20


def _scope(user: UserRead) -> Optional[uuid.UUID]:
    """Operators only ever see their own numbers."""
    return user.id if policy.is_operator(user) else None


def report_filters(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[uuid.UUID] = None,
    task_type: Optional[TaskType] = None,
    priority: Optional[TaskPriority] = None,
    status: Optional[TaskStatus] = None,
) -> ReportFilters:
    return ReportFilters(
        start_date=start_date,
        end_date=end_date,
        user_id=user_id,
        task_type=task_type,
        priority=priority,
        status=status,
    )


@router.get("")
def dashboard(
    user: UserRead = Depends(get_current_user),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_dashboard_data(_scope(user)))


@router.get("/summary")
def quick_summary(
    user: UserRead = Depends(get_current_user),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_quick_summary(_scope(user)))


@router.get("/tasks")
def task_summary(
    user: UserRead = Depends(get_current_user),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_task_summary(_scope(user)))


@router.get("/activity")
def recent_activity(
    limit: int = Query(10, ge=1),
    user: UserRead = Depends(get_current_user),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_recent_activity(_scope(user), min(limit, MAX_ACTIVITY)))


@router.get("/upcoming")
def upcoming_tasks(
    limit: int = Query(5, ge=1),
    user: UserRead = Depends(get_current_user),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_upcoming_tasks(_scope(user), min(limit, MAX_UPCOMING)))


@router.get("/alerts")
def alerts(
    limit: int = Query(10, ge=1),
    user: UserRead = Depends(get_current_user),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_alerts(_scope(user), min(limit, MAX_ALERTS)))


@router.get("/performance")
def performance(
    user_id: Optional[uuid.UUID] = None,
    _: UserRead = Depends(require_role("supervisor")),
    dashboards: DashboardService = Depends(get_dashboard_service),
):
    return ok(dashboards.get_performance_metrics(user_id))


# Reports

@router.get("/reports/types")
def report_types(
    _: UserRead = Depends(require_role("supervisor")),
    reports: ReportService = Depends(get_report_service),
):
    return ok(reports.report_types())


@router.get("/reports/productivity")
def productivity_report(
    filters: ReportFilters = Depends(report_filters),
    _: UserRead = Depends(require_role("supervisor")),
    reports: ReportService = Depends(get_report_service),
):
    return ok(reports.generate_productivity_report(filters))


@router.get("/reports/performance")
def performance_report(
    filters: ReportFilters = Depends(report_filters),
    _: UserRead = Depends(require_role("supervisor")),
    reports: ReportService = Depends(get_report_service),
):
    return ok(reports.generate_performance_report(filters))


@router.get("/reports/metrics")
def productivity_metrics(
    filters: ReportFilters = Depends(report_filters),
    _: UserRead = Depends(require_role("supervisor")),
    reports: ReportService = Depends(get_report_service),
):
    return ok(reports.get_productivity_metrics(filters))


@router.post("/reports/export")
def export_report(
    body: ExportRequest,
    _: UserRead = Depends(require_role("supervisor")),
    reports: ReportService = Depends(get_report_service),
):
    if body.report is ReportKind.productivity:
        data = reports.generate_productivity_report(body.filters)
        title = "Productivity report"
    else:
        data = reports.generate_performance_report(body.filters)
        title = "Performance report"
    content, media_type, filename = reports.export_report(data, body.format, title)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
