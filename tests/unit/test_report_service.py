"""
Name: Report service tests

Responsibilities:
  - Productivity report summary, trends, breakdowns and insights
  - Performance report user metrics and recommendations
  - Period-over-period productivity metrics and report exports
"""

import json
from datetime import timedelta

import pytest

from mainthub.errors import ValidationError
from mainthub.models.models import utcnow
from mainthub.schemas.reports import ReportFilters
from mainthub.services.report_service import performance_recommendations, productivity_insights


pytestmark = pytest.mark.unit


@pytest.fixture
def workload(tasks, make_user, make_task):
    admin = make_user("admin", name="Ada")
    otto = make_user("operator", name="Otto")
    olga = make_user("operator", name="Olga")
    done_1 = make_task(admin, assigned_to=otto.id)
    done_2 = make_task(admin, assigned_to=otto.id, type="mechanical")
    make_task(admin, assigned_to=olga.id, priority="urgent")
    make_task(admin, type="mechanical")
    for task in (done_1, done_2):
        tasks.update_task_status(task.id, "in_progress", otto.id)
        tasks.update_task_status(task.id, "completed", otto.id)
    return {"admin": admin, "otto": otto, "olga": olga}


def test_productivity_report(reports, workload):
    report = reports.generate_productivity_report()

    summary = report["summary"]
    assert summary["total_tasks"] == 4
    assert summary["completed_tasks"] == 2
    assert summary["completion_rate"] == 50
    assert summary["on_time_completion_rate"] == 100

    by_type = {row["type"]: row for row in report["breakdown"]["by_type"]}
    assert by_type["electrical"]["count"] == 2
    assert by_type["mechanical"]["percentage"] == 50

    by_user = report["breakdown"]["by_user"]
    assert [u["user_name"] for u in by_user] == ["Otto", "Olga"]
    assert by_user[0]["completion_rate"] == 100
    assert by_user[1]["tasks_assigned"] == 1

    daily = report["trends"]["daily"]
    assert len(daily) == 1
    assert daily[0]["date"] == utcnow().date().isoformat()
    assert (daily[0]["tasks_created"], daily[0]["tasks_completed"]) == (4, 2)
    assert report["trends"]["monthly"][0]["period"] == utcnow().strftime("%Y-%m")

    assert "Low completion rate, needs immediate attention" in report["insights"]
    assert "Otto shows exceptional performance (100% completion)" in report["insights"]


def test_productivity_report_filters(reports, workload):
    report = reports.generate_productivity_report(ReportFilters(task_type="mechanical"))
    assert report["summary"]["total_tasks"] == 2
    assert [row["type"] for row in report["breakdown"]["by_type"]] == ["mechanical"]

    scoped = reports.generate_productivity_report(ReportFilters(user_id=workload["olga"].id))
    assert scoped["summary"]["total_tasks"] == 1
    assert scoped["summary"]["completed_tasks"] == 0

    future = reports.generate_productivity_report(ReportFilters(start_date=utcnow() + timedelta(days=1)))
    assert future["summary"]["total_tasks"] == 0
    assert future["trends"]["daily"] == []


def test_performance_report(reports, workload):
    report = reports.generate_performance_report()

    assert report["summary"]["total_users"] == 3
    assert report["summary"]["active_users"] == 2
    assert report["summary"]["top_performer_name"] == "Otto"
    assert [u["user_name"] for u in report["user_metrics"]] == ["Otto"]
    assert report["user_metrics"][0]["tasks_completed"] == 2
    assert report["user_metrics"][0]["on_time_rate"] == 100
    assert report["efficiency"]["average_response_hours"] >= 0
    assert report["recommendations"] == []


def test_performance_report_without_completions(reports, make_user):
    make_user("operator")

    report = reports.generate_performance_report()

    assert report["user_metrics"] == []
    assert report["summary"]["top_performer_user_id"] is None
    assert report["recommendations"] == ["Not enough data to generate recommendations"]


def test_productivity_metrics_compare_previous_window(reports, tasks, make_user, make_task, set_task_fields):
    admin = make_user("admin")
    old = make_task(admin)
    tasks.update_task_status(old.id, "completed", admin.id)
    set_task_fields(old.id, created_at=utcnow() - timedelta(days=40))
    for _ in range(2):
        task = make_task(admin)
        tasks.update_task_status(task.id, "completed", admin.id)

    metrics = reports.get_productivity_metrics()

    assert metrics["tasks_completed"] == 2
    assert metrics["productivity_trend"] == 100
    assert metrics["period_end"] - metrics["period_start"] == timedelta(days=30)


def test_recommendations_flag_imbalance():
    metrics = [
        {"user_name": "Busy", "tasks_completed": 20, "average_completion_hours": 2.0, "on_time_rate": 95},
        {"user_name": "Steady", "tasks_completed": 8, "average_completion_hours": 3.0, "on_time_rate": 90},
        {"user_name": "Idle", "tasks_completed": 2, "average_completion_hours": 10.0, "on_time_rate": 50},
    ]

    recommendations = performance_recommendations(metrics)

    assert "Consider redistributing workload from overloaded users: Busy" in recommendations
    assert "Users with available capacity: Idle" in recommendations
    assert "Provide additional training to users with high completion times" in recommendations
    assert "Review deadline planning and assignment to improve punctuality" in recommendations


def test_insights_compare_task_types():
    summary = {"completion_rate": 85, "average_completion_hours": 10}
    by_type = [
        {"type": "electrical", "average_completion_hours": 12.0},
        {"type": "mechanical", "average_completion_hours": 4.0},
    ]

    insights = productivity_insights(summary, by_type, [])

    assert insights == [
        "Excellent task completion rate (>80%)",
        "High completion time, consider reviewing the process",
        "Electrical tasks take significantly longer than mechanical tasks",
    ]


def test_report_types(reports):
    types = reports.report_types()

    assert [t["id"] for t in types["types"]] == ["productivity", "performance"]
    assert types["formats"] == ["json", "csv", "pdf"]


def test_export_formats(reports, workload):
    report = reports.generate_productivity_report()

    body, media_type, filename = reports.export_report(report, "json", "Productivity Report")
    assert media_type == "application/json"
    assert filename == "productivity_report.json"
    assert json.loads(body)["summary"]["total_tasks"] == 4

    body, media_type, filename = reports.export_report(report, "csv", "Productivity Report")
    lines = body.splitlines()
    assert media_type == "text/csv"
    assert lines[0] == "Productivity Report"
    assert "total_tasks,4" in lines
    assert "user_name,tasks_assigned,tasks_completed,completion_rate,average_completion_hours" in lines

    body, media_type, filename = reports.export_report(report, "pdf", "Productivity Report")
    assert media_type == "text/plain"
    assert "not implemented" in body

    with pytest.raises(ValidationError):
        reports.export_report(report, "xlsx", "Productivity Report")
