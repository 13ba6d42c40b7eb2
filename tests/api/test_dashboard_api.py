"""
Name: Dashboard and Report API Tests

Responsibilities:
  - Operator-scoped dashboard figures
  - Supervisor gate on performance and reports
  - Report export responses (content type and filename)
"""

import json

import pytest


pytestmark = pytest.mark.api


@pytest.fixture
def floor(make_user, make_task, tasks, auth_headers):
    admin = make_user("admin")
    operator = make_user("operator")
    mine = make_task(admin, assigned_to=operator.id)
    make_task(admin)
    make_task(admin, priority="urgent")
    tasks.update_task_status(mine.id, "completed", operator.id)
    return {
        "admin": auth_headers(admin),
        "operator": auth_headers(operator),
    }


def test_dashboard_scoped_for_operator(client, floor):
    everything = client.get("/dashboard", headers=floor["admin"]).json()["data"]
    mine = client.get("/dashboard", headers=floor["operator"]).json()["data"]

    assert everything["task_summary"]["total"] == 3
    assert mine["task_summary"]["total"] == 1
    assert mine["task_summary"]["completed"] == 1
    assert set(mine) == {"task_summary", "recent_activity", "upcoming_tasks", "performance_metrics", "alerts"}


def test_dashboard_sub_resources(client, floor):
    headers = floor["admin"]

    summary = client.get("/dashboard/summary", headers=headers).json()["data"]
    assert summary["total_tasks"] == 3
    assert summary["completed_today"] == 1
    assert summary["high_priority_tasks"] == 1

    assert client.get("/dashboard/tasks", headers=headers).json()["data"]["completed"] == 1
    assert len(client.get("/dashboard/activity", params={"limit": 2}, headers=headers).json()["data"]) == 2
    assert len(client.get("/dashboard/upcoming", headers=headers).json()["data"]) == 2
    alerts = client.get("/dashboard/alerts", headers=headers).json()["data"]
    assert [a["type"] for a in alerts] == ["unassigned"]


def test_performance_and_reports_require_supervisor(client, floor):
    for path in ("/dashboard/performance", "/dashboard/reports/types", "/dashboard/reports/productivity"):
        assert client.get(path, headers=floor["operator"]).status_code == 403
        assert client.get(path, headers=floor["admin"]).status_code == 200


def test_report_endpoints(client, floor):
    headers = floor["admin"]

    productivity = client.get("/dashboard/reports/productivity", params={"task_type": "electrical"}, headers=headers)
    assert productivity.json()["data"]["summary"]["total_tasks"] == 3

    performance = client.get("/dashboard/reports/performance", headers=headers).json()["data"]
    assert performance["summary"]["active_users"] == 1

    metrics = client.get("/dashboard/reports/metrics", headers=headers).json()["data"]
    assert metrics["tasks_completed"] == 1

    bad = client.get("/dashboard/reports/productivity", params={"priority": "critical"}, headers=headers)
    assert bad.status_code == 400


def test_export_json_and_csv(client, floor):
    headers = floor["admin"]

    as_json = client.post("/dashboard/reports/export", json={"report": "productivity"}, headers=headers)
    assert as_json.status_code == 200
    assert as_json.headers["content-type"].startswith("application/json")
    assert as_json.headers["content-disposition"] == 'attachment; filename="productivity_report.json"'
    assert json.loads(as_json.text)["summary"]["total_tasks"] == 3

    as_csv = client.post(
        "/dashboard/reports/export", json={"report": "performance", "format": "csv"}, headers=headers
    )
    assert as_csv.headers["content-type"].startswith("text/csv")
    assert as_csv.text.splitlines()[0] == "Performance report"

    rejected = client.post("/dashboard/reports/export", json={"report": "payroll"}, headers=headers)
    assert rejected.status_code == 400
