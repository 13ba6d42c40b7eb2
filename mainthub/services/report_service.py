"""
Report generation.

Productivity and performance reports are grouped aggregates over the tasks
table, scoped by ReportFilters, plus insight/recommendation strings derived
from fixed thresholds. Exports are plain serializations of a report.
"""
import csv
import io
import json
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import and_, func, select

from ..db import Database
from ..errors import ValidationError
from ..models.models import Task, User, utcnow
from ..schemas.reports import ExportFormat, ReportFilters
from .aggregates import (
    avg_hours,
    count_where,
    on_time_condition,
    percent,
    round2,
    task_scope,
    week_start,
    where_all,
)


log = structlog.get_logger(__name__)

DAILY_TREND_DAYS = 30
DEFAULT_METRICS_WINDOW = timedelta(days=30)

REPORT_TYPES = [
    {
        "id": "productivity",
        "name": "Productivity report",
        "description": "Completion rates, completion times, trends and breakdowns by type, priority and user",
        "filters": ["start_date", "end_date", "user_id", "task_type", "priority", "status"],
    },
    {
        "id": "performance",
        "name": "Performance report",
        "description": "Per-user completion metrics, response and resolution times, workload recommendations",
        "filters": ["start_date", "end_date"],
    },
]
EXPORT_FORMATS = [f.value for f in ExportFormat]


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _scope(filters: ReportFilters) -> List:
    return task_scope(
        start_date=filters.start_date,
        end_date=filters.end_date,
        user_id=filters.user_id,
        task_type=filters.task_type,
        priority=filters.priority,
        status=filters.status,
    )


def productivity_insights(summary: Dict[str, Any], by_type: List[Dict], by_user: List[Dict]) -> List[str]:
    insights = []
    rate = summary["completion_rate"]
    if rate > 80:
        insights.append("Excellent task completion rate (>80%)")
    elif rate > 60:
        insights.append("Moderate completion rate, there is room for improvement")
    else:
        insights.append("Low completion rate, needs immediate attention")

    hours = summary["average_completion_hours"]
    if hours < 4:
        insights.append("Efficient completion time (<4 hours on average)")
    elif hours > 8:
        insights.append("High completion time, consider reviewing the process")

    types = {row["type"]: row for row in by_type}
    electrical, mechanical = types.get("electrical"), types.get("mechanical")
    if electrical and mechanical:
        if electrical["average_completion_hours"] > mechanical["average_completion_hours"] * 1.5:
            insights.append("Electrical tasks take significantly longer than mechanical tasks")

    if by_user:
        top = by_user[0]
        if top["completion_rate"] > 90:
            insights.append(f"{top['user_name']} shows exceptional performance ({top['completion_rate']}% completion)")
    return insights


def performance_recommendations(user_metrics: List[Dict[str, Any]]) -> List[str]:
    if not user_metrics:
        return ["Not enough data to generate recommendations"]

    recommendations = []
    mean_completed = sum(u["tasks_completed"] for u in user_metrics) / len(user_metrics)
    mean_hours = sum(u["average_completion_hours"] for u in user_metrics) / len(user_metrics)

    overloaded = [u["user_name"] for u in user_metrics if u["tasks_completed"] > mean_completed * 1.5]
    if overloaded:
        recommendations.append(f"Consider redistributing workload from overloaded users: {', '.join(overloaded)}")
    underutilized = [u["user_name"] for u in user_metrics if u["tasks_completed"] < mean_completed * 0.5]
    if underutilized:
        recommendations.append(f"Users with available capacity: {', '.join(underutilized)}")
    if any(u["average_completion_hours"] > mean_hours * 1.3 for u in user_metrics):
        recommendations.append("Provide additional training to users with high completion times")
    if any(u["on_time_rate"] < 70 for u in user_metrics):
        recommendations.append("Review deadline planning and assignment to improve punctuality")
    return recommendations


class ReportService:
    def __init__(self, db: Database):
        self.db = db

    # -- productivity --------------------------------------------------

    def _summary(self, conditions: List) -> Dict[str, Any]:
        completed = Task.status == "completed"
        row = self.db.query(
            where_all(
                select(
                    func.count(Task.id).label("total"),
                    count_where(completed).label("completed"),
                    count_where(on_time_condition()).label("on_time"),
                    avg_hours(self.db.dialect, Task.created_at, Task.completed_at, completed).label("avg_hours"),
                ),
                conditions,
            )
        )[0]
        return {
            "total_tasks": row["total"],
            "completed_tasks": row["completed"],
            "completion_rate": round(percent(row["completed"], row["total"])),
            "average_completion_hours": round2(row["avg_hours"]),
            "on_time_completion_rate": round(percent(row["on_time"], row["completed"])),
        }

    def _breakdown(self, conditions: List, column, total: int, key: str) -> List[Dict[str, Any]]:
        completed = Task.status == "completed"
        stmt = where_all(
            select(
                column.label(key),
                func.count(Task.id).label("count"),
                avg_hours(self.db.dialect, Task.created_at, Task.completed_at, completed).label("avg_hours"),
            ),
            conditions,
        ).group_by(column).order_by(column)
        return [
            {
                key: row[key],
                "count": row["count"],
                "percentage": round(percent(row["count"], total)),
                "average_completion_hours": round2(row["avg_hours"]),
            }
            for row in self.db.query(stmt)
        ]

    def _user_breakdown(self, conditions: List) -> List[Dict[str, Any]]:
        completed = Task.status == "completed"
        completed_count = count_where(completed)
        stmt = (
            where_all(
                select(
                    User.id.label("user_id"),
                    User.name.label("user_name"),
                    func.count(Task.id).label("tasks_assigned"),
                    completed_count.label("tasks_completed"),
                    avg_hours(self.db.dialect, Task.created_at, Task.completed_at, completed).label("avg_hours"),
                ).join(User, User.id == Task.assigned_to),
                conditions,
            )
            .group_by(User.id, User.name)
        )
        rows = [
            {
                "user_id": row["user_id"],
                "user_name": row["user_name"],
                "tasks_assigned": row["tasks_assigned"],
                "tasks_completed": row["tasks_completed"],
                "completion_rate": round(percent(row["tasks_completed"], row["tasks_assigned"])),
                "average_completion_hours": round2(row["avg_hours"]),
            }
            for row in self.db.query(stmt)
        ]
        rows.sort(key=lambda r: (r["completion_rate"], r["tasks_completed"]), reverse=True)
        return rows

    def _trends(self, conditions: List) -> Dict[str, List[Dict[str, Any]]]:
        day = func.date(Task.created_at)
        stmt = where_all(
            select(
                day.label("day"),
                func.count(Task.id).label("created"),
                count_where(Task.status == "completed").label("completed"),
            ),
            conditions,
        ).group_by(day).order_by(day.desc())
        days = [(_as_date(row["day"]), row["created"], row["completed"]) for row in self.db.query(stmt)]

        def _bucket(label_fn) -> List[Dict[str, Any]]:
            buckets: "OrderedDict[Any, List[int]]" = OrderedDict()
            for d, created, done in days:
                totals = buckets.setdefault(label_fn(d), [0, 0])
                totals[0] += created
                totals[1] += done
            return [
                {
                    "period": label,
                    "tasks_created": created,
                    "tasks_completed": done,
                    "completion_rate": round(percent(done, created)),
                }
                for label, (created, done) in buckets.items()
            ]

        daily = [
            {
                "date": d.isoformat(),
                "tasks_created": created,
                "tasks_completed": done,
                "completion_rate": round(percent(done, created)),
            }
            for d, created, done in days[:DAILY_TREND_DAYS]
        ]
        weekly = _bucket(lambda d: week_start(datetime(d.year, d.month, d.day)).date().isoformat())
        monthly = _bucket(lambda d: f"{d.year:04d}-{d.month:02d}")
        return {"daily": daily, "weekly": weekly, "monthly": monthly}

    def generate_productivity_report(self, filters: Optional[ReportFilters] = None) -> Dict[str, Any]:
        filters = filters or ReportFilters()
        conditions = _scope(filters)
        summary = self._summary(conditions)
        by_type = self._breakdown(conditions, Task.type, summary["total_tasks"], "type")
        by_priority = self._breakdown(conditions, Task.priority, summary["total_tasks"], "priority")
        by_user = self._user_breakdown(conditions)
        report = {
            "summary": summary,
            "trends": self._trends(conditions),
            "breakdown": {"by_type": by_type, "by_priority": by_priority, "by_user": by_user},
            "insights": productivity_insights(summary, by_type, by_user),
        }
        log.info("productivity_report_generated", total_tasks=summary["total_tasks"])
        return report

    # -- performance ---------------------------------------------------

    def generate_performance_report(self, filters: Optional[ReportFilters] = None) -> Dict[str, Any]:
        filters = filters or ReportFilters()
        window = task_scope(start_date=filters.start_date, end_date=filters.end_date)
        dialect = self.db.dialect
        completed = Task.status == "completed"

        join_on = and_(User.id == Task.assigned_to, *window)
        summary_row = self.db.query(
            select(
                func.count(func.distinct(User.id)).label("total_users"),
                func.count(func.distinct(Task.assigned_to)).label("active_users"),
                func.count(Task.id).label("tasks"),
            )
            .select_from(User)
            .outerjoin(Task, join_on)
            .where(User.is_active.is_(True))
        )[0]

        completed_count = func.count(Task.id)
        metrics_stmt = (
            select(
                User.id.label("user_id"),
                User.name.label("user_name"),
                completed_count.label("tasks_completed"),
                count_where(on_time_condition()).label("on_time"),
                avg_hours(dialect, Task.created_at, Task.completed_at).label("avg_hours"),
            )
            .select_from(User)
            .join(Task, and_(join_on, completed))
            .where(User.is_active.is_(True))
            .group_by(User.id, User.name)
            .having(completed_count > 0)
            .order_by(completed_count.desc(), User.name.asc())
        )
        user_metrics = [
            {
                "user_id": row["user_id"],
                "user_name": row["user_name"],
                "tasks_completed": row["tasks_completed"],
                "average_completion_hours": round2(row["avg_hours"]),
                "on_time_rate": round(percent(row["on_time"], row["tasks_completed"])),
            }
            for row in self.db.query(metrics_stmt)
        ]

        efficiency_row = self.db.query(
            where_all(
                select(
                    avg_hours(dialect, Task.created_at, Task.started_at, Task.started_at.is_not(None)).label(
                        "response"
                    ),
                    avg_hours(dialect, Task.started_at, Task.completed_at, completed).label("resolution"),
                ),
                window,
            )
        )[0]

        top = user_metrics[0] if user_metrics else None
        total_users = summary_row["total_users"]
        report = {
            "summary": {
                "total_users": total_users,
                "active_users": summary_row["active_users"],
                "average_tasks_per_user": round2(summary_row["tasks"] / total_users) if total_users else 0.0,
                "top_performer_user_id": top["user_id"] if top else None,
                "top_performer_name": top["user_name"] if top else None,
            },
            "user_metrics": user_metrics,
            "efficiency": {
                "average_response_hours": round2(efficiency_row["response"]),
                "average_resolution_hours": round2(efficiency_row["resolution"]),
            },
            "recommendations": performance_recommendations(user_metrics),
        }
        log.info("performance_report_generated", users=len(user_metrics))
        return report

    # -- quick metrics -------------------------------------------------

    def get_productivity_metrics(self, filters: Optional[ReportFilters] = None) -> Dict[str, Any]:
        filters = filters or ReportFilters()
        end = filters.end_date or utcnow()
        start = filters.start_date or end - DEFAULT_METRICS_WINDOW
        scoped = filters.model_copy(update={"start_date": start, "end_date": end})
        current = self._summary(_scope(scoped))

        span = end - start
        previous_filters = filters.model_copy(update={"start_date": start - span, "end_date": start})
        previous = self._summary(_scope(previous_filters))

        before, now = previous["completed_tasks"], current["completed_tasks"]
        trend = round((now - before) * 100.0 / before) if before else 0
        return {
            "tasks_completed": now,
            "average_completion_hours": current["average_completion_hours"],
            "on_time_rate": current["on_time_completion_rate"],
            "productivity_trend": trend,
            "period_start": start,
            "period_end": end,
        }

    def report_types(self) -> Dict[str, Any]:
        return {"types": REPORT_TYPES, "formats": EXPORT_FORMATS}

    # -- export --------------------------------------------------------

    def export_report(self, data: Dict[str, Any], fmt, title: str) -> Tuple[str, str, str]:
        """Serialize a report; returns (body, media_type, filename)."""
        fmt = getattr(fmt, "value", fmt)
        stem = title.lower().replace(" ", "_")
        if fmt == "json":
            return json.dumps(data, indent=2, default=str), "application/json", f"{stem}.json"
        if fmt == "csv":
            return self._to_csv(data, title), "text/csv", f"{stem}.csv"
        if fmt == "pdf":
            # TODO: render PDF exports once a layout for reports exists
            return f"PDF export not implemented yet for: {title}", "text/plain", f"{stem}.txt"
        raise ValidationError(f"unsupported export format: {fmt}")

    @staticmethod
    def _to_csv(data: Dict[str, Any], title: str) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow([title])
        writer.writerow([])
        if data.get("summary"):
            writer.writerow(["Summary"])
            for key, value in data["summary"].items():
                writer.writerow([key, value])
            writer.writerow([])
        users = (data.get("breakdown") or {}).get("by_user") or data.get("user_metrics")
        if users:
            writer.writerow(["By user"])
            columns = [k for k in users[0].keys() if k != "user_id"]
            writer.writerow(columns)
            for row in users:
                writer.writerow([row[k] for k in columns])
        return buf.getvalue()
