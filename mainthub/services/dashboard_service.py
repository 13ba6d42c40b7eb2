"""
Dashboard aggregates.

Read-only: every figure is a grouped query over tasks/users, optionally
scoped to one user. Nothing here writes.
"""
import math
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, func, literal, or_, select, union_all

from ..db import Database
from ..models.models import Task, TaskNote, User, TASK_PRIORITIES, TASK_TYPES, utcnow
from .aggregates import (
    CLOSED_STATUSES,
    avg_hours,
    count_where,
    day_start,
    month_start,
    on_time_condition,
    overdue_condition,
    percent,
    round2,
    week_start,
    where_all,
)


log = structlog.get_logger(__name__)

SEVERITY_RANK = {"critical": 4, "high": 3, "medium": 2, "low": 1}
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
ALERT_SOURCE_LIMIT = 5
UNASSIGNED_ALERT_LIMIT = 3
NOTE_PREVIEW_CHARS = 50


def _involves(user_id):
    return or_(Task.assigned_to == user_id, Task.created_by == user_id)


class DashboardService:
    def __init__(self, db: Database):
        self.db = db

    def get_dashboard_data(self, user_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        return {
            "task_summary": self.get_task_summary(user_id),
            "recent_activity": self.get_recent_activity(user_id),
            "upcoming_tasks": self.get_upcoming_tasks(user_id),
            "performance_metrics": self.get_performance_metrics(user_id),
            "alerts": self.get_alerts(user_id),
        }

    def get_task_summary(self, user_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        now = utcnow()
        completed = Task.status == "completed"
        conditions = [Task.assigned_to == user_id] if user_id else []
        columns = [
            func.count(Task.id).label("total"),
            count_where(Task.status == "pending").label("pending"),
            count_where(Task.status == "in_progress").label("in_progress"),
            count_where(completed).label("completed"),
            count_where(Task.status == "cancelled").label("cancelled"),
            count_where(overdue_condition(now)).label("overdue"),
            count_where(and_(completed, Task.completed_at >= day_start(now))).label("completed_today"),
            count_where(and_(completed, Task.completed_at >= week_start(now))).label("completed_this_week"),
            count_where(and_(completed, Task.completed_at >= month_start(now))).label("completed_this_month"),
            avg_hours(self.db.dialect, Task.created_at, Task.completed_at, completed).label("avg_hours"),
        ]
        columns += [count_where(Task.priority == p).label(f"priority_{p}") for p in TASK_PRIORITIES]
        columns += [count_where(Task.type == t).label(f"type_{t}") for t in TASK_TYPES]

        row = self.db.query(where_all(select(*columns), conditions))[0]
        return {
            "total": row["total"],
            "pending": row["pending"],
            "in_progress": row["in_progress"],
            "completed": row["completed"],
            "cancelled": row["cancelled"],
            "overdue": row["overdue"],
            "completed_today": row["completed_today"],
            "completed_this_week": row["completed_this_week"],
            "completed_this_month": row["completed_this_month"],
            "average_completion_hours": round2(row["avg_hours"]),
            "by_priority": {p: row[f"priority_{p}"] for p in TASK_PRIORITIES},
            "by_type": {t: row[f"type_{t}"] for t in TASK_TYPES},
        }

    def get_recent_activity(self, user_id: Optional[uuid.UUID] = None, limit: int = 10) -> List[Dict[str, Any]]:
        created = (
            select(
                literal("task_created").label("activity_type"),
                Task.id.label("task_id"),
                Task.title.label("task_title"),
                Task.created_by.label("user_id"),
                User.name.label("user_name"),
                Task.created_at.label("timestamp"),
                literal(None).label("detail"),
            )
            .join(User, User.id == Task.created_by)
        )
        completed = (
            select(
                literal("task_completed").label("activity_type"),
                Task.id,
                Task.title,
                func.coalesce(Task.assigned_to, Task.created_by),
                User.name,
                Task.completed_at,
                literal(None),
            )
            .join(User, User.id == func.coalesce(Task.assigned_to, Task.created_by))
            .where(Task.status == "completed", Task.completed_at.is_not(None))
        )
        notes = (
            select(
                literal("note_added").label("activity_type"),
                TaskNote.task_id,
                Task.title,
                TaskNote.user_id,
                User.name,
                TaskNote.created_at,
                TaskNote.content,
            )
            .join(Task, Task.id == TaskNote.task_id)
            .join(User, User.id == TaskNote.user_id)
        )
        if user_id:
            created = created.where(_involves(user_id))
            completed = completed.where(_involves(user_id))
            notes = notes.where(or_(Task.assigned_to == user_id, TaskNote.user_id == user_id))

        activity = union_all(created, completed, notes).subquery()
        stmt = select(activity).order_by(activity.c.timestamp.desc()).limit(limit)

        events = []
        for row in self.db.query(stmt):
            kind = row["activity_type"]
            if kind == "task_created":
                description = "Task created"
            elif kind == "task_completed":
                description = "Task completed"
            else:
                preview = row["detail"] or ""
                if len(preview) > NOTE_PREVIEW_CHARS:
                    preview = preview[:NOTE_PREVIEW_CHARS] + "..."
                description = f"Note added: {preview}"
            timestamp = row["timestamp"]
            events.append(
                {
                    "id": f"{kind}_{row['task_id']}_{timestamp.isoformat() if timestamp else ''}",
                    "type": kind,
                    "task_id": row["task_id"],
                    "task_title": row["task_title"],
                    "user_id": row["user_id"],
                    "user_name": row["user_name"],
                    "description": description,
                    "timestamp": timestamp,
                }
            )
        return events

    def get_upcoming_tasks(self, user_id: Optional[uuid.UUID] = None, limit: int = 5) -> List[Dict[str, Any]]:
        now = utcnow()
        stmt = (
            select(
                Task.id,
                Task.title,
                Task.priority,
                Task.due_date,
                Task.assigned_to,
                User.name.label("assigned_to_name"),
            )
            .outerjoin(User, User.id == Task.assigned_to)
            .where(Task.status.notin_(CLOSED_STATUSES))
            .order_by(Task.due_date.asc(), Task.id.asc())
            .limit(limit)
        )
        if user_id:
            stmt = stmt.where(_involves(user_id))

        upcoming = []
        for row in self.db.query(stmt):
            days_until_due = math.floor((row["due_date"] - now).total_seconds() / 86400)
            upcoming.append(
                {
                    "id": row["id"],
                    "title": row["title"],
                    "priority": row["priority"],
                    "due_date": row["due_date"],
                    "assigned_to": row["assigned_to"],
                    "assigned_to_name": row["assigned_to_name"],
                    "days_until_due": days_until_due,
                    "is_overdue": row["due_date"] < now,
                }
            )
        return upcoming

    def get_performance_metrics(self, user_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        now = utcnow()
        this_week = week_start(now)
        last_week = this_week - timedelta(days=7)
        window_start = now - timedelta(days=30)
        completed = Task.status == "completed"
        scope = [completed, Task.completed_at.is_not(None)]
        if user_id:
            scope.append(Task.assigned_to == user_id)

        weekly = self.db.query(
            select(
                count_where(Task.completed_at >= this_week).label("this_week"),
                count_where(and_(Task.completed_at >= last_week, Task.completed_at < this_week)).label("last_week"),
                count_where(on_time_condition()).label("on_time"),
                func.count(Task.id).label("completed"),
            ).where(*scope)
        )[0]
        trend = (weekly["this_week"] - weekly["last_week"]) * 100.0 / weekly["last_week"] if weekly["last_week"] else 0.0

        recent = [
            row["completed_at"]
            for row in self.db.query(
                select(Task.completed_at).where(*scope, Task.completed_at >= window_start)
            )
        ]
        active_days = {ts.date() for ts in recent}
        by_weekday = Counter(ts.weekday() for ts in recent)
        by_hour = Counter(ts.hour for ts in recent)

        return {
            "tasks_completed_this_week": weekly["this_week"],
            "tasks_completed_last_week": weekly["last_week"],
            "weekly_completion_trend": round(trend),
            "average_tasks_per_day": round2(len(recent) / len(active_days)) if active_days else 0.0,
            "on_time_completion_rate": round(percent(weekly["on_time"], weekly["completed"])),
            "most_productive_day": WEEKDAYS[by_weekday.most_common(1)[0][0]] if by_weekday else None,
            "most_productive_hour": by_hour.most_common(1)[0][0] if by_hour else None,
            "top_performers": [] if user_id else self._top_performers(window_start),
        }

    def _top_performers(self, since: datetime, min_completed: int = 3, limit: int = 5) -> List[Dict[str, Any]]:
        completed_count = func.count(Task.id)
        on_time = count_where(on_time_condition())
        stmt = (
            select(
                User.id.label("user_id"),
                User.name.label("user_name"),
                completed_count.label("tasks_completed"),
                on_time.label("on_time"),
                avg_hours(self.db.dialect, Task.created_at, Task.completed_at).label("avg_hours"),
            )
            .join(User, User.id == Task.assigned_to)
            .where(Task.status == "completed", Task.completed_at >= since)
            .group_by(User.id, User.name)
            .having(completed_count >= min_completed)
            .order_by(completed_count.desc(), on_time.desc())
            .limit(limit)
        )
        return [
            {
                "user_id": row["user_id"],
                "user_name": row["user_name"],
                "tasks_completed": row["tasks_completed"],
                "average_completion_hours": round2(row["avg_hours"]),
                "on_time_rate": round(percent(row["on_time"], row["tasks_completed"])),
            }
            for row in self.db.query(stmt)
        ]

    def get_alerts(self, user_id: Optional[uuid.UUID] = None, limit: int = 10) -> List[Dict[str, Any]]:
        now = utcnow()
        open_task = Task.status.notin_(CLOSED_STATUSES)
        base = select(Task.id, Task.title, Task.priority, Task.due_date, Task.assigned_to, Task.created_at)
        if user_id:
            base = base.where(_involves(user_id))
        alerts: List[Dict[str, Any]] = []

        overdue = base.where(open_task, Task.due_date < now).order_by(Task.due_date.asc()).limit(ALERT_SOURCE_LIMIT)
        for row in self.db.query(overdue):
            days_overdue = (now - row["due_date"]).days
            severity = "critical" if days_overdue > 7 else "high" if days_overdue > 3 else "medium"
            alerts.append(
                {
                    "id": f"overdue_{row['id']}",
                    "type": "overdue",
                    "severity": severity,
                    "title": "Overdue task",
                    "message": f'"{row["title"]}" was due {days_overdue} day(s) ago',
                    "task_id": row["id"],
                    "user_id": row["assigned_to"],
                    "timestamp": row["due_date"],
                    "is_read": False,
                }
            )

        due_soon = (
            base.where(open_task, Task.due_date >= now, Task.due_date <= now + timedelta(days=2))
            .order_by(Task.due_date.asc())
            .limit(ALERT_SOURCE_LIMIT)
        )
        for row in self.db.query(due_soon):
            hours_until_due = int((row["due_date"] - now).total_seconds() // 3600)
            alerts.append(
                {
                    "id": f"due_soon_{row['id']}",
                    "type": "due_soon",
                    "severity": "high" if hours_until_due < 24 else "medium",
                    "title": "Task due soon",
                    "message": f'"{row["title"]}" is due in {hours_until_due} hour(s)',
                    "task_id": row["id"],
                    "user_id": row["assigned_to"],
                    "timestamp": now,
                    "is_read": False,
                }
            )

        if not user_id:
            unassigned = (
                base.where(
                    Task.assigned_to.is_(None),
                    Task.priority.in_(("urgent", "high")),
                    Task.status == "pending",
                )
                .order_by(Task.created_at.desc())
                .limit(UNASSIGNED_ALERT_LIMIT)
            )
            for row in self.db.query(unassigned):
                alerts.append(
                    {
                        "id": f"unassigned_{row['id']}",
                        "type": "unassigned",
                        "severity": "critical" if row["priority"] == "urgent" else "high",
                        "title": "Unassigned task",
                        "message": f'{row["priority"].capitalize()} priority task: "{row["title"]}"',
                        "task_id": row["id"],
                        "user_id": None,
                        "timestamp": row["created_at"],
                        "is_read": False,
                    }
                )

        alerts.sort(key=lambda a: (SEVERITY_RANK[a["severity"]], a["timestamp"]), reverse=True)
        return alerts[:limit]

    def get_quick_summary(self, user_id: Optional[uuid.UUID] = None) -> Dict[str, int]:
        now = utcnow()
        open_task = Task.status.notin_(CLOSED_STATUSES)
        conditions = [Task.assigned_to == user_id] if user_id else []
        row = self.db.query(
            where_all(
                select(
                    func.count(Task.id).label("total_tasks"),
                    count_where(and_(Task.status == "completed", Task.completed_at >= day_start(now))).label(
                        "completed_today"
                    ),
                    count_where(overdue_condition(now)).label("overdue_tasks"),
                    count_where(and_(open_task, Task.priority.in_(("urgent", "high")))).label("high_priority_tasks"),
                ),
                conditions,
            )
        )[0]
        return dict(row)
