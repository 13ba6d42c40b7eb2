"""Dialect-portable SQL aggregate expressions and calendar helpers shared by the read side."""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import Float, and_, case, cast, extract, func, or_

from ..models.models import Task


OPEN_STATUSES = ("pending", "in_progress")
CLOSED_STATUSES = ("completed", "cancelled")


def count_where(condition):
    return func.count(case((condition, 1)))


def hours_between(dialect: str, start, end):
    """Elapsed hours between two timestamp columns."""
    if dialect == "postgresql":
        return extract("epoch", end - start) / 3600.0
    return (func.julianday(end) - func.julianday(start)) * 24.0


def avg_hours(dialect: str, start, end, condition=None):
    expr = hours_between(dialect, start, end)
    if condition is not None:
        expr = case((condition, expr))
    return func.avg(cast(expr, Float))


def round2(value) -> float:
    return round(float(value), 2) if value is not None else 0.0


def percent(part, whole) -> float:
    return round2(part * 100.0 / whole) if whole else 0.0


def overdue_condition(now: datetime):
    return and_(Task.due_date < now, Task.status.notin_(CLOSED_STATUSES))


def on_time_condition():
    return and_(Task.status == "completed", Task.completed_at <= Task.due_date)


def day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime) -> datetime:
    """Monday 00:00 of the week containing `now`."""
    return day_start(now) - timedelta(days=now.weekday())


def month_start(now: datetime) -> datetime:
    return day_start(now).replace(day=1)


def task_scope(
    *,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id=None,
    task_type=None,
    priority=None,
    status=None,
    involve_creator: bool = False,
) -> List:
    """WHERE conditions for read-side task aggregates.

    `user_id` scopes to the assignee, or to assignee-or-creator when
    `involve_creator` is set.
    """
    conditions = []
    if start_date is not None:
        conditions.append(Task.created_at >= start_date)
    if end_date is not None:
        conditions.append(Task.created_at <= end_date)
    if user_id is not None:
        if involve_creator:
            conditions.append(or_(Task.assigned_to == user_id, Task.created_by == user_id))
        else:
            conditions.append(Task.assigned_to == user_id)
    if task_type is not None:
        conditions.append(Task.type == getattr(task_type, "value", task_type))
    if priority is not None:
        conditions.append(Task.priority == getattr(priority, "value", priority))
    if status is not None:
        conditions.append(Task.status == getattr(status, "value", status))
    return conditions


def where_all(stmt, conditions):
    return stmt.where(and_(*conditions)) if conditions else stmt
