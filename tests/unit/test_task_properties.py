"""
Name: Task service property tests

Responsibilities:
  - Status timestamp invariants over arbitrary status sequences
  - Pagination partitions a filtered listing exactly, in the requested order
  - Priority ordering is monotonic
"""

from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings as hyp_settings, strategies as st

from mainthub.models.models import utcnow
from mainthub.schemas.tasks import PRIORITY_RANK, Pagination, TaskFilters


pytestmark = pytest.mark.unit

STATUSES = ["pending", "in_progress", "completed", "cancelled"]
PRIORITIES = list(PRIORITY_RANK)

db_examples = hyp_settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


@db_examples
@given(sequence=st.lists(st.sampled_from(STATUSES), min_size=1, max_size=8))
def test_status_timestamps_follow_history(tasks, make_user, make_task, sequence):
    creator = make_user("admin")
    task = make_task(creator)
    started_seen = False

    for status in sequence:
        current = tasks.update_task_status(task.id, status, creator.id)
        started_seen = started_seen or status in ("in_progress", "completed")

        assert current.status.value == status
        assert (current.started_at is not None) == started_seen
        assert (current.completed_at is not None) == (status == "completed")
        if current.started_at is not None:
            assert current.started_at >= current.created_at
        if current.completed_at is not None:
            assert current.completed_at >= current.started_at


@db_examples
@given(
    count=st.integers(min_value=0, max_value=12),
    limit=st.integers(min_value=1, max_value=5),
    sort_by=st.sampled_from(["priority", "due_date", "created_at", "title"]),
    sort_order=st.sampled_from(["asc", "desc"]),
)
def test_pages_partition_listing(tasks, make_user, make_task, count, limit, sort_by, sort_order):
    creator = make_user("supervisor")
    base = utcnow() + timedelta(days=1)
    for i in range(count):
        make_task(
            creator,
            title=f"T{i % 3}",
            priority=PRIORITIES[i % len(PRIORITIES)],
            due_date=base + timedelta(hours=(i * 5) % 13),
        )
    filters = TaskFilters(created_by=creator.id)

    seen = []
    first = tasks.list_tasks(filters, Pagination(page=1, limit=limit, sort_by=sort_by, sort_order=sort_order))
    for page in range(1, first.total_pages + 1):
        result = tasks.list_tasks(filters, Pagination(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order))
        assert len(result.items) <= limit
        seen.extend(result.items)

    assert first.total == count
    assert first.total_pages == -(-count // limit)
    assert len(seen) == count
    assert len({t.id for t in seen}) == count

    if sort_by == "priority":
        keys = [PRIORITY_RANK[t.priority.value] for t in seen]
    else:
        keys = [getattr(t, sort_by) for t in seen]
    assert keys == sorted(keys, reverse=(sort_order == "desc"))


@db_examples
@given(priorities=st.lists(st.sampled_from(PRIORITIES), min_size=1, max_size=8))
def test_priority_sort_is_monotonic(tasks, make_user, make_task, priorities):
    creator = make_user("supervisor")
    for priority in priorities:
        make_task(creator, priority=priority)
    filters = TaskFilters(created_by=creator.id)

    desc = tasks.list_tasks(filters, Pagination(limit=len(priorities), sort_by="priority", sort_order="desc"))
    ranks = [PRIORITY_RANK[t.priority.value] for t in desc.items]

    assert ranks == sorted(ranks, reverse=True)
    assert sorted(t.priority.value for t in desc.items) == sorted(priorities)
