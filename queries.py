import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from database import TaskStore
from models import PRIORITY_WEIGHT, Task, TaskPriority, TaskStatus, as_utc

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
# Keeps the OFFSET inside SQLite's 64-bit integer range.
MAX_PAGE = 1_000_000


@dataclass(frozen=True)
class TaskFilter:
    """List options. page and limit are range-checked at the HTTP boundary."""

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    overdue: bool = False
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class Predicate:
    sql: str
    params: tuple = ()

    def and_(self, clause: str, *params) -> "Predicate":
        return Predicate(f"{self.sql} AND {clause}", self.params + params)


def owned_by(owner_id: int) -> Predicate:
    """Live rows of one owner. Every read starts from here."""
    return Predicate("owner_id = ? AND deleted_at IS NULL", (owner_id,))


def with_overdue(predicate: Predicate, now: datetime) -> Predicate:
    # NULL due_date never compares true, so undated tasks never match.
    return predicate.and_(
        "due_date < ? AND status != ?",
        as_utc(now).timestamp(),
        TaskStatus.COMPLETED.value,
    )


def build_predicate(owner_id: int, task_filter: TaskFilter, now: datetime) -> Predicate:
    predicate = owned_by(owner_id)
    if task_filter.status is not None:
        predicate = predicate.and_("status = ?", TaskStatus(task_filter.status).value)
    if task_filter.priority is not None:
        predicate = predicate.and_("priority = ?", TaskPriority(task_filter.priority).value)
    if task_filter.overdue:
        predicate = with_overdue(predicate, now)
    return predicate


def _priority_rank_sql() -> str:
    cases = " ".join(
        f"WHEN '{priority.value}' THEN {weight}"
        for priority, weight in sorted(PRIORITY_WEIGHT.items(), key=lambda kv: -kv[1])
    )
    return f"CASE priority {cases} ELSE {PRIORITY_WEIGHT[TaskPriority.MEDIUM]} END"


# Priority rank desc, then newest first; id desc only breaks exact timestamp ties.
ORDER_BY = f"{_priority_rank_sql()} DESC, created_at DESC, id DESC"


def sort_key(task: Task):
    """Python mirror of ORDER_BY."""
    return (-task.priority_weight, -task.created_at.timestamp(), -task.id)


def count_pages(total: int, limit: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / limit)


def list_tasks(store: TaskStore, owner_id: int, task_filter: TaskFilter, now: datetime) -> tuple[list[Task], int]:
    """
    Return one page of the owner's tasks plus the count of all matches.

    The total is counted with the same predicate before LIMIT/OFFSET.
    """
    predicate = build_predicate(owner_id, task_filter, now)
    total = store.count(predicate.sql, predicate.params)
    tasks = store.select(
        predicate.sql,
        predicate.params,
        order_by=ORDER_BY,
        limit=task_filter.limit,
        offset=task_filter.offset,
    )
    return tasks, total
