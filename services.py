import logging
from datetime import datetime
from typing import Callable, Optional

from database import TaskStore
from errors import NotFound
from models import (
    NewTask,
    Task,
    TaskPatch,
    TaskPriority,
    TaskStats,
    TaskStatus,
    as_utc,
    utcnow,
)
from queries import TaskFilter, list_tasks, owned_by, with_overdue

logger = logging.getLogger(__name__)


class TaskService:
    """
    Task operations scoped to one owner.

    owner_id always comes from the verified token. update, mark_completed and
    mark_pending read then write without a lock, so concurrent writers to the
    same task resolve as last-writer-wins. delete is a single conditional
    statement.
    """

    def __init__(self, store: TaskStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    # Create

    def create(
        self,
        owner_id: int,
        title: str,
        description: Optional[str] = None,
        priority: Optional[TaskPriority] = None,
        due_date: Optional[datetime] = None,
    ) -> Task:
        new_task = NewTask(
            owner_id=owner_id,
            title=title,
            description=description,
            priority=TaskPriority(priority) if priority is not None else TaskPriority.MEDIUM,
            due_date=as_utc(due_date) if due_date is not None else None,
        )
        task = self.store.insert(new_task, self.clock())
        logger.info("Task created id=%s owner=%s priority=%s", task.id, owner_id, task.priority.value)
        return task

    # Read

    def get(self, owner_id: int, task_id: int) -> Task:
        task = self.store.get(owner_id, task_id)
        if task is None:
            raise NotFound("Task not found")
        return task

    def list(self, owner_id: int, task_filter: TaskFilter) -> tuple[list[Task], int]:
        return list_tasks(self.store, owner_id, task_filter, self.clock())

    def stats(self, owner_id: int) -> TaskStats:
        # Four separate counts, not one snapshot: under concurrent writes
        # total may briefly differ from pending + completed.
        base = owned_by(owner_id)
        pending = base.and_("status = ?", TaskStatus.PENDING.value)
        completed = base.and_("status = ?", TaskStatus.COMPLETED.value)
        overdue = with_overdue(base, self.clock())
        return TaskStats(
            total=self.store.count(base.sql, base.params),
            pending=self.store.count(pending.sql, pending.params),
            completed=self.store.count(completed.sql, completed.params),
            overdue=self.store.count(overdue.sql, overdue.params),
        )

    # Update

    def update(self, owner_id: int, task_id: int, patch: TaskPatch) -> Task:
        task = self.get(owner_id, task_id)
        return self._save(task.apply(patch, self.clock()))

    def mark_completed(self, owner_id: int, task_id: int) -> Task:
        return self._set_status(owner_id, task_id, TaskStatus.COMPLETED)

    def mark_pending(self, owner_id: int, task_id: int) -> Task:
        return self._set_status(owner_id, task_id, TaskStatus.PENDING)

    def _set_status(self, owner_id: int, task_id: int, status: TaskStatus) -> Task:
        task = self.get(owner_id, task_id)
        return self._save(task.with_status(status, self.clock()))

    def _save(self, task: Task) -> Task:
        saved = self.store.save(task, task.updated_at)
        if saved is None:
            # Deleted between the read and the write.
            raise NotFound("Task not found")
        return saved

    # Delete

    def delete(self, owner_id: int, task_id: int) -> None:
        if not self.store.soft_delete(owner_id, task_id, self.clock()):
            raise NotFound("Task not found")
        logger.info("Task deleted id=%s owner=%s", task_id, owner_id)
