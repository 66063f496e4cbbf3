import contextlib
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence

from errors import PersistenceError
from models import (
    ACTIVE,
    Deleted,
    NewTask,
    Task,
    TaskPriority,
    TaskStatus,
    as_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "todo.db"


def get_db_connection(db_path: str | Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row  # dict-style rows
    return conn


def init_db(db_path: str | Path = DEFAULT_DB_PATH) -> None:
    """Create the tasks table and its indexes if they are missing."""
    conn = get_db_connection(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('''
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'completed')),
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK (priority IN ('low', 'medium', 'high')),
            due_date REAL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            deleted_at REAL
        )
        ''')
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id, deleted_at)")
        conn.commit()
    finally:
        conn.close()


def _to_ts(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    return as_utc(value).timestamp()


def _from_ts(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), timezone.utc)


def _row_to_task(row: sqlite3.Row) -> Task:
    deleted_at = _from_ts(row["deleted_at"])
    return Task(
        id=int(row["id"]),
        owner_id=int(row["owner_id"]),
        title=row["title"],
        description=row["description"],
        status=TaskStatus(row["status"]),
        priority=TaskPriority(row["priority"]),
        due_date=_from_ts(row["due_date"]),
        created_at=_from_ts(row["created_at"]),
        updated_at=_from_ts(row["updated_at"]),
        lifecycle=ACTIVE if deleted_at is None else Deleted(deleted_at),
    )


class TaskStore:
    """
    SQLite task store.

    Each call opens its own connection, so the store can be shared across
    request threads. Every write touches exactly one row. sqlite3 errors are
    surfaced as PersistenceError.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            init_db(self.db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to initialise database: {exc}") from exc
        logger.info("TaskStore ready db=%s", self.db_path)

    @contextlib.contextmanager
    def _connect(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_db_connection(self.db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to {action}: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"failed to {action}: {exc}") from exc
        finally:
            conn.close()

    # ---- writes ----

    def insert(self, new_task: NewTask, now: datetime) -> Task:
        ts = _to_ts(now)
        with self._connect("create task") as conn:
            cursor = conn.execute(
                "INSERT INTO tasks (owner_id, title, description, status, priority, due_date, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    new_task.owner_id,
                    new_task.title,
                    new_task.description,
                    TaskStatus(new_task.status).value,
                    TaskPriority(new_task.priority).value,
                    _to_ts(new_task.due_date),
                    ts,
                    ts,
                ),
            )
            conn.commit()
            task_id = cursor.lastrowid
        if task_id is None:
            raise PersistenceError("failed to create task: no row id returned")
        logger.debug("Task inserted id=%s owner=%s", task_id, new_task.owner_id)
        return Task(
            id=int(task_id),
            owner_id=new_task.owner_id,
            title=new_task.title,
            description=new_task.description,
            status=TaskStatus(new_task.status),
            priority=TaskPriority(new_task.priority),
            due_date=_from_ts(_to_ts(new_task.due_date)),
            created_at=_from_ts(ts),
            updated_at=_from_ts(ts),
        )

    def save(self, task: Task, now: datetime) -> Optional[Task]:
        """
        Overwrite every mutable column of a live row and re-stamp updated_at.

        Returns None when no live row with that id and owner exists any more.
        created_at and owner_id are never written.
        """
        ts = _to_ts(now)
        with self._connect("save task") as conn:
            cursor = conn.execute(
                "UPDATE tasks SET title = ?, description = ?, status = ?, priority = ?, due_date = ?, updated_at = ? "
                "WHERE id = ? AND owner_id = ? AND deleted_at IS NULL",
                (
                    task.title,
                    task.description,
                    TaskStatus(task.status).value,
                    TaskPriority(task.priority).value,
                    _to_ts(task.due_date),
                    ts,
                    task.id,
                    task.owner_id,
                ),
            )
            conn.commit()
            updated = cursor.rowcount
        if updated == 0:
            return None
        logger.debug("Task saved id=%s owner=%s status=%s", task.id, task.owner_id, task.status.value)
        return replace(task, due_date=_from_ts(_to_ts(task.due_date)), updated_at=_from_ts(ts))

    def soft_delete(self, owner_id: int, task_id: int, now: datetime) -> bool:
        """Mark one live row deleted. Match and update happen in a single statement."""
        with self._connect("delete task") as conn:
            cursor = conn.execute(
                "UPDATE tasks SET deleted_at = ?, updated_at = ? "
                "WHERE id = ? AND owner_id = ? AND deleted_at IS NULL",
                (_to_ts(now), _to_ts(now), task_id, owner_id),
            )
            conn.commit()
            deleted = cursor.rowcount
        logger.debug("Task soft-delete id=%s owner=%s matched=%s", task_id, owner_id, deleted)
        return deleted > 0

    # ---- reads ----

    def get(self, owner_id: int, task_id: int) -> Optional[Task]:
        with self._connect("get task") as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND owner_id = ? AND deleted_at IS NULL",
                (task_id, owner_id),
            ).fetchone()
        return None if row is None else _row_to_task(row)

    def select(
        self,
        where: str,
        params: Sequence = (),
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Task]:
        query = f"SELECT * FROM tasks WHERE {where}"
        args = list(params)
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            args.extend([limit, offset])
        logger.debug("Executing SQL: %s params=%s", query, args)
        with self._connect("list tasks") as conn:
            rows = conn.execute(query, tuple(args)).fetchall()
        return [_row_to_task(row) for row in rows]

    def count(self, where: str, params: Sequence = ()) -> int:
        with self._connect("count tasks") as conn:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM tasks WHERE {where}", tuple(params)).fetchone()
        return int(n)


if __name__ == "__main__":
    init_db()
