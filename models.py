from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Sort rank used by listings: higher comes first.
PRIORITY_WEIGHT = {
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}

TITLE_MAX_LENGTH = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---- identity ----


@dataclass(frozen=True)
class Principal:
    """The authenticated caller. Built only from a verified token."""

    user_id: int


# ---- soft-delete lifecycle ----


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime


ACTIVE = Active()


# ---- partial update ----


class _Unset:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class TaskPatch:
    """
    Field-presence aware update.

    Each field is either UNSET (leave unchanged), None (explicit null) or a
    value. Only description and due_date may be explicitly nulled.
    """

    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET
    priority: Any = UNSET
    due_date: Any = UNSET

    def provided(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in (
                ("title", self.title),
                ("description", self.description),
                ("status", self.status),
                ("priority", self.priority),
                ("due_date", self.due_date),
            )
            if value is not UNSET
        }


# ---- task entity ----


@dataclass(frozen=True)
class NewTask:
    owner_id: int
    title: str
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PENDING


@dataclass(frozen=True)
class Task:
    id: int
    owner_id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    lifecycle: Active | Deleted = field(default=ACTIVE)

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.lifecycle, Deleted)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def priority_weight(self) -> int:
        return PRIORITY_WEIGHT.get(self.priority, PRIORITY_WEIGHT[TaskPriority.MEDIUM])

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if self.due_date is None or self.is_completed:
            return False
        return as_utc(self.due_date) < as_utc(now or utcnow())

    def with_status(self, status: TaskStatus, now: datetime) -> "Task":
        return replace(self, status=TaskStatus(status), updated_at=now)

    def apply(self, patch: TaskPatch, now: datetime) -> "Task":
        changes = patch.provided()
        if changes.get("due_date") is not None:
            changes["due_date"] = as_utc(changes["due_date"])
        return replace(self, **changes, updated_at=now)


# ---- request bodies ----


def _strip_title(value):
    # Stored trimmed; length limits apply to the trimmed text.
    if isinstance(value, str):
        return value.strip()
    return value


def _check_due_date(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return value
    # Must survive UTC conversion and the epoch-seconds column.
    try:
        value = as_utc(value)
        value.timestamp()
    except (OverflowError, ValueError, OSError) as exc:
        raise ValueError("dueDate is out of range") from exc
    return value


class TaskCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")

    @field_validator("title", mode="before")
    @classmethod
    def trim_title(cls, value):
        return _strip_title(value)

    @field_validator("due_date")
    @classmethod
    def due_date_in_range(cls, value):
        return _check_due_date(value)


class TaskUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")

    @field_validator("title", mode="before")
    @classmethod
    def trim_title(cls, value):
        return _strip_title(value)

    @field_validator("due_date")
    @classmethod
    def due_date_in_range(cls, value):
        return _check_due_date(value)

    @model_validator(mode="after")
    def no_null_for_required(self):
        for name in ("title", "status", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def to_patch(self) -> TaskPatch:
        # Absent fields stay UNSET so they are left unchanged.
        return TaskPatch(**{name: getattr(self, name) for name in self.model_fields_set})


# ---- responses ----


class TaskOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    owner_id: int = Field(alias="ownerId")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    is_overdue: bool = Field(default=False, alias="isOverdue")

    @classmethod
    def from_task(cls, task: Task, now: Optional[datetime] = None) -> "TaskOut":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            due_date=task.due_date,
            owner_id=task.owner_id,
            created_at=task.created_at,
            updated_at=task.updated_at,
            is_overdue=task.is_overdue(now),
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TaskPage(BaseModel):
    tasks: list[TaskOut]
    pagination: Pagination


class TaskStats(BaseModel):
    total: int = 0
    pending: int = 0
    completed: int = 0
    overdue: int = 0
