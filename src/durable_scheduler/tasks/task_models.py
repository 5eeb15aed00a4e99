# src/durable_scheduler/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Allowed transitions:
      pending -> in_progress -> complete | failed
    Nothing ever moves back to pending.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)

STALL_INFO = "Time out."


@dataclass(slots=True)
class Task:
    id: int
    name: str
    status: TaskStatus
    schedule_time: int

    args: list[Any] = field(default_factory=list)
    last_attempt: int | None = None
    info: str | None = None
