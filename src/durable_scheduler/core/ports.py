# src/durable_scheduler/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the scheduler engine.

The engine depends on a Protocol instead of the concrete SQLite store.
This keeps the storage swappable and lets tests drive the engine with an
in-memory repository.
"""

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from ..tasks.task_models import Task, TaskStatus

Handler = Callable[..., Any]
# Called with the task's args as positional arguments; the return value is ignored.

Clock = Callable[[], float]


class TaskRepo(Protocol):
    # Creation / lookup
    def add_task(
            self,
            *,
            name: str,
            schedule_time: int,
            args: Iterable[Any] | None = None,
            status: TaskStatus = TaskStatus.PENDING,
    ) -> int: ...

    def get_task(self, task_id: int) -> Task | None: ...
    def count_active(self, name: str) -> int: ...

    def list_tasks(
            self,
            *,
            status: TaskStatus | None = None,
            name: str | None = None,
            due_before: float | None = None,
            attempted_before: float | None = None,
            limit: int | None = None,
    ) -> list[Task]: ...

    # Run-step API
    def delete_attempted_before(self, cutoff_ts: float) -> int: ...
    def release_stalled(self, cutoff_ts: float, info: str) -> int: ...
    def claim_due_tasks(self, *, now_ts: float, limit: int = 20) -> list[Task]: ...

    def update_status(
            self,
            task_ids: Iterable[int],
            status: TaskStatus,
            *,
            last_attempt: float | None = None,
    ) -> int: ...

    def update_task_fields(
            self,
            task_id: int,
            *,
            status: TaskStatus | None = None,
            info: str | None = None,
            last_attempt: float | None = None,
            expected: Iterable[TaskStatus] | None = None,
    ) -> bool: ...
