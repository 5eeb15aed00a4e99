# src/durable_scheduler/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .task_models import Task, TaskStatus
from .task_scheduler import Scheduler

logger = logging.getLogger(__name__)


def schedule_in(
    scheduler: Scheduler,
    name: str,
    *,
    delay_seconds: float = 0,
    args: Iterable[Any] | None = None,
) -> int:
    """
    Convenience helper: schedule `name` to run `delay_seconds` from now.
    Negative delays are treated as "now".
    """
    when = scheduler.now() + max(0.0, float(delay_seconds))
    return scheduler.create_schedule(name, when, args)


def schedule_once(
    scheduler: Scheduler,
    name: str,
    when: float | datetime,
    args: Iterable[Any] | None = None,
) -> int | None:
    """
    Create the task only if nothing called `name` is already pending or in progress.

    Returns the new task id, or None when an active task already exists.
    Check-then-insert is not atomic; two concurrent callers may both insert.
    """
    if scheduler.has_scheduled(name):
        logger.debug("Task name=%s already scheduled; skipping", name)
        return None
    return scheduler.create_schedule(name, when, args)


def failed_tasks(scheduler: Scheduler, *, name: str | None = None, limit: int = 50) -> list[Task]:
    """Pull-based failure discovery: failed tasks, earliest schedule_time first."""
    return scheduler.store.list_tasks(status=TaskStatus.FAILED, name=name, limit=limit)
