"""
durable_scheduler: a database-backed task scheduler.

    scheduler = Scheduler(TaskStore("scheduler.sqlite3"))
    scheduler.on("send-email", send_email)
    scheduler.create_schedule("send-email", time.time() + 60, ["a@example.com"])
    ...
    scheduler.run()  # from cron, the CLI, or run_task_scheduler()
"""

from __future__ import annotations

from .errors import HandlerError, PersistenceError, SchedulerError
from .tasks.task_models import Task, TaskStatus
from .tasks.task_scheduler import RunReport, Scheduler, run_task_scheduler
from .tasks.task_store import TaskStore

__all__ = [
    "HandlerError",
    "PersistenceError",
    "RunReport",
    "Scheduler",
    "SchedulerError",
    "Task",
    "TaskStatus",
    "TaskStore",
    "run_task_scheduler",
]

__version__ = "0.1.0"
