# src/durable_scheduler/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler engine.

One run step (Scheduler.run) does, strictly in order:
- retention cleanup: delete tasks last attempted before the retention window,
- stall release: fail in-progress tasks older than execution budget + grace,
- claim: atomically move a batch of due pending tasks to in_progress,
- dispatch: call the registered handlers for each claimed task and record
  complete / failed.

Something external has to call run() on a cadence: cron, the CLI `run`
command, or the run_task_scheduler() polling coroutine below.
"""

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.ports import Clock, Handler, TaskRepo
from ..errors import HandlerError, PersistenceError
from .task_models import STALL_INFO, Task, TaskStatus
from .task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RunReport:
    """What a single run step did."""

    started_at: float
    finished_at: float
    deleted: int = 0
    released: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    deferred: int = 0  # claimed but not dispatched (run budget exhausted)

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)


class Scheduler:
    """
    Durable task scheduler.

    The handler registry is owned by this instance: two schedulers sharing a
    database do not share registrations, and handlers must be registered again
    after every process start.
    """

    def __init__(
        self,
        store: TaskRepo,
        *,
        max_execution_time: int = 600,
        stall_grace_period: int = 60,
        retention_window: int = 30 * 86400,
        claim_batch_size: int = 20,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self.max_execution_time = max(1, int(max_execution_time))
        self.stall_grace_period = max(0, int(stall_grace_period))
        self.retention_window = max(1, int(retention_window))
        self.claim_batch_size = max(1, int(claim_batch_size))
        self._clock = clock
        self._handlers: dict[str, list[Handler]] = {}

    @classmethod
    def from_settings(cls, settings: Any, *, store: TaskRepo | None = None, clock: Clock = time.time) -> Scheduler:
        if store is None:
            store = TaskStore(settings.db_path)
        return cls(
            store,
            max_execution_time=settings.max_execution_time,
            stall_grace_period=settings.stall_grace_period,
            retention_window=settings.retention_window,
            claim_batch_size=settings.claim_batch_size,
            clock=clock,
        )

    @property
    def store(self) -> TaskRepo:
        return self._store

    @property
    def stall_timeout(self) -> int:
        return self.max_execution_time + self.stall_grace_period

    def now(self) -> float:
        return self._clock()

    # ---- public API ----

    def create_schedule(self, name: str, when: float | datetime, args: Iterable[Any] | None = None) -> int:
        """
        Persist a pending task `name` due at `when` (epoch seconds or datetime).
        `args` is stored as given; it must be a JSON-serializable sequence.

        Raises PersistenceError when the store rejects the insert.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("task name is required")

        if isinstance(when, datetime):
            schedule_time = int(when.timestamp())
        else:
            schedule_time = int(when)

        task_id = self._store.add_task(
            name=name,
            schedule_time=schedule_time,
            args=args,
            status=TaskStatus.PENDING,
        )
        logger.debug("Scheduled task id=%s name=%s at=%s", task_id, name, schedule_time)
        return task_id

    def on(self, name: str, handler: Handler) -> None:
        """Register `handler` for tasks called `name`. Handlers run in registration order."""
        if not callable(handler):
            raise TypeError(f"handler for {name!r} must be callable, got {type(handler).__name__}")
        self._handlers.setdefault(name, []).append(handler)
        logger.debug("Handler registered name=%s handler=%r", name, handler)

    def handlers(self, name: str) -> tuple[Handler, ...]:
        return tuple(self._handlers.get(name, ()))

    def has_scheduled(self, name: str) -> bool:
        """True iff a task called `name` is pending or in progress."""
        return self._store.count_active(name) > 0

    def run(self) -> RunReport:
        """
        Execute one run step. Handler errors are recorded per task and never
        raised; store errors are logged and the remaining steps still run.
        """
        started = self._clock()

        deleted = self._retention_cleanup(started)
        released = self._release_stalled_tasks(started)
        claimed = self._claim_due_tasks(started)

        completed = 0
        failed = 0
        deferred = 0
        for idx, task in enumerate(claimed):
            elapsed = self._clock() - started
            if elapsed > self.max_execution_time:
                deferred = len(claimed) - idx
                logger.warning(
                    "Run budget exhausted after %.1fs; %s claimed task(s) left in progress",
                    elapsed,
                    deferred,
                )
                break

            if self._dispatch(task):
                completed += 1
            else:
                failed += 1

        report = RunReport(
            started_at=started,
            finished_at=self._clock(),
            deleted=deleted,
            released=released,
            claimed=len(claimed),
            completed=completed,
            failed=failed,
            deferred=deferred,
        )
        logger.info(
            "Run finished in %.2fs: claimed=%s complete=%s failed=%s deferred=%s released=%s deleted=%s",
            report.duration,
            report.claimed,
            report.completed,
            report.failed,
            report.deferred,
            report.released,
            report.deleted,
        )
        return report

    # ---- run steps ----

    def _retention_cleanup(self, now_ts: float) -> int:
        cutoff = now_ts - self.retention_window
        try:
            n = self._store.delete_attempted_before(cutoff)
        except PersistenceError:
            logger.exception("Retention cleanup failed cutoff=%s", cutoff)
            return 0
        if n:
            logger.info("Retention cleanup deleted %s task(s)", n)
        return n

    def _release_stalled_tasks(self, now_ts: float) -> int:
        cutoff = now_ts - self.stall_timeout
        try:
            n = self._store.release_stalled(cutoff, STALL_INFO)
        except PersistenceError:
            logger.exception("Stall release failed cutoff=%s", cutoff)
            return 0
        if n:
            logger.info("Released %s stalled task(s) as failed", n)
        return n

    def _claim_due_tasks(self, now_ts: float) -> list[Task]:
        try:
            return self._store.claim_due_tasks(now_ts=now_ts, limit=self.claim_batch_size)
        except PersistenceError:
            logger.exception("Claim failed now=%s", now_ts)
            return []

    def _dispatch(self, task: Task) -> bool:
        """Run every handler for `task`. Returns True when the task completed."""
        handlers = self.handlers(task.name)
        if not handlers:
            logger.warning("No handler registered for task id=%s name=%s; marking complete", task.id, task.name)

        try:
            for handler in handlers:
                handler(*task.args)
        except (Exception, SystemExit) as exc:
            err = HandlerError.from_exception(task.id, task.name, exc)
            logger.warning("Task id=%s name=%s failed: %s", task.id, task.name, err)
            logger.debug("Handler traceback task_id=%s", task.id, exc_info=exc)
            self._resolve(task, TaskStatus.FAILED, info=str(err))
            return False

        self._resolve(task, TaskStatus.COMPLETE)
        logger.debug("Task id=%s name=%s complete", task.id, task.name)
        return True

    def _resolve(self, task: Task, status: TaskStatus, *, info: str | None = None) -> None:
        try:
            changed = self._store.update_task_fields(
                task.id,
                status=status,
                info=info,
                expected=[TaskStatus.IN_PROGRESS],
            )
        except PersistenceError:
            logger.exception("Failed to mark task id=%s %s", task.id, status)
            return
        if not changed:
            logger.warning("Task id=%s was no longer in progress; %s not recorded", task.id, status)


async def run_task_scheduler(
        scheduler: Scheduler,
        *,
        interval_seconds: float = 60.0,
        max_ticks: int | None = None,
) -> None:
    """
    Simple polling trigger.

    Every interval_seconds, run one scheduler step in a worker thread so slow
    handlers never block the event loop. Unexpected errors are logged and the
    loop keeps going.

    To stop the loop, cancel the coroutine/task (or pass max_ticks).
    """
    sleep_s = max(0.01, float(interval_seconds))
    ticks = 0

    while True:
        try:
            await asyncio.to_thread(scheduler.run)
        except Exception:
            logger.exception("Scheduler run failed")

        ticks += 1
        if max_ticks is not None and ticks >= max_ticks:
            return

        await asyncio.sleep(sleep_s)
