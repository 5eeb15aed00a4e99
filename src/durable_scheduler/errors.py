# src/durable_scheduler/errors.py

"""Exception taxonomy surfaced by the store and the scheduler engine."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for all durable_scheduler errors."""


class PersistenceError(SchedulerError):
    """
    The task store could not complete a read or write.

    Covers connection loss, constraint violations and args that cannot be
    JSON-encoded. The driver exception (if any) is chained as __cause__.
    """


class HandlerError(SchedulerError):
    """A registered handler raised while a task was being dispatched."""

    def __init__(self, task_id: int, task_name: str, message: str) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.task_name = task_name

    @classmethod
    def from_exception(cls, task_id: int, task_name: str, exc: BaseException) -> HandlerError:
        message = str(exc).strip() or type(exc).__name__
        err = cls(task_id, task_name, message)
        err.__cause__ = exc
        return err
