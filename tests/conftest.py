# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from durable_scheduler.tasks.task_scheduler import Scheduler
from durable_scheduler.tasks.task_store import TaskStore

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with Scheduler.from_settings.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        db_path=tmp_path / "scheduler.sqlite3",
        max_execution_time=600,
        stall_grace_period=60,
        retention_window=30 * 86400,
        claim_batch_size=20,
        poll_interval=1,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler(settings: SimpleNamespace, store: TaskStore, clock: FakeClock) -> Scheduler:
    """
    Scheduler on a real SQLite store with a manually driven clock.

    NOTE: the store is real because claim atomicity is part of what we test.
    """
    return Scheduler.from_settings(settings, store=store, clock=clock)
