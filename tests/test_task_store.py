# tests/test_task_store.py

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from durable_scheduler.errors import PersistenceError
from durable_scheduler.tasks.task_models import TaskStatus
from durable_scheduler.tasks.task_store import TaskStore

NOW = 1_700_000_000


def test_add_and_get_task_round_trips_args(store: TaskStore) -> None:
    args = ["a@example.com", {"subject": "hi", "cc": ["b", "c"]}, 3, None, [1, [2, 3]], "ü"]
    task_id = store.add_task(name="send-email", schedule_time=NOW, args=args)
    assert task_id > 0

    task = store.get_task(task_id)
    assert task is not None
    assert task.name == "send-email"
    assert task.status == TaskStatus.PENDING
    assert task.schedule_time == NOW
    assert task.args == args
    assert task.last_attempt is None
    assert task.info is None


def test_get_missing_task_returns_none(store: TaskStore) -> None:
    assert store.get_task(12345) is None


def test_ids_increase_with_creation(store: TaskStore) -> None:
    ids = [store.add_task(name="t", schedule_time=NOW) for _ in range(3)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 3


def test_unserializable_args_raise_persistence_error(store: TaskStore) -> None:
    with pytest.raises(PersistenceError):
        store.add_task(name="bad", schedule_time=NOW, args=[object()])
    with pytest.raises(PersistenceError):
        store.add_task(name="bad", schedule_time=NOW, args="not-a-list")
    assert store.count_tasks() == 0


def test_unopenable_database_raises_persistence_error(tmp_path: Path) -> None:
    # A directory cannot be opened as a SQLite database file.
    with pytest.raises(PersistenceError):
        TaskStore(tmp_path)


def test_list_tasks_filters_and_orders(store: TaskStore) -> None:
    late = store.add_task(name="a", schedule_time=NOW + 100)
    early = store.add_task(name="a", schedule_time=NOW - 100)
    other = store.add_task(name="b", schedule_time=NOW - 50)
    tie = store.add_task(name="a", schedule_time=NOW - 100)

    assert [t.id for t in store.list_tasks()] == [early, tie, other, late]
    assert [t.id for t in store.list_tasks(name="a")] == [early, tie, late]
    assert [t.id for t in store.list_tasks(due_before=NOW)] == [early, tie, other]
    assert [t.id for t in store.list_tasks(limit=2)] == [early, tie]
    assert store.list_tasks(status=TaskStatus.FAILED) == []


def test_claim_due_tasks_respects_time_order_and_limit(store: TaskStore) -> None:
    future = store.add_task(name="f", schedule_time=NOW + 1)
    second = store.add_task(name="s", schedule_time=NOW - 5)
    first = store.add_task(name="s", schedule_time=NOW - 10)
    third = store.add_task(name="s", schedule_time=NOW)

    claimed = store.claim_due_tasks(now_ts=NOW, limit=2)
    assert [t.id for t in claimed] == [first, second]
    assert all(t.status == TaskStatus.IN_PROGRESS for t in claimed)
    assert all(t.last_attempt == NOW for t in claimed)

    claimed2 = store.claim_due_tasks(now_ts=NOW, limit=20)
    assert [t.id for t in claimed2] == [third]

    assert store.claim_due_tasks(now_ts=NOW, limit=20) == []
    fut = store.get_task(future)
    assert fut is not None
    assert fut.status == TaskStatus.PENDING
    assert fut.last_attempt is None


def test_claim_with_zero_limit_claims_nothing(store: TaskStore) -> None:
    store.add_task(name="x", schedule_time=NOW)
    assert store.claim_due_tasks(now_ts=NOW, limit=0) == []


def test_concurrent_claimers_never_share_a_task(settings) -> None:
    seed = TaskStore(settings.db_path)
    for i in range(60):
        seed.add_task(name="job", schedule_time=NOW - i)

    # Separate store objects: each claim uses its own connection, as separate processes would.
    stores = [TaskStore(settings.db_path) for _ in range(4)]
    barrier = threading.Barrier(len(stores))
    results: list[list[int]] = [[] for _ in stores]
    errors: list[BaseException] = []

    def worker(idx: int) -> None:
        try:
            barrier.wait()
            for _ in range(5):
                results[idx].extend(t.id for t in stores[idx].claim_due_tasks(now_ts=NOW, limit=7))
        except BaseException as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(stores))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert not errors
    all_ids = [i for r in results for i in r]
    assert len(all_ids) == len(set(all_ids)) == 60
    assert seed.list_tasks(status=TaskStatus.PENDING) == []


def test_update_task_fields_with_expected_guard(store: TaskStore) -> None:
    task_id = store.add_task(name="x", schedule_time=NOW)

    assert not store.update_task_fields(task_id, status=TaskStatus.COMPLETE, expected=[TaskStatus.IN_PROGRESS])
    assert store.get_task(task_id).status == TaskStatus.PENDING

    assert store.update_status([task_id], TaskStatus.IN_PROGRESS, last_attempt=NOW) == 1
    assert store.update_task_fields(
        task_id,
        status=TaskStatus.FAILED,
        info="boom",
        expected=[TaskStatus.IN_PROGRESS],
    )
    task = store.get_task(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.info == "boom"
    assert task.last_attempt == NOW

    assert not store.update_task_fields(task_id)


def test_update_status_bulk(store: TaskStore) -> None:
    ids = [store.add_task(name="x", schedule_time=NOW) for _ in range(3)]
    assert store.update_status([], TaskStatus.IN_PROGRESS) == 0
    assert store.update_status(ids[:2], TaskStatus.IN_PROGRESS, last_attempt=NOW) == 2
    assert [t.status for t in store.list_tasks()] == [
        TaskStatus.IN_PROGRESS,
        TaskStatus.IN_PROGRESS,
        TaskStatus.PENDING,
    ]


def test_release_stalled_only_touches_old_in_progress(store: TaskStore) -> None:
    old = store.add_task(name="x", schedule_time=NOW - 1000)
    fresh = store.add_task(name="x", schedule_time=NOW - 1000)
    done = store.add_task(name="x", schedule_time=NOW - 1000)
    store.update_status([old], TaskStatus.IN_PROGRESS, last_attempt=NOW - 700)
    store.update_status([fresh], TaskStatus.IN_PROGRESS, last_attempt=NOW - 10)
    store.update_status([done], TaskStatus.COMPLETE, last_attempt=NOW - 700)

    assert store.release_stalled(NOW - 660, "Time out.") == 1

    assert store.get_task(old).status == TaskStatus.FAILED
    assert store.get_task(old).info == "Time out."
    assert store.get_task(fresh).status == TaskStatus.IN_PROGRESS
    assert store.get_task(done).status == TaskStatus.COMPLETE
    assert store.get_task(done).info is None


def test_delete_attempted_before_keeps_never_attempted(store: TaskStore) -> None:
    ancient = store.add_task(name="x", schedule_time=NOW - 90 * 86400)
    never = store.add_task(name="x", schedule_time=NOW - 90 * 86400)
    recent = store.add_task(name="x", schedule_time=NOW)
    store.update_status([ancient], TaskStatus.COMPLETE, last_attempt=NOW - 31 * 86400)
    store.update_status([recent], TaskStatus.COMPLETE, last_attempt=NOW - 86400)

    assert store.delete_attempted_before(NOW - 30 * 86400) == 1
    assert store.get_task(ancient) is None
    assert store.get_task(never) is not None
    assert store.get_task(recent) is not None

    assert store.delete_task(recent)
    assert not store.delete_task(recent)


def test_count_active(store: TaskStore) -> None:
    a = store.add_task(name="job", schedule_time=NOW)
    b = store.add_task(name="job", schedule_time=NOW)
    store.add_task(name="other", schedule_time=NOW)
    assert store.count_active("job") == 2

    store.update_status([a], TaskStatus.IN_PROGRESS, last_attempt=NOW)
    assert store.count_active("job") == 2

    store.update_status([a], TaskStatus.COMPLETE)
    store.update_status([b], TaskStatus.FAILED)
    assert store.count_active("job") == 0
    assert store.count_active("missing") == 0


def test_schema_creation_is_idempotent(settings) -> None:
    first = TaskStore(settings.db_path)
    task_id = first.add_task(name="x", schedule_time=NOW)
    second = TaskStore(settings.db_path)
    assert second.get_task(task_id) is not None
    assert second.count_tasks() == 1


def test_out_of_range_schedule_time_raises_persistence_error(store: TaskStore) -> None:
    with pytest.raises(PersistenceError, match="add_task failed"):
        store.add_task(name="x", schedule_time=2**63)
    assert store.count_tasks() == 0
