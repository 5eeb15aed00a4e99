# src/durable_scheduler/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..errors import PersistenceError
from .task_models import ACTIVE_STATUSES, Task, TaskStatus

logger = logging.getLogger(__name__)

TABLE_NAME = "scheduler"


class TaskStore:
    """
    SQLite task store.

    Pure data access: no scheduling policy lives here. Every sqlite3 error is
    re-raised as PersistenceError with the driver message.

    Thread/process safety:
    - each method opens its own SQLite connection
    - claim_due_tasks runs inside a single BEGIN IMMEDIATE transaction, so two
      claimers (threads or processes) never both move the same row out of pending
    """

    def __init__(self, db_path: str | Path = "scheduler.sqlite3", *, timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = float(timeout)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except PersistenceError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _get_conn(self, *, autocommit: bool = False) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        if autocommit:
            # Explicit BEGIN/COMMIT control for the claim transaction.
            conn.isolation_level = None
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _connection(self, op: str, *, autocommit: bool = False) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn(autocommit=autocommit)
        except sqlite3.Error as e:
            raise PersistenceError(f"{op}: cannot open {self._db_path}: {e}") from e
        try:
            yield conn
        except (sqlite3.Error, OverflowError) as e:
            with contextlib.suppress(sqlite3.Error):
                conn.rollback()
            raise PersistenceError(f"{op} failed: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connection("ensure_schema") as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending','in_progress','complete','failed')),
                    schedule_time INTEGER NOT NULL,
                    args TEXT NOT NULL DEFAULT '[]',
                    last_attempt INTEGER,
                    info TEXT
                )
                """
            )
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_status_time "
                f"ON {TABLE_NAME}(status, schedule_time)"
            )
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_name_status "
                f"ON {TABLE_NAME}(task_name, status)"
            )
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_last_attempt "
                f"ON {TABLE_NAME}(last_attempt)"
            )
            conn.commit()

    @staticmethod
    def _args_to_str(args: Iterable[Any] | None) -> str:
        if args is None:
            return "[]"
        if isinstance(args, (str, bytes, dict)):
            raise PersistenceError(f"args must be a sequence, got {type(args).__name__}")
        try:
            return json.dumps(list(args), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"args are not JSON-serializable: {e}") from e

    @staticmethod
    def _str_to_args(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Stored args are not valid JSON; using []. raw=%r", s[:200])
            return []
        return val if isinstance(val, list) else [val]

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            name=str(row["task_name"]),
            status=TaskStatus(row["status"]),
            schedule_time=int(row["schedule_time"]),
            args=self._str_to_args(row["args"]),
            last_attempt=int(row["last_attempt"]) if row["last_attempt"] is not None else None,
            info=row["info"],
        )

    @staticmethod
    def _placeholders(n: int) -> str:
        return ",".join("?" for _ in range(n))

    # ---- public API ----

    def count_tasks(self) -> int:
        with self._connection("count_tasks") as conn:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()
            return int(n)

    def count_active(self, name: str) -> int:
        """Number of tasks called `name` that are pending or in progress."""
        marks = ",".join("?" * len(ACTIVE_STATUSES))
        with self._connection("count_active") as conn:
            (n,) = conn.execute(
                f"""
                SELECT COUNT(*)
                FROM {TABLE_NAME}
                WHERE task_name = ?
                  AND status IN ({marks})
                """,
                (name, *(s.value for s in ACTIVE_STATUSES)),
            ).fetchone()
            return int(n)

    def add_task(
        self,
        *,
        name: str,
        schedule_time: int,
        args: Iterable[Any] | None = None,
        status: TaskStatus = TaskStatus.PENDING,
    ) -> int:
        args_str = self._args_to_str(args)

        with self._connection("add_task") as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {TABLE_NAME}(task_name, status, schedule_time, args)
                VALUES (?, ?, ?, ?)
                """,
                (name, TaskStatus(status).value, int(schedule_time), args_str),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise PersistenceError("SQLite did not return lastrowid for task insert")
            task_id = int(rowid)
            logger.debug(
                "Task added id=%s name=%s status=%s schedule_time=%s",
                task_id,
                name,
                status,
                schedule_time,
            )
            return task_id

    def get_task(self, task_id: int) -> Task | None:
        with self._connection("get_task") as conn:
            row = conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE id = ?", (int(task_id),)
            ).fetchone()
            return self._row_to_task(row) if row else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        name: str | None = None,
        due_before: float | None = None,
        attempted_before: float | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """
        Filtered listing, earliest schedule_time first (ties by id).

        - due_before:       schedule_time <= due_before
        - attempted_before: last_attempt < attempted_before (never-attempted rows excluded)
        """
        where: list[str] = []
        params: list[Any] = []

        if status is not None:
            where.append("status = ?")
            params.append(TaskStatus(status).value)

        if name is not None:
            where.append("task_name = ?")
            params.append(name)

        if due_before is not None:
            where.append("schedule_time <= ?")
            params.append(float(due_before))

        if attempted_before is not None:
            where.append("last_attempt < ?")
            params.append(float(attempted_before))

        sql = f"SELECT * FROM {TABLE_NAME}"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY schedule_time ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))

        with self._connection("list_tasks") as conn:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]

    def claim_due_tasks(self, *, now_ts: float, limit: int = 20) -> list[Task]:
        """
        Atomically claim up to `limit` due pending tasks.

        Inside one write transaction:
          SELECT pending rows with schedule_time <= now (earliest first)
          UPDATE them to in_progress, last_attempt = now, guarded by status = 'pending'

        Returns only the rows this caller transitioned, in dispatch order.
        """
        if limit <= 0:
            return []

        now_i = int(now_ts)
        with self._connection("claim_due_tasks", autocommit=True) as conn:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                f"""
                SELECT id
                FROM {TABLE_NAME}
                WHERE status = 'pending'
                  AND schedule_time <= ?
                ORDER BY schedule_time ASC, id ASC
                    LIMIT ?
                """,
                (float(now_ts), int(limit)),
            ).fetchall()
            ids = [int(r["id"]) for r in rows]
            if not ids:
                conn.execute("COMMIT")
                return []

            ph = self._placeholders(len(ids))
            cur = conn.execute(
                f"""
                UPDATE {TABLE_NAME}
                SET status = 'in_progress', last_attempt = ?
                WHERE status = 'pending'
                  AND id IN ({ph})
                """,
                (now_i, *ids),
            )
            if cur.rowcount != len(ids):
                logger.warning("Claim updated %s of %s selected rows", cur.rowcount, len(ids))

            claimed = conn.execute(
                f"""
                SELECT *
                FROM {TABLE_NAME}
                WHERE id IN ({ph})
                  AND status = 'in_progress'
                  AND last_attempt = ?
                ORDER BY schedule_time ASC, id ASC
                """,
                (*ids, now_i),
            ).fetchall()
            conn.execute("COMMIT")

        tasks = [self._row_to_task(r) for r in claimed]
        logger.debug("Claimed %s task(s): %s", len(tasks), [t.id for t in tasks])
        return tasks

    def update_status(
        self,
        task_ids: Iterable[int],
        status: TaskStatus,
        *,
        last_attempt: float | None = None,
    ) -> int:
        """Bulk status change. Returns the number of rows updated."""
        ids = [int(x) for x in task_ids]
        if not ids:
            return 0

        fields = ["status = ?"]
        params: list[Any] = [TaskStatus(status).value]
        if last_attempt is not None:
            fields.append("last_attempt = ?")
            params.append(int(last_attempt))

        ph = self._placeholders(len(ids))
        with self._connection("update_status") as conn:
            cur = conn.execute(
                f"UPDATE {TABLE_NAME} SET {', '.join(fields)} WHERE id IN ({ph})",
                (*params, *ids),
            )
            conn.commit()
            return int(cur.rowcount)

    def update_task_fields(
        self,
        task_id: int,
        *,
        status: TaskStatus | None = None,
        info: str | None = None,
        last_attempt: float | None = None,
        expected: Iterable[TaskStatus] | None = None,
    ) -> bool:
        """
        Update selected columns of one task.

        With `expected`, the update only applies while the row is in one of
        those statuses. Returns True if a row changed.
        """
        fields: list[str] = []
        params: list[Any] = []

        if status is not None:
            fields.append("status = ?")
            params.append(TaskStatus(status).value)

        if info is not None:
            fields.append("info = ?")
            params.append(info)

        if last_attempt is not None:
            fields.append("last_attempt = ?")
            params.append(int(last_attempt))

        if not fields:
            return False

        sql = f"UPDATE {TABLE_NAME} SET {', '.join(fields)} WHERE id = ?"
        params.append(int(task_id))

        if expected is not None:
            exp = [TaskStatus(e).value for e in expected]
            if not exp:
                return False
            sql += f" AND status IN ({self._placeholders(len(exp))})"
            params.extend(exp)

        with self._connection("update_task_fields") as conn:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.rowcount == 1

    def release_stalled(self, cutoff_ts: float, info: str) -> int:
        """Fail in-progress tasks whose last_attempt is older than cutoff_ts."""
        with self._connection("release_stalled") as conn:
            cur = conn.execute(
                f"""
                UPDATE {TABLE_NAME}
                SET status = 'failed', info = ?
                WHERE status = 'in_progress'
                  AND last_attempt < ?
                """,
                (info, float(cutoff_ts)),
            )
            conn.commit()
            return int(cur.rowcount)

    def delete_attempted_before(self, cutoff_ts: float) -> int:
        """Delete every task whose last_attempt is older than cutoff_ts."""
        with self._connection("delete_attempted_before") as conn:
            cur = conn.execute(
                f"DELETE FROM {TABLE_NAME} WHERE last_attempt < ?",
                (float(cutoff_ts),),
            )
            conn.commit()
            return int(cur.rowcount)

    def delete_task(self, task_id: int) -> bool:
        with self._connection("delete_task") as conn:
            cur = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE id = ?", (int(task_id),))
            conn.commit()
            return cur.rowcount == 1
