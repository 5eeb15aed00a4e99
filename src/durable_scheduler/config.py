# src/durable_scheduler/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Every engine constant (execution budget, grace period, retention, batch size)
  is configurable without code changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "DSCHED"

DEFAULT_MAX_EXECUTION_TIME = 600
DEFAULT_STALL_GRACE_PERIOD = 60
DEFAULT_RETENTION_DAYS = 30
DEFAULT_CLAIM_BATCH_SIZE = 20
DEFAULT_POLL_INTERVAL = 60

SECONDS_PER_DAY = 86400


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            value = default
    if minimum is not None:
        value = max(minimum, value)
    return value


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths ----
    data_dir: Path
    db_path: Path

    # ---- Engine ----
    max_execution_time: int
    stall_grace_period: int
    retention_days: int
    claim_batch_size: int

    # ---- Trigger loop ----
    poll_interval: int

    @property
    def retention_window(self) -> int:
        """Retention window in seconds."""
        return self.retention_days * SECONDS_PER_DAY

    @property
    def stall_timeout(self) -> int:
        return self.max_execution_time + self.stall_grace_period

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "durable-scheduler").strip() or "durable-scheduler"
        log_level = _env(_k("LOG_LEVEL"), "INFO").strip().upper() or "INFO"

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/durable-scheduler"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "scheduler.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            max_execution_time=_env_int(_k("MAX_EXECUTION_TIME"), DEFAULT_MAX_EXECUTION_TIME, minimum=1),
            stall_grace_period=_env_int(_k("STALL_GRACE_PERIOD"), DEFAULT_STALL_GRACE_PERIOD, minimum=0),
            retention_days=_env_int(_k("RETENTION_DAYS"), DEFAULT_RETENTION_DAYS, minimum=1),
            claim_batch_size=_env_int(_k("CLAIM_BATCH_SIZE"), DEFAULT_CLAIM_BATCH_SIZE, minimum=1),
            poll_interval=_env_int(_k("POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, minimum=1),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
