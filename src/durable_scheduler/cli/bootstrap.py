# src/durable_scheduler/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- ensures local (gitignored) directories exist,
- wires the SQLite store into a Scheduler,
- loads the user's handler registration hook (`module:function`).
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable

from ..config import get_settings
from ..tasks.task_scheduler import Scheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)

AppHook = Callable[[Scheduler], object]


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_scheduler(*, settings=None) -> Scheduler:
    """
    Build a Scheduler backed by the SQLite store at settings.db_path.

    Keeping settings injectable makes the CLI easy to test.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)
    return Scheduler.from_settings(settings, store=TaskStore(settings.db_path))


def load_app(target: str) -> AppHook:
    """
    Resolve "package.module:function" to a callable taking the Scheduler.

    The hook registers handlers (scheduler.on(...)) before run() is invoked.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"expected 'module:function', got {target!r}")

    module = importlib.import_module(module_name)
    obj = module
    for part in attr.split("."):
        obj = getattr(obj, part)

    if not callable(obj):
        raise TypeError(f"{target} is not callable")
    logger.debug("Loaded app hook %s", target)
    return obj


def register_app(scheduler: Scheduler, target: str | None) -> None:
    if not target:
        return
    hook = load_app(target)
    hook(scheduler)
    logger.info("Handlers registered from %s", target)
