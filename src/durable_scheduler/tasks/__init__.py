"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus)
- task_store.py: SQLite-backed storage + atomic claim
- task_scheduler.py: the run step (cleanup, stall release, claim, dispatch) and a polling trigger
- task_api.py: small high-level helpers used by callers
"""
