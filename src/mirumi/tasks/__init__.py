"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, ActionKind, ...)
- patcher.py: sparse patch -> UPDATE assignments
- audit.py: append-only action history
- task_store.py: lifecycle engine (create/get/list/apply_update/delete, children)
- session_recorder.py: run history and time extensions
- task_api.py: focus flows pairing the store, sessions and the timer
"""
