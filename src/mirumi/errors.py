# src/mirumi/errors.py

"""Exceptions raised by the task and timer core."""

from __future__ import annotations


class MirumiError(Exception):
    """Base exception for every failure the core reports to its caller."""


class NotConfiguredError(MirumiError):
    """No datastore has been selected yet (or the selected file is gone)."""


class NotFoundError(MirumiError):
    """Requested task, note or run does not exist."""


class ValidationError(MirumiError):
    """Input rejected before any query was executed."""


class StorageFailure(MirumiError):
    """The underlying SQLite call failed (I/O, constraint, ...)."""


class AuditWriteError(StorageFailure):
    """
    The field update committed but its audit entry could not be written.

    The task keeps the new values; only the audit trail is incomplete.
    """

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id
