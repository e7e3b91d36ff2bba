# src/mirumi/tasks/audit.py

"""
Audit trail recorder.

Appends immutable ActionHistory rows. Only the lifecycle engine
(`task_store.TaskStore`) calls into this module; everything else reads the
trail through hydrated tasks.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from typing import TYPE_CHECKING, Any

from .task_models import ActionHistory, ActionKind

if TYPE_CHECKING:
    from ..db.gateway import Database

logger = logging.getLogger(__name__)

ACTION_TABLE = "tbl_task_action_history"


def _metadata_to_str(metadata: dict[str, Any] | None) -> str | None:
    if metadata is None:
        return None
    return json.dumps(metadata, ensure_ascii=False, sort_keys=True)


def _str_to_metadata(s: str | None) -> dict[str, Any] | None:
    if not s:
        return None
    try:
        val = json.loads(s)
    except ValueError:
        logger.warning("Unreadable audit metadata kept as raw text: %r", s)
        return {"raw": s}
    return val if isinstance(val, dict) else {"value": val}


def record_action(
    db: Database,
    task_id: str,
    kind: ActionKind,
    *,
    previous_status: str | None = None,
    new_status: str | None = None,
    metadata: dict[str, Any] | None = None,
    conn: sqlite3.Connection | None = None,
) -> str:
    """Append one audit entry and return its id."""
    action_id = str(uuid.uuid4())
    db.insert(
        ACTION_TABLE,
        {
            "id": action_id,
            "task_id": task_id,
            "action_type": ActionKind(kind).value,
            "previous_status": previous_status,
            "new_status": new_status,
            "metadata": _metadata_to_str(metadata),
            "created_at": time.time(),
        },
        conn=conn,
    )
    logger.debug(
        "Audit task=%s action=%s %s->%s",
        task_id,
        kind,
        previous_status,
        new_status,
    )
    return action_id


def row_to_action(row: sqlite3.Row) -> ActionHistory:
    return ActionHistory(
        id=str(row["id"]),
        task_id=str(row["task_id"]),
        action_type=ActionKind.from_db(row["action_type"]),
        previous_status=row["previous_status"],
        new_status=row["new_status"],
        metadata=_str_to_metadata(row["metadata"]),
        created_at=float(row["created_at"] or 0.0),
    )
