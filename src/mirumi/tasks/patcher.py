# src/mirumi/tasks/patcher.py

"""
Partial-update patcher.

Turns a sparse patch (dataclass whose fields default to UNSET) into the
`col = ?` assignment list and parameters for one UPDATE statement:

- UNSET          -> column is not mentioned at all,
- None           -> column set to NULL (nullable columns only),
- anything else  -> encoded and written as given.

`updated_at` is always appended, even if nothing else changed. Whether a
change is worth an audit entry is decided by the caller, not here.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any

from ..errors import ValidationError
from .task_models import UNSET, TaskPriority, TaskStatus

Encoder = Callable[[Any], Any]


def _text(v: Any) -> str:
    if not isinstance(v, str):
        raise ValidationError(f"expected text, got {type(v).__name__}")
    return v


def _non_empty_text(v: Any) -> str:
    s = _text(v).strip()
    if not s:
        raise ValidationError("value must not be empty")
    return s


def _non_negative_int(v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise ValidationError(f"expected integer, got {type(v).__name__}")
    if v < 0:
        raise ValidationError(f"value must be >= 0, got {v}")
    return v


def _flag(v: Any) -> int:
    if not isinstance(v, bool):
        raise ValidationError(f"expected bool, got {type(v).__name__}")
    return 1 if v else 0


def _timestamp(v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValidationError(f"expected epoch seconds, got {type(v).__name__}")
    return float(v)


def _enum(enum_cls: type[Enum]) -> Encoder:
    def encode(v: Any) -> str:
        try:
            return enum_cls(v).value
        except ValueError as e:
            raise ValidationError(f"invalid {enum_cls.__name__}: {v!r}") from e

    return encode


@dataclass(frozen=True, slots=True)
class FieldSpec:
    column: str
    nullable: bool
    encode: Encoder


TASK_FIELDS: Mapping[str, FieldSpec] = {
    "title": FieldSpec("title", False, _non_empty_text),
    "description": FieldSpec("description", True, _text),
    "url": FieldSpec("url", True, _text),
    "external_message_ref": FieldSpec("external_message_ref", True, _text),
    "priority": FieldSpec("priority", False, _enum(TaskPriority)),
    "status": FieldSpec("status", False, _enum(TaskStatus)),
    "total_time_spent": FieldSpec("total_time_spent", False, _non_negative_int),
    "expected_duration": FieldSpec("expected_duration", True, _non_negative_int),
    "remaining_time_seconds": FieldSpec("remaining_time_seconds", True, _non_negative_int),
    "target_date": FieldSpec("target_date", True, _text),
    "is_important": FieldSpec("is_important", False, _flag),
    "completed_at": FieldSpec("completed_at", True, _timestamp),
    "last_paused_at": FieldSpec("last_paused_at", True, _timestamp),
    "last_run_at": FieldSpec("last_run_at", True, _timestamp),
}

NOTE_FIELDS: Mapping[str, FieldSpec] = {
    "title": FieldSpec("title", False, _non_empty_text),
    "content": FieldSpec("content", False, _text),
}


def present_fields(patch: Any) -> dict[str, Any]:
    """Fields of a patch dataclass that are not UNSET, in declaration order."""
    out: dict[str, Any] = {}
    for f in fields(patch):
        value = getattr(patch, f.name)
        if value is not UNSET:
            out[f.name] = value
    return out


@dataclass(frozen=True, slots=True)
class Assignments:
    columns: list[str]
    params: list[Any]

    @property
    def sql(self) -> list[str]:
        return [f"{c} = ?" for c in self.columns]


def build_assignments(
    patch: Any,
    specs: Mapping[str, FieldSpec],
    *,
    now_ts: float | None = None,
) -> Assignments:
    """
    Validate and encode every present field of `patch`.

    Raises ValidationError before anything is written if a field is unknown,
    a non-nullable field is None, or a value has the wrong shape.
    """
    columns: list[str] = []
    params: list[Any] = []

    for name, value in present_fields(patch).items():
        spec = specs.get(name)
        if spec is None:
            raise ValidationError(f"field is not patchable: {name}")
        if value is None:
            if not spec.nullable:
                raise ValidationError(f"field {name} cannot be cleared")
            encoded = None
        else:
            encoded = spec.encode(value)
        columns.append(spec.column)
        params.append(encoded)

    columns.append("updated_at")
    params.append(time.time() if now_ts is None else float(now_ts))
    return Assignments(columns=columns, params=params)
