"""Index of task payload types introspected from the task schema."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "TaskQueueConfig",
    "TaskField",
    "TaskType",
    "TaskIndex",
    "parse_task_field",
    "parse_task_fields",
    "build_task_index",
]

logger = logging.getLogger(__name__)

DEFAULT_TABLE_SCHEMA = "mq"
DEFAULT_TABLE_NAME = "task"

_UNSIGNED_DIGITS = re.compile(r"\+?[0-9]+")
_U32_MASK = 0xFFFFFFFF


@dataclass
class TaskQueueConfig:
    """Where task types live and how the task queue table is laid out."""

    schema: str
    table_schema: str | None = None
    table_name: str | None = None
    task_name_column: str = "task_name"
    payload_column: str = "payload"

    def full_table_name(self) -> str:
        """The schema-qualified name of the task queue table."""
        table_schema = self.table_schema or DEFAULT_TABLE_SCHEMA
        table_name = self.table_name or DEFAULT_TABLE_NAME
        return f"{table_schema}.{table_name}"


@dataclass(frozen=True)
class TaskField:
    """One field of a task payload type."""

    name: str
    type_oid: int
    postgres_type: str
    position: int
    not_null: bool
    comment: str | None = None


@dataclass
class TaskType:
    """A task payload type: a composite type in the task schema."""

    task_name: str
    type_oid: int
    fields: list[TaskField] = field(default_factory=list)
    comment: str | None = None


class TaskIndex(dict):
    """Task types keyed by task name."""

    def task_names(self) -> list[str]:
        """All task names in the index."""
        return list(self.keys())

    def collect_type_oids(self) -> list[int]:
        """Every type OID referenced by the task types and their fields."""
        oids: set[int] = set()
        for task_type in self.values():
            oids.add(task_type.type_oid)
            oids.update(f.type_oid for f in task_type.fields)
        return list(oids)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_u64(value: Any) -> int | None:
    if _is_int(value) and 0 <= value < 2**64:
        return value
    return None


def _as_i64(value: Any) -> int | None:
    if _is_int(value) and -(2**63) <= value < 2**63:
        return value
    return None


def _parse_u64(text: Any) -> int | None:
    if not isinstance(text, str) or not _UNSIGNED_DIGITS.fullmatch(text):
        return None
    return _as_u64(int(text))


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _wrap_i32(value: int) -> int:
    return ((value + 2**31) % 2**32) - 2**31


def parse_task_field(field_json: Any) -> TaskField | None:
    """Build a field from its JSON description, or None if it is malformed."""
    obj = field_json if isinstance(field_json, Mapping) else {}
    name = _as_str(obj.get("name"))
    raw_oid = obj.get("type_oid")
    type_oid = _as_u64(raw_oid)
    if type_oid is None:
        type_oid = _parse_u64(raw_oid)
    postgres_type = _as_str(obj.get("postgres_type"))
    position = _as_i64(obj.get("position"))
    not_null = _as_bool(obj.get("not_null"))

    if (
        name is None
        or type_oid is None
        or postgres_type is None
        or position is None
        or not_null is None
    ):
        logger.debug("Skipping malformed task field JSON: %r", field_json)
        return None

    logger.debug("Field '%s': %s (OID: %s)", name, postgres_type, type_oid)
    return TaskField(
        name=name,
        type_oid=type_oid & _U32_MASK,
        postgres_type=postgres_type,
        position=_wrap_i32(position),
        not_null=not_null,
        comment=_as_str(obj.get("comment")),
    )


def parse_task_fields(fields_json: Any) -> list[TaskField]:
    """Parse the JSON array of field descriptions, skipping malformed entries.

    A null value yields no fields; anything other than an array is an error.
    """
    if fields_json is None:
        return []
    if not isinstance(fields_json, list):
        raise ValueError(f"expected a JSON array of task fields, got {fields_json!r}")
    return [f for f in map(parse_task_field, fields_json) if f is not None]


def build_task_index(rows: Iterable[Mapping[str, Any]]) -> TaskIndex:
    """Build the index from rows of the task introspection query."""
    index = TaskIndex()
    for row_idx, row in enumerate(rows):
        task_name: str = row["task_name"]
        type_oid: int = row["type_oid"]
        type_comment: str | None = row["type_comment"]
        fields_json = row["fields"]
        logger.debug(
            "Row %d: task type '%s' (OID: %s) fields %r",
            row_idx,
            task_name,
            type_oid,
            fields_json,
        )
        try:
            fields = parse_task_fields(fields_json)
        except ValueError:
            logger.error(
                "Row %d: failed to parse fields JSON for task '%s'", row_idx, task_name
            )
            raise
        logger.debug("Task '%s' has %d fields after filtering", task_name, len(fields))
        index[task_name] = TaskType(
            task_name=task_name,
            type_oid=type_oid,
            fields=fields,
            comment=type_comment,
        )
    logger.debug("Found %d task types", len(index))
    return index