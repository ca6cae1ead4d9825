"""Rust code generation for task payload types and the task payload enum."""

from __future__ import annotations

import logging
import textwrap
from collections.abc import Mapping, Set

from pgrpc.naming import (
    has_not_null_annotation,
    parse_bulk_not_null_columns,
    pascal_case,
    snake_case,
)
from pgrpc.task_index import TaskField, TaskIndex, TaskQueueConfig, TaskType
from pgrpc.types import PgType

__all__ = [
    "map_postgres_type_to_rust",
    "task_field_type",
    "generate_payload_struct",
    "generate_task_variant",
    "generate_task_enum",
]

logger = logging.getLogger(__name__)

_INDENT = "    "

_FALLBACK_RUST_TYPES = {
    "bigint": "i64",
    "int8": "i64",
    "integer": "i32",
    "int4": "i32",
    "smallint": "i16",
    "int2": "i16",
    "text": "String",
    "varchar": "String",
    "char": "String",
    "boolean": "bool",
    "bool": "bool",
    "real": "f32",
    "float4": "f32",
    "double precision": "f64",
    "float8": "f64",
    "numeric": "rust_decimal::Decimal",
    "decimal": "rust_decimal::Decimal",
    "json": "serde_json::Value",
    "jsonb": "serde_json::Value",
    "uuid": "uuid::Uuid",
    "timestamp": "time::OffsetDateTime",
    "timestamptz": "time::OffsetDateTime",
    "date": "time::Date",
    "time": "time::Time",
    "bytea": "Vec<u8>",
    "inet": "std::net::IpAddr",
}


def _rust_str(value: str) -> str:
    """A Rust string literal holding ``value``."""
    escapes = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t", "\0": "\\0"}
    parts = []
    for ch in value:
        if ch in escapes:
            parts.append(escapes[ch])
        elif ord(ch) < 0x20 or ch == "\x7f":
            parts.append(f"\\u{{{ord(ch):x}}}")
        else:
            parts.append(ch)
    return '"' + "".join(parts) + '"'


def _is_nullable(field: TaskField, bulk_not_null_columns: Set[str]) -> bool:
    return not has_not_null_annotation(field.comment) and (
        field.name not in bulk_not_null_columns
    )


def _variant_name(task_type: TaskType) -> str:
    return pascal_case(task_type.task_name)


def _payload_name(task_type: TaskType) -> str:
    return f"{pascal_case(task_type.task_name)}Payload"


def map_postgres_type_to_rust(postgres_type: str) -> str:
    """Basic mapping of a PostgreSQL type name to a Rust type; unknown types map to String."""
    return _FALLBACK_RUST_TYPES.get(postgres_type, "String")


def task_field_type(
    field: TaskField,
    types: Mapping[int, PgType],
    bulk_not_null_columns: Set[str],
) -> str:
    """The Rust type of a task field, wrapped in Option unless annotated not-null."""
    pg_type = types.get(field.type_oid)
    if pg_type is not None:
        base_type = pg_type.rust_ident(types)
    else:
        base_type = map_postgres_type_to_rust(field.postgres_type)
    if _is_nullable(field, bulk_not_null_columns):
        return f"Option<{base_type}>"
    return base_type


def generate_payload_struct(
    task_type: TaskType, types: Mapping[int, PgType]
) -> tuple[str, set[str]]:
    """The payload struct for a task type and the schema modules it refers to."""
    referenced_schemas: set[str] = set()
    bulk_not_null = parse_bulk_not_null_columns(task_type.comment)
    logger.debug(
        "Generating payload struct for task '%s' with %d fields (bulk not null: %r)",
        task_type.task_name,
        len(task_type.fields),
        bulk_not_null,
    )

    field_decls = []
    for task_field in task_type.fields:
        pg_type = types.get(task_field.type_oid)
        if pg_type is not None:
            type_tokens, schemas = pg_type.rust_ident_with_schemas(types)
            referenced_schemas.update(schemas)
            if _is_nullable(task_field, bulk_not_null):
                rust_type = f"Option<{type_tokens}>"
            else:
                rust_type = type_tokens
        else:
            logger.debug(
                "Field '%s' (OID %s) not found in type index, using fallback for '%s'",
                task_field.name,
                task_field.type_oid,
                task_field.postgres_type,
            )
            rust_type = task_field_type(task_field, types, bulk_not_null)
        field_decls.append(f"pub {snake_case(task_field.name)}: {rust_type}")

    header = f"pub struct {_payload_name(task_type)}"
    if field_decls:
        body = textwrap.indent(",\n".join(field_decls) + ",", _INDENT)
        struct = f"{header} {{\n{body}\n}}"
    else:
        struct = f"{header} {{}}"
    code = f"#[derive(Debug, Clone, serde::Serialize, serde::Deserialize)]\n{struct}\n"
    return code, referenced_schemas


def generate_task_variant(task_type: TaskType) -> str:
    """The enum variant wrapping a task's payload struct."""
    return (
        f"#[serde(rename = {_rust_str(task_type.task_name)})]\n"
        f"{_variant_name(task_type)}({_payload_name(task_type)})"
    )


def _from_arm(task_type: TaskType, name_column: str, payload_column: str) -> str:
    return (
        f"{_rust_str(task_type.task_name)} => {{\n"
        f"{_INDENT}let tagged_value = serde_json::json!({{\n"
        f"{_INDENT * 2}{name_column}: task_name,\n"
        f"{_INDENT * 2}{payload_column}: payload\n"
        f"{_INDENT}}});\n"
        f"{_INDENT}serde_json::from_value(tagged_value)\n"
        "}"
    )


def generate_task_enum(
    task_index: TaskIndex,
    types: Mapping[int, PgType],
    config: TaskQueueConfig | None,
) -> tuple[str, set[str]]:
    """The payload structs and the TaskPayload enum; empty when there are no tasks."""
    referenced_schemas: set[str] = set()
    if not task_index:
        return "", referenced_schemas
    if config is None:
        raise ValueError("Task queue config should be present")

    task_types = list(task_index.values())
    payload_structs = []
    for task_type in task_types:
        struct, schemas = generate_payload_struct(task_type, types)
        referenced_schemas.update(schemas)
        payload_structs.append(struct)

    name_column = _rust_str(config.task_name_column)
    payload_column = _rust_str(config.payload_column)
    full_table_name = config.full_table_name()

    enum_doc = (
        f"Task payload enum generated from PostgreSQL composite types in the "
        f"'{config.schema}' schema.\n\n"
        f"This enum is designed to work with a task queue table '{full_table_name}' "
        f"with the following structure:\n"
        f"- {config.task_name_column}: TEXT (task type identifier)\n"
        f"- {config.payload_column}: JSONB (task payload data)\n\n"
        f"Task types are defined as composite types in the '{config.schema}' schema "
        f"and automatically\nconverted to strongly-typed Rust enum variants."
    )

    variants = textwrap.indent(
        ",\n".join(generate_task_variant(t) for t in task_types) + ",", _INDENT
    )
    name_arms = textwrap.indent(
        ",\n".join(
            f"TaskPayload::{_variant_name(t)}(_) => {_rust_str(t.task_name)}"
            for t in task_types
        )
        + ",",
        _INDENT * 3,
    )
    unknown_arm = (
        "_ => {\n"
        f"{_INDENT}let error_json = serde_json::json!({{\n"
        f'{_INDENT * 2}{name_column}: format!("__unknown_task_{{}}", task_name),\n'
        f"{_INDENT * 2}{payload_column}: {{}}\n"
        f"{_INDENT}}});\n"
        f"{_INDENT}serde_json::from_value(error_json)\n"
        "}"
    )
    from_arms = textwrap.indent(
        "\n".join(
            [*(_from_arm(t, name_column, payload_column) for t in task_types), unknown_arm]
        ),
        _INDENT * 3,
    )

    enum_code = (
        f"#[doc = {_rust_str(enum_doc)}]\n"
        "#[derive(Debug, Clone, serde::Serialize, serde::Deserialize)]\n"
        f"#[serde(tag = {name_column}, content = {payload_column})]\n"
        f"pub enum TaskPayload {{\n{variants}\n}}\n"
        "\n"
        "impl TaskPayload {\n"
        f"{_INDENT}/// Get the task type name for this payload\n"
        f"{_INDENT}pub fn task_name(&self) -> &'static str {{\n"
        f"{_INDENT * 2}match self {{\n{name_arms}\n{_INDENT * 2}}}\n"
        f"{_INDENT}}}\n"
        "\n"
        f"{_INDENT}/// Deserialize a task payload from database row data\n"
        f"{_INDENT}pub fn from_database_row(task_name: &str, payload: serde_json::Value)"
        " -> Result<Self, serde_json::Error> {\n"
        f"{_INDENT * 2}match task_name {{\n{from_arms}\n{_INDENT * 2}}}\n"
        f"{_INDENT}}}\n"
        "\n"
        f"{_INDENT}/// Get the configured task queue table name\n"
        f"{_INDENT}pub const fn table_name() -> &'static str {{\n"
        f"{_INDENT * 2}{_rust_str(full_table_name)}\n"
        f"{_INDENT}}}\n"
        "\n"
        f"{_INDENT}/// Get the configured task name column\n"
        f"{_INDENT}pub const fn task_name_column() -> &'static str {{\n"
        f"{_INDENT * 2}{name_column}\n"
        f"{_INDENT}}}\n"
        "\n"
        f"{_INDENT}/// Get the configured payload column\n"
        f"{_INDENT}pub const fn payload_column() -> &'static str {{\n"
        f"{_INDENT * 2}{payload_column}\n"
        f"{_INDENT}}}\n"
        "}\n"
    )

    return "\n".join([*payload_structs, enum_code]), referenced_schemas