"""PostgreSQL type model and mapping to Rust type identifiers."""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pgrpc.naming import (
    has_flatten_annotation,
    has_not_null_annotation,
    parse_bulk_not_null_columns,
    pascal_case,
    snake_case,
)

__all__ = [
    "TypeKind",
    "UnsupportedTypeError",
    "DomainConstraint",
    "PgField",
    "PgType",
    "pg_type_from_row",
]

logger = logging.getLogger(__name__)

PG_CATALOG = "pg_catalog"


class TypeKind(enum.Enum):
    """The kind of a PostgreSQL type; built-in kinds carry their type name."""

    ARRAY = "array"
    COMPOSITE = "composite"
    ENUM = "enum"
    DOMAIN = "domain"
    CUSTOM = "custom"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    NUMERIC = "numeric"
    BOOL = "bool"
    TEXT = "text"
    TIMESTAMPTZ = "timestamptz"
    DATE = "date"
    INET = "inet"
    VOID = "void"
    BYTEA = "bytea"
    JSON = "json"
    RECORD = "record"
    GEOGRAPHY = "geography"
    GEOMETRY = "geometry"

    @property
    def is_user_defined(self) -> bool:
        """Whether types of this kind carry their own schema and name."""
        return self in _USER_DEFINED


_USER_DEFINED = frozenset(
    {TypeKind.COMPOSITE, TypeKind.ENUM, TypeKind.DOMAIN, TypeKind.CUSTOM}
)

_QUALIFIED = frozenset({TypeKind.COMPOSITE, TypeKind.ENUM, TypeKind.DOMAIN})

_BUILTIN_RUST = {
    TypeKind.INT16: "i16",
    TypeKind.INT32: "i32",
    TypeKind.INT64: "i64",
    TypeKind.NUMERIC: "rust_decimal::Decimal",
    TypeKind.BOOL: "bool",
    TypeKind.TEXT: "String",
    TypeKind.TIMESTAMPTZ: "time::OffsetDateTime",
    TypeKind.DATE: "time::Date",
    TypeKind.INET: "std::net::IpAddr",
    TypeKind.BYTEA: "Vec<u8>",
    TypeKind.JSON: "serde_json::Value",
    TypeKind.VOID: "()",
    TypeKind.RECORD: "tokio_postgres::Row",
    TypeKind.GEOGRAPHY: "postgis_butmaintained::ewkb::Geometry",
    TypeKind.GEOMETRY: "postgis_butmaintained::ewkb::Geometry",
}

# Base types resolved by name before the array check.
_BASE_BEFORE_ARRAY = {
    "int2": TypeKind.INT16,
    "int4": TypeKind.INT32,
    "int8": TypeKind.INT64,
    "oid": TypeKind.INT32,
    "numeric": TypeKind.NUMERIC,
    "text": TypeKind.TEXT,
    "citext": TypeKind.TEXT,
    "char": TypeKind.TEXT,
    "bpchar": TypeKind.TEXT,
    "varchar": TypeKind.TEXT,
    "bool": TypeKind.BOOL,
    "timestamptz": TypeKind.TIMESTAMPTZ,
    "timestamp": TypeKind.TIMESTAMPTZ,
    "time": TypeKind.TEXT,
    "timetz": TypeKind.TEXT,
    "uuid": TypeKind.TEXT,
    "float4": TypeKind.NUMERIC,
    "real": TypeKind.NUMERIC,
    "float8": TypeKind.NUMERIC,
    "double precision": TypeKind.NUMERIC,
}

# Base types resolved by name only when the type is not an array.
_BASE_AFTER_ARRAY = {
    "date": TypeKind.DATE,
    "inet": TypeKind.INET,
    "bytea": TypeKind.BYTEA,
    "ltree": TypeKind.TEXT,
    "json": TypeKind.JSON,
    "jsonb": TypeKind.JSON,
    "geography": TypeKind.GEOGRAPHY,
    "geometry": TypeKind.GEOMETRY,
}

_PSEUDO = {
    "void": TypeKind.VOID,
    "trigger": TypeKind.VOID,
    "record": TypeKind.RECORD,
}


class UnsupportedTypeError(ValueError):
    """Raised for a PostgreSQL type that cannot be mapped."""


@dataclass(frozen=True)
class DomainConstraint:
    """A named CHECK constraint on a domain."""

    name: str
    definition: str


@dataclass
class PgField:
    """A field of a composite type."""

    name: str
    type_oid: int
    nullable: bool = True
    comment: str | None = None
    flatten: bool = False


@dataclass
class PgType:
    """A PostgreSQL type as introspected from the catalog."""

    kind: TypeKind
    schema: str = PG_CATALOG
    name: str = ""
    fields: list[PgField] = field(default_factory=list)
    variants: list[str] = field(default_factory=list)
    constraints: list[DomainConstraint] = field(default_factory=list)
    element_type_oid: int | None = None
    base_type_oid: int | None = None
    comment: str | None = None
    relkind: str | None = None
    view_definition: str | None = None

    def __post_init__(self) -> None:
        if not self.kind.is_user_defined:
            self.name = self.kind.value
            if self.kind is not TypeKind.ARRAY:
                self.schema = PG_CATALOG

    def _element(self, types: Mapping[int, PgType]) -> PgType:
        try:
            return types[self.element_type_oid]  # type: ignore[index]
        except KeyError:
            raise KeyError(
                f"array element type {self.element_type_oid} not found"
            ) from None

    def _qualified_parts(self) -> tuple[str, str]:
        return snake_case(self.schema), pascal_case(self.name)

    def rust_ident(self, types: Mapping[int, PgType]) -> str:
        """The Rust type for this type, user types qualified with ``super::``."""
        if self.kind in _QUALIFIED:
            schema_mod, type_name = self._qualified_parts()
            return f"super::{schema_mod}::{type_name}"
        if self.kind is TypeKind.ARRAY:
            return f"Vec<{self._element(types).rust_ident(types)}>"
        try:
            return _BUILTIN_RUST[self.kind]
        except KeyError:
            raise UnsupportedTypeError(f"unknown type {self!r}") from None

    def rust_ident_with_schemas(
        self, types: Mapping[int, PgType]
    ) -> tuple[str, set[str]]:
        """The schema-qualified Rust type and the schema modules it refers to."""
        if self.kind in _QUALIFIED:
            schema_mod, type_name = self._qualified_parts()
            return f"{schema_mod}::{type_name}", {schema_mod}
        if self.kind is TypeKind.ARRAY:
            inner, schemas = self._element(types).rust_ident_with_schemas(types)
            return f"Vec<{inner}>", set(schemas)
        try:
            return _BUILTIN_RUST[self.kind], set()
        except KeyError:
            raise UnsupportedTypeError(f"unknown type {self!r}") from None


def _as_char(value: Any) -> str | None:
    """Decode a PostgreSQL ``"char"`` value delivered as an int or a string."""
    if value is None:
        return None
    if isinstance(value, int):
        return chr(value & 0xFF)
    if isinstance(value, bytes):
        return value.decode("latin-1")[:1] or None
    return str(value)[:1] or None


def _base_type(row: Mapping[str, Any], name: str, schema: str) -> PgType:
    if name in _BASE_BEFORE_ARRAY:
        return PgType(_BASE_BEFORE_ARRAY[name])
    element_oid = row.get("array_element_type") or 0
    if element_oid != 0:
        return PgType(TypeKind.ARRAY, schema=schema, element_type_oid=element_oid)
    if name in _BASE_AFTER_ARRAY:
        return PgType(_BASE_AFTER_ARRAY[name])
    raise UnsupportedTypeError(f"base type not implemented {name}")


def _composite_type(
    row: Mapping[str, Any], name: str, schema: str, comment: str | None
) -> PgType:
    relkind = _as_char(row.get("relkind"))
    view_definition = row.get("view_definition")
    field_names = row.get("composite_field_names")

    if not field_names:
        logger.warning(
            "Composite type '%s.%s' (OID: %s) has no fields defined.",
            schema,
            name,
            row.get("oid"),
        )
        if schema == "tasks":
            logger.warning(
                "This appears to be a task type. Make sure the corresponding "
                "payload type is defined in the database, e.g. "
                "CREATE TYPE tasks.%s AS (field1 type1, field2 type2, ...);",
                name,
            )
        fields: list[PgField] = []
    else:
        bulk_not_null = parse_bulk_not_null_columns(comment)
        fields = [
            PgField(
                name=field_name,
                type_oid=type_oid,
                nullable=bool(nullable)
                and not has_not_null_annotation(field_comment)
                and field_name not in bulk_not_null,
                comment=field_comment,
                flatten=has_flatten_annotation(field_comment),
            )
            for field_name, type_oid, nullable, field_comment in zip(
                field_names,
                row["composite_field_types"],
                row["composite_field_nullables"],
                row["composite_field_comments"],
            )
        ]

    return PgType(
        TypeKind.COMPOSITE,
        schema=schema,
        name=name,
        fields=fields,
        comment=comment,
        relkind=relkind,
        view_definition=view_definition,
    )


def _pseudo_type(row: Mapping[str, Any], name: str, schema: str) -> PgType:
    if name in _PSEUDO:
        return PgType(_PSEUDO[name])
    logger.error(
        "Unhandled pseudo type encountered: name=%s schema=%s oid=%s",
        name,
        schema,
        row.get("oid"),
    )
    raise UnsupportedTypeError(f"pseudo type not implemented: {name}")


def pg_type_from_row(row: Mapping[str, Any]) -> PgType:
    """Build a type from one row of the type introspection query."""
    name: str = row["typname"]
    comment: str | None = row.get("type_comment")
    schema: str = row["schema_name"]
    typtype = _as_char(row["typtype"])

    if typtype == "b":
        return _base_type(row, name, schema)
    if typtype == "c":
        return _composite_type(row, name, schema, comment)
    if typtype == "d":
        constraints = [
            DomainConstraint(constraint_name, definition)
            for constraint_name, definition in zip(
                row.get("domain_constraint_names") or [],
                row.get("domain_composite_constraints") or [],
            )
        ]
        return PgType(
            TypeKind.DOMAIN,
            schema=schema,
            name=name,
            comment=comment,
            base_type_oid=row["domain_base_type"],
            constraints=constraints,
        )
    if typtype == "e":
        return PgType(
            TypeKind.ENUM,
            schema=schema,
            name=name,
            comment=comment,
            variants=list(row["enum_variants"]),
        )
    if typtype == "p":
        return _pseudo_type(row, name, schema)
    raise UnsupportedTypeError(f"ttype not implemented {typtype}")