"""Flattening of composite types whose fields carry ``@pgrpc_flatten``."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from pgrpc.types import PgType, TypeKind

__all__ = [
    "FlattenedField",
    "FlattenAnalysis",
    "FlattenError",
    "CyclicDependencyError",
    "InvalidFlattenTargetError",
    "TypeNotFoundError",
    "analyze_flatten_dependencies",
    "generate_field_name",
    "composite_field_expression",
    "select_clause_for_flattened_type",
]


@dataclass(frozen=True)
class FlattenedField:
    """A field of the flattened structure and where it comes from."""

    name: str
    original_path: tuple[str, ...]
    type_oid: int
    nullable: bool
    comment: str | None = None


@dataclass
class FlattenAnalysis:
    """The flattened fields of a composite type and the types it pulls in."""

    flattened_fields: list[FlattenedField]
    dependencies: set[int] = field(default_factory=set)


class FlattenError(Exception):
    """Raised when a composite type cannot be flattened."""


class CyclicDependencyError(FlattenError):
    """Raised when flattening would recurse into a type already being flattened."""

    def __init__(self, path: Sequence[str]) -> None:
        self.path = list(path)
        super().__init__(f"cyclic flatten dependency: {' -> '.join(self.path)}")


class InvalidFlattenTargetError(FlattenError):
    """Raised when something other than a composite type is flattened."""


class TypeNotFoundError(FlattenError):
    """Raised when a flattened field refers to an unknown type."""

    def __init__(self, type_oid: int) -> None:
        self.type_oid = type_oid
        super().__init__(f"type {type_oid} not found")


def generate_field_name(parent_name: str, field_name: str) -> str:
    """Name a flattened field by prefixing it with its parent's name."""
    if not parent_name:
        return field_name
    return f"{parent_name}_{field_name}"


def _flatten(
    composite_type: PgType,
    types: Mapping[int, PgType],
    visiting: set[str],
    path: list[str],
    dependencies: set[int],
) -> list[FlattenedField]:
    if composite_type.kind is not TypeKind.COMPOSITE:
        raise InvalidFlattenTargetError("Only composite types can be flattened")

    type_name = composite_type.name
    if type_name in visiting:
        raise CyclicDependencyError(path)

    visiting.add(type_name)
    path.append(type_name)
    try:
        result: list[FlattenedField] = []
        for pg_field in composite_type.fields:
            if not pg_field.flatten:
                result.append(
                    FlattenedField(
                        name=pg_field.name,
                        original_path=(pg_field.name,),
                        type_oid=pg_field.type_oid,
                        nullable=pg_field.nullable,
                        comment=pg_field.comment,
                    )
                )
                continue

            try:
                field_type = types[pg_field.type_oid]
            except KeyError:
                raise TypeNotFoundError(pg_field.type_oid) from None
            dependencies.add(pg_field.type_oid)

            result.extend(
                FlattenedField(
                    name=generate_field_name(pg_field.name, sub.name),
                    original_path=(pg_field.name, *sub.original_path),
                    type_oid=sub.type_oid,
                    nullable=pg_field.nullable or sub.nullable,
                    comment=sub.comment,
                )
                for sub in _flatten(field_type, types, visiting, path, dependencies)
            )
    finally:
        path.pop()
        visiting.discard(type_name)

    return result


def analyze_flatten_dependencies(
    composite_type: PgType, types: Mapping[int, PgType]
) -> FlattenAnalysis:
    """Expand every flattened field of ``composite_type`` recursively."""
    dependencies: set[int] = set()
    fields = _flatten(composite_type, types, set(), [], dependencies)
    return FlattenAnalysis(flattened_fields=fields, dependencies=dependencies)


def composite_field_expression(path: Sequence[str]) -> str:
    """SQL expression reaching a nested composite field, e.g. ``((a).b).c``."""
    if not path:
        raise ValueError("field path must not be empty")
    if len(path) == 1:
        return path[0]
    expression = f"({path[0]})"
    for middle in path[1:-1]:
        expression = f"({expression}.{middle})"
    return f"{expression}.{path[-1]}"


def select_clause_for_flattened_type(
    analysis: FlattenAnalysis, table_alias: str | None = None
) -> str:
    """SELECT list expanding the flattened fields, optionally alias-prefixed."""
    prefix = f"{table_alias}." if table_alias is not None else ""
    return ", ".join(
        f"{prefix}{composite_field_expression(f.original_path)} AS {f.name}"
        for f in analysis.flattened_fields
    )