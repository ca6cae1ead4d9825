# pgrpc

Turn PostgreSQL catalog metadata into Rust source code.

`pgrpc` takes rows describing PostgreSQL types (the shape you get back from
queries over `pg_type`, `pg_attribute` and related catalogs) and produces Rust
definitions for them: structs for composite types, newtype wrappers or
constrained structs for domains, enums for PostgreSQL enums, and a tagged
`TaskPayload` enum for a task-queue schema whose task types are composite
types. All output is returned as strings.

## Installation

```
pip install .
```

Install with `pip install .[test]` to get pytest for running the test suite.

## Modules

- `pgrpc.naming`: identifier case conversion (`pascal_case`, `snake_case`,
  and `convert_case` with `CaseType.PASCAL` / `CaseType.SNAKE`) and comment
  annotations: `parse_bulk_not_null_columns`, `has_not_null_annotation`,
  `has_flatten_annotation`.
- `pgrpc.types`: the type model (`PgType`, `PgField`, `TypeKind`,
  `DomainConstraint`). `PgType.rust_ident(types)` gives the Rust type for a
  type, with user types qualified as `super::<schema>::<Name>`;
  `PgType.rust_ident_with_schemas(types)` gives `<schema>::<Name>` together
  with the set of schema modules referred to. `pg_type_from_row(row)` builds a
  `PgType` from a mapping holding one introspection row. A type it cannot
  handle raises `UnsupportedTypeError`.
- `pgrpc.flatten`: `analyze_flatten_dependencies(composite, types)` expands
  fields marked `@pgrpc_flatten` into a flat list of `FlattenedField`s,
  raising `CyclicDependencyError`, `InvalidFlattenTargetError` or
  `TypeNotFoundError` (all `FlattenError`s) when it cannot.
  `composite_field_expression` and `select_clause_for_flattened_type` build
  the matching SQL expressions and `SELECT` list.
- `pgrpc.render`: `render_type(pg_type, types)` emits the Rust declarations
  for a composite, domain or enum type (an empty string for built-in and
  array types); `render_field` emits one struct field; `domain_traits` gives
  the extra derives and impls for a domain over a given inner type.
- `pgrpc.task_index`: `TaskQueueConfig` (the task table defaults to
  `mq.task`, with columns `task_name` and `payload`), `TaskField`, `TaskType`,
  `TaskIndex` and `build_task_index(rows)`, which reads rows with the keys
  `task_name`, `type_oid`, `type_comment` and `fields` (a JSON array of field
  descriptions; malformed entries are skipped).
- `pgrpc.task_codegen`: `generate_task_enum(task_index, types, config)`
  returns the payload structs and the `TaskPayload` enum plus the referenced
  schema modules; it returns an empty string when the index is empty.
  `map_postgres_type_to_rust` is the fallback mapping used for field types
  missing from `types`.

## Annotations

Comments on types and columns steer generation:

- `@pgrpc_not_null` on a column comment makes that field non-optional.
- `@pgrpc_not_null(col1, col2)` on a type comment makes the listed fields
  non-optional.
- `@pgrpc_flatten` on a column whose type is composite inlines its fields,
  named `<column>_<field>`.

## Example

```python
from pgrpc.flatten import analyze_flatten_dependencies, select_clause_for_flattened_type
from pgrpc.types import PgField, PgType, TypeKind

types = {
    100: PgType(
        TypeKind.COMPOSITE,
        schema="public",
        name="address",
        fields=[PgField("street", 1), PgField("city", 2)],
    ),
}
person = PgType(
    TypeKind.COMPOSITE,
    schema="public",
    name="person",
    fields=[PgField("name", 3), PgField("addr", 100, flatten=True)],
)

analysis = analyze_flatten_dependencies(person, types)
print(select_clause_for_flattened_type(analysis, "p"))
# p.name AS name, p.(addr).street AS addr_street, p.(addr).city AS addr_city
```

## What it does not do

`pgrpc` is a library of building blocks. It does not connect to a database
or run the introspection queries itself; you supply the rows. It does not
write generated files to disk, and it has no command-line program.