"""Rendering of PostgreSQL types as Rust source declarations."""

from __future__ import annotations

import re
import textwrap
from collections.abc import Iterable, Mapping
from string import Template

from pgrpc.flatten import FlattenAnalysis, FlattenError, FlattenedField, analyze_flatten_dependencies
from pgrpc.naming import CaseType, convert_case, pascal_case, snake_case
from pgrpc.types import DomainConstraint, PgField, PgType, TypeKind, UnsupportedTypeError

__all__ = ["render_type", "render_field", "domain_traits"]

_INDENT = "    "

_RUST_KEYWORDS = frozenset(
    {
        "as", "async", "await", "break", "const", "continue", "dyn", "else",
        "enum", "extern", "false", "fn", "for", "if", "impl", "in", "let",
        "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
        "static", "struct", "trait", "true", "type", "unsafe", "use",
        "where", "while", "abstract", "become", "box", "do", "final",
        "macro", "override", "priv", "try", "typeof", "unsized", "virtual",
        "yield",
    }
)
_NON_RAW_KEYWORDS = frozenset({"self", "Self", "super", "crate"})

_COMPOSITE_DERIVES = (
    "Clone, Debug, bon::Builder, serde::Serialize, serde::Deserialize, "
    "postgres_types::FromSql, postgres_types::ToSql"
)
_DOMAIN_BASE_DERIVES = (
    "Debug",
    "Clone",
    "derive_more::Deref",
    "serde::Serialize",
    "serde::Deserialize",
    "postgres_types::ToSql",
    "postgres_types::FromSql",
)
_ENUM_DERIVES = (
    "Debug, Clone, Copy, PartialEq, Eq, Hash, postgres_types::FromSql, "
    "postgres_types::ToSql, serde::Deserialize, serde::Serialize"
)

_COPY_KINDS = frozenset({TypeKind.INT16, TypeKind.INT32, TypeKind.INT64, TypeKind.BOOL})
_ORDERED_KINDS = frozenset({TypeKind.NUMERIC, TypeKind.TIMESTAMPTZ, TypeKind.DATE})

_NOT_NULL_CHECK = re.compile(
    r"\(\s*VALUE\s*\)\s*\.\s*(\"?)([A-Za-z_][A-Za-z0-9_$]*)\1\s+IS\s+NOT\s+NULL",
    re.IGNORECASE,
)

_COMPOSITE_DOMAIN_TEMPLATE = Template(
    """\
${doc}#[derive(Clone, Debug, bon::Builder, serde::Serialize, serde::Deserialize)]
${public_struct}

/// Internal; used for serialization/deserialization only
#[derive(Debug, postgres_types::ToSql, postgres_types::FromSql, serde::Deserialize, serde::Serialize)]
#[postgres(name = ${pg_inner})]
${inner_struct}

/// Internal; used for serialization/deserialization only
#[derive(Debug, serde::Deserialize, serde::Serialize)]
struct ${dom}(${inner});

/// FromSql for the domain wrapper, unwrapping the domain to its base type
impl<'a> postgres_types::FromSql<'a> for ${dom} {
    fn from_sql(ty: &postgres_types::Type, buf: &'a [u8]) -> std::result::Result<${dom}, Box<dyn std::error::Error + std::marker::Sync + std::marker::Send>> {
        let actual_type = match ty.kind() {
            postgres_types::Kind::Domain(inner) => inner,
            _ => ty,
        };
        <${inner} as postgres_types::FromSql>::from_sql(actual_type, buf).map(${dom})
    }

    fn accepts(ty: &postgres_types::Type) -> bool {
        ty.name() == ${pg_name} || ty.name() == ${pg_inner}
    }
}

/// ToSql for the domain wrapper
impl postgres_types::ToSql for ${dom} {
    fn to_sql(&self, ty: &postgres_types::Type, out: &mut postgres_types::private::BytesMut) -> Result<postgres_types::IsNull, Box<dyn std::error::Error + Sync + Send>> {
        let inner_ty = match ty.kind() {
            postgres_types::Kind::Domain(inner) => inner,
            _ => return Err("Expected domain type".into()),
        };
        self.0.to_sql(inner_ty, out)
    }

    fn accepts(ty: &postgres_types::Type) -> bool {
        ty.name() == ${pg_name} || ty.name() == ${pg_inner}
    }

    postgres_types::to_sql_checked!();
}

/// Dispatch FromSql to the internal domain wrapper struct
impl<'a> postgres_types::FromSql<'a> for ${name} {
    fn from_sql(_type: &postgres_types::Type, buf: &'a [u8]) -> std::result::Result<${name}, Box<dyn std::error::Error + std::marker::Sync + std::marker::Send>> {
        <${dom} as postgres_types::FromSql>::from_sql(_type, buf).map(|dom| unsafe { std::mem::transmute::<${inner}, ${name}>(dom.0) })
    }

    fn accepts(type_: &postgres_types::Type) -> bool {
        <${dom} as postgres_types::FromSql>::accepts(type_)
    }
}

${try_from}

impl postgres_types::ToSql for ${name} {
    fn to_sql(
        &self,
        ty: &postgres_types::Type,
        out: &mut postgres_types::private::BytesMut,
    ) -> Result<postgres_types::IsNull, Box<dyn std::error::Error + Sync + Send>> {
        let inner = unsafe { std::mem::transmute::<${name}, ${inner}>(self.clone()) };

        let inner_ty = match ty.kind() {
            postgres_types::Kind::Domain(inner) => inner,
            _ => return Err("Expected domain type".into()),
        };

        inner.to_sql(inner_ty, out)
    }

    fn accepts(ty: &postgres_types::Type) -> bool {
        ty.name() == ${pg_name} || ty.name() == ${pg_inner}
    }

    postgres_types::to_sql_checked!();
}
"""
)


def _rust_str(value: str) -> str:
    """A Rust string literal holding ``value``."""
    escapes = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t", "\0": "\\0"}
    chars = []
    for ch in value:
        if ch in escapes:
            chars.append(escapes[ch])
        elif ord(ch) < 0x20 or ch == "\x7f":
            chars.append(f"\\u{{{ord(ch):x}}}")
        else:
            chars.append(ch)
    return '"' + "".join(chars) + '"'


def _ident(name: str, case: CaseType) -> str:
    """A Rust identifier for ``name``, escaping keywords."""
    converted = convert_case(name, case)
    if converted in _NON_RAW_KEYWORDS:
        return f"{converted}_"
    if converted in _RUST_KEYWORDS:
        return f"r#{converted}"
    return converted


def _doc(comment: str | None) -> str:
    return "" if comment is None else f"#[doc = {_rust_str(comment)}]\n"


def _lookup(types: Mapping[int, PgType], oid: int | None) -> PgType:
    try:
        return types[oid]  # type: ignore[index]
    except KeyError:
        raise KeyError(f"type {oid} not found") from None


def _struct_block(header: str, fields: Iterable[str]) -> str:
    fields = list(fields)
    if not fields:
        return f"{header} {{}}"
    body = ",\n".join(fields) + ","
    return f"{header} {{\n{textwrap.indent(body, _INDENT)}\n}}"


def _try_from_impl(
    struct_name: str, bindings: Iterable[tuple[str, str]], assignments: Iterable[str]
) -> str:
    lines = [
        f"impl TryFrom<tokio_postgres::Row> for {struct_name} {{",
        f"{_INDENT}type Error = tokio_postgres::Error;",
        "",
        f"{_INDENT}fn try_from(row: tokio_postgres::Row) -> Result<Self, Self::Error> {{",
    ]
    lines.extend(f"{_INDENT * 2}let {var} = {expr};" for var, expr in bindings)
    lines.append(f"{_INDENT * 2}Ok(Self {{")
    lines.extend(f"{_INDENT * 3}{assignment}," for assignment in assignments)
    lines.extend([f"{_INDENT * 2}}})", f"{_INDENT}}}", "}"])
    return "\n".join(lines)


def _regular_try_from(struct_name: str, fields: list[PgField]) -> str:
    bindings = [
        (f"_{snake_case(f.name)}", f"row.try_get({_rust_str(f.name)})?") for f in fields
    ]
    assignments = [
        f"{_ident(f.name, CaseType.SNAKE)}: _{snake_case(f.name)}" for f in fields
    ]
    return _try_from_impl(struct_name, bindings, assignments)


def render_field(
    field: PgField, types: Mapping[int, PgType], include_pg_derive: bool = True
) -> str:
    """Render one composite field as a Rust struct field declaration."""
    rust_type = _lookup(types, field.type_oid).rust_ident(types)
    if field.nullable:
        rust_type = f"Option<{rust_type}>"
    lines = []
    if field.comment is not None:
        lines.append(_doc(field.comment).rstrip("\n"))
    if include_pg_derive:
        lines.append(f"#[postgres(name = {_rust_str(field.name)})]")
    lines.append(f"#[serde(rename = {_rust_str(field.name)})]")
    lines.append(f"pub {_ident(field.name, CaseType.SNAKE)}: {rust_type}")
    return "\n".join(lines)


def _flattened_field(flat: FlattenedField, types: Mapping[int, PgType]) -> str:
    rust_type = _lookup(types, flat.type_oid).rust_ident(types)
    if flat.nullable:
        rust_type = f"Option<{rust_type}>"
    lines = []
    if flat.comment is not None:
        lines.append(_doc(flat.comment).rstrip("\n"))
    lines.append(f"#[serde(rename = {_rust_str('.'.join(flat.original_path))})]")
    lines.append(f"pub {_ident(flat.name, CaseType.SNAKE)}: {rust_type}")
    return "\n".join(lines)


def _flattened_extraction(
    flat: FlattenedField, original_fields: list[PgField], types: Mapping[int, PgType]
) -> str:
    if len(flat.original_path) == 1:
        return f"row.try_get({_rust_str(flat.original_path[0])})?"

    root_name, sub_name = flat.original_path[0], flat.original_path[1]
    fallback = "None" if flat.nullable else "Default::default()"
    root_field = next((f for f in original_fields if f.name == root_name), None)
    if root_field is None:
        return fallback
    root_type = types.get(root_field.type_oid)
    if root_type is None:
        return fallback

    if root_type.kind is TypeKind.COMPOSITE:
        composite_name = _ident(root_type.name, CaseType.PASCAL)
    else:
        composite_name = root_type.rust_ident(types)
    sub_ident = _ident(sub_name, CaseType.SNAKE)
    return (
        f"row.try_get::<_, Option<{composite_name}>>({_rust_str(root_name)})?"
        f".and_then(|c| c.{sub_ident}.clone())"
    )


def _flattened_try_from(
    struct_name: str,
    analysis: FlattenAnalysis,
    original_fields: list[PgField],
    types: Mapping[int, PgType],
) -> str:
    bindings = [
        (_ident(f.name, CaseType.SNAKE), _flattened_extraction(f, original_fields, types))
        for f in analysis.flattened_fields
    ]
    assignments = [_ident(f.name, CaseType.SNAKE) for f in analysis.flattened_fields]
    return _try_from_impl(struct_name, bindings, assignments)


def _render_composite(pg_type: PgType, types: Mapping[int, PgType]) -> str:
    rs_name = _ident(pg_type.name, CaseType.PASCAL)
    fields = pg_type.fields

    analysis: FlattenAnalysis | None = None
    if any(f.flatten for f in fields):
        try:
            analysis = analyze_flatten_dependencies(pg_type, types)
        except FlattenError:
            analysis = None

    if analysis is not None:
        field_decls = [_flattened_field(f, types) for f in analysis.flattened_fields]
        try_from = _flattened_try_from(rs_name, analysis, fields, types)
    else:
        field_decls = [render_field(f, types) for f in fields]
        try_from = _regular_try_from(rs_name, fields)

    struct = _struct_block(f"pub struct {rs_name}", field_decls)
    return (
        f"{_doc(pg_type.comment)}"
        f"#[derive({_COMPOSITE_DERIVES})]\n"
        f"#[postgres(name = {_rust_str(pg_type.name)})]\n"
        f"{struct}\n\n{try_from}\n"
    )


def _non_null_columns(constraints: Iterable[DomainConstraint]) -> set[str]:
    """Columns a domain's CHECK constraints require to be ``IS NOT NULL``."""
    return {
        match.group(2)
        for constraint in constraints
        for match in _NOT_NULL_CHECK.finditer(constraint.definition)
    }


def _render_composite_domain(
    pg_type: PgType, inner: PgType, types: Mapping[int, PgType]
) -> str:
    rs_name = _ident(pg_type.name, CaseType.PASCAL)
    base = pascal_case(pg_type.name)
    dom_name = f"Dom{base}"
    inner_name = f"Inner{base}"

    non_null = _non_null_columns(pg_type.constraints)
    field_decls = [
        render_field(
            PgField(
                name=f.name,
                type_oid=f.type_oid,
                nullable=f.nullable and f.name not in non_null,
                comment=f.comment,
                flatten=f.flatten,
            ),
            types,
            include_pg_derive=False,
        )
        for f in inner.fields
    ]

    return _COMPOSITE_DOMAIN_TEMPLATE.substitute(
        doc=_doc(pg_type.comment),
        public_struct=_struct_block(f"pub struct {rs_name}", field_decls),
        inner_struct=_struct_block(f"struct {inner_name}", field_decls),
        try_from=_regular_try_from(rs_name, inner.fields),
        name=rs_name,
        dom=dom_name,
        inner=inner_name,
        pg_name=_rust_str(pg_type.name),
        pg_inner=_rust_str(inner.name),
    )


def domain_traits(inner_type: PgType, domain_name: str) -> tuple[list[str], list[str]]:
    """Extra derives and impls for a domain wrapping ``inner_type``."""
    derives = ["PartialEq", "Eq", "Hash"]
    impls: list[str] = []
    kind = inner_type.kind
    if kind in _COPY_KINDS:
        derives += ["Copy", "PartialOrd", "Ord"]
    elif kind is TypeKind.TEXT:
        derives += ["PartialOrd", "Ord"]
        impls.append(
            f"impl std::fmt::Display for {domain_name} {{\n"
            f"{_INDENT}fn fmt(&self, f: &mut std::fmt::Formatter<'_>) -> std::fmt::Result {{\n"
            f"{_INDENT * 2}self.0.fmt(f)\n"
            f"{_INDENT}}}\n"
            "}"
        )
    elif kind in _ORDERED_KINDS:
        derives += ["PartialOrd", "Ord"]
    return derives, impls


def _render_domain(pg_type: PgType, types: Mapping[int, PgType]) -> str:
    inner = _lookup(types, pg_type.base_type_oid)
    if inner.kind is TypeKind.COMPOSITE:
        return _render_composite_domain(pg_type, inner, types)

    rs_name = _ident(pg_type.name, CaseType.PASCAL)
    inner_ident = inner.rust_ident(types)
    derives, impls = domain_traits(inner, rs_name)
    text = (
        f"#[derive({', '.join([*_DOMAIN_BASE_DERIVES, *derives])})]\n"
        f"#[postgres(name = {_rust_str(pg_type.name)})]\n"
        f"pub struct {rs_name}(pub {inner_ident});\n"
    )
    if impls:
        text += "\n" + "\n\n".join(impls) + "\n"
    return text


def _render_enum(pg_type: PgType) -> str:
    variants = [
        f"#[postgres(name = {_rust_str(variant)})]\n"
        f"#[serde(rename = {_rust_str(variant)})]\n"
        f"{_ident(variant, CaseType.PASCAL)}"
        for variant in pg_type.variants
    ]
    block = _struct_block(f"pub enum {_ident(pg_type.name, CaseType.PASCAL)}", variants)
    return (
        f"{_doc(pg_type.comment)}"
        f"#[derive({_ENUM_DERIVES})]\n"
        f"#[postgres(name = {_rust_str(pg_type.name)})]\n"
        f"{block}\n"
    )


def render_type(pg_type: PgType, types: Mapping[int, PgType]) -> str:
    """Rust declarations for a type; empty for built-in and array types."""
    kind = pg_type.kind
    if kind is TypeKind.COMPOSITE:
        return _render_composite(pg_type, types)
    if kind is TypeKind.DOMAIN:
        return _render_domain(pg_type, types)
    if kind is TypeKind.ENUM:
        return _render_enum(pg_type)
    if kind is TypeKind.CUSTOM:
        raise UnsupportedTypeError(f"Unhandled PgType {pg_type!r}")
    return ""