import pytest

from pgrpc.flatten import (
    CyclicDependencyError,
    FlattenError,
    InvalidFlattenTargetError,
    TypeNotFoundError,
    analyze_flatten_dependencies,
    composite_field_expression,
    generate_field_name,
    select_clause_for_flattened_type,
)
from pgrpc.types import PgField, PgType, TypeKind


def make_field(name, type_oid, flatten=False, nullable=True, comment=None):
    return PgField(
        name=name,
        type_oid=type_oid,
        nullable=nullable,
        comment=comment,
        flatten=flatten,
    )


def make_composite(name, fields):
    return PgType(TypeKind.COMPOSITE, schema="public", name=name, fields=fields)


@pytest.fixture
def person_with_address():
    types = {
        100: make_composite(
            "address", [make_field("street", 1), make_field("city", 2)]
        )
    }
    person = make_composite(
        "person", [make_field("name", 3), make_field("addr", 100, flatten=True)]
    )
    return person, types


def test_flatten_analysis_simple(person_with_address):
    person, types = person_with_address
    analysis = analyze_flatten_dependencies(person, types)

    names = [f.name for f in analysis.flattened_fields]
    assert names == ["name", "addr_street", "addr_city"]
    paths = [f.original_path for f in analysis.flattened_fields]
    assert paths == [("name",), ("addr", "street"), ("addr", "city")]
    assert analysis.dependencies == {100}


def test_flatten_analysis_no_flatten():
    person = make_composite("person", [make_field("name", 1), make_field("age", 2)])
    analysis = analyze_flatten_dependencies(person, {})

    assert [f.name for f in analysis.flattened_fields] == ["name", "age"]
    assert [f.original_path for f in analysis.flattened_fields] == [
        ("name",),
        ("age",),
    ]
    assert analysis.dependencies == set()


def test_flatten_missing_type():
    person = make_composite(
        "person", [make_field("name", 1), make_field("addr", 999, flatten=True)]
    )
    with pytest.raises(TypeNotFoundError) as excinfo:
        analyze_flatten_dependencies(person, {})
    assert excinfo.value.type_oid == 999


def test_flatten_non_composite_target():
    types = {100: PgType(TypeKind.TEXT)}
    person = make_composite(
        "person",
        [make_field("name", 1), make_field("description", 100, flatten=True)],
    )
    with pytest.raises(InvalidFlattenTargetError):
        analyze_flatten_dependencies(person, types)


def test_flatten_root_must_be_composite():
    with pytest.raises(FlattenError):
        analyze_flatten_dependencies(PgType(TypeKind.INT32), {})


def test_flatten_cycle_detected():
    node = make_composite("node", [make_field("child", 50, flatten=True)])
    types = {50: node}
    with pytest.raises(CyclicDependencyError) as excinfo:
        analyze_flatten_dependencies(node, types)
    assert excinfo.value.path == ["node"]


def test_flatten_nullability_is_combined():
    types = {
        100: make_composite(
            "address",
            [
                make_field("street", 1, nullable=False),
                make_field("city", 2, nullable=True),
            ],
        )
    }
    person = make_composite(
        "person", [make_field("addr", 100, flatten=True, nullable=False)]
    )
    fields = analyze_flatten_dependencies(person, types).flattened_fields
    assert [(f.name, f.nullable) for f in fields] == [
        ("addr_street", False),
        ("addr_city", True),
    ]


def test_flatten_keeps_sub_field_comment():
    types = {100: make_composite("address", [make_field("street", 1, comment="st")])}
    person = make_composite("person", [make_field("addr", 100, flatten=True)])
    fields = analyze_flatten_dependencies(person, types).flattened_fields
    assert fields[0].comment == "st"
    assert fields[0].type_oid == 1


def test_generate_field_name():
    assert generate_field_name("addr", "street") == "addr_street"
    assert generate_field_name("", "street") == "street"


def test_composite_field_expression_generation():
    assert composite_field_expression(["name"]) == "name"
    assert composite_field_expression(["addr", "street"]) == "(addr).street"
    assert (
        composite_field_expression(["addr", "contact", "phone"])
        == "((addr).contact).phone"
    )
    assert (
        composite_field_expression(["person", "addr", "contact", "emergency", "phone"])
        == "((((person).addr).contact).emergency).phone"
    )


def test_composite_field_expression_empty():
    with pytest.raises(ValueError):
        composite_field_expression([])


def test_select_clause_generation(person_with_address):
    person, types = person_with_address
    analysis = analyze_flatten_dependencies(person, types)

    assert (
        select_clause_for_flattened_type(analysis, None)
        == "name AS name, (addr).street AS addr_street, (addr).city AS addr_city"
    )
    assert (
        select_clause_for_flattened_type(analysis, "p")
        == "p.name AS name, p.(addr).street AS addr_street, p.(addr).city AS addr_city"
    )


def test_nested_select_clause_generation():
    types = {
        200: make_composite(
            "contact_info", [make_field("phone", 1), make_field("email", 2)]
        ),
        100: make_composite(
            "address",
            [
                make_field("street", 3),
                make_field("city", 4),
                make_field("contact", 200, flatten=True),
            ],
        ),
    }
    person = make_composite(
        "person", [make_field("name", 5), make_field("addr", 100, flatten=True)]
    )
    analysis = analyze_flatten_dependencies(person, types)
    clause = select_clause_for_flattened_type(analysis, "t")

    assert "t.name AS name" in clause
    assert "t.(addr).street AS addr_street" in clause
    assert "t.(addr).city AS addr_city" in clause
    assert "t.((addr).contact).phone AS addr_contact_phone" in clause
    assert "t.((addr).contact).email AS addr_contact_email" in clause
    assert analysis.dependencies == {100, 200}


def test_same_type_flattened_twice_is_not_a_cycle():
    types = {10: make_composite("contact", [make_field("phone", 1)])}
    person = make_composite(
        "person",
        [
            make_field("home_contact", 10, flatten=True),
            make_field("work_contact", 10, flatten=True),
        ],
    )
    fields = analyze_flatten_dependencies(person, types).flattened_fields
    assert [f.name for f in fields] == ["home_contact_phone", "work_contact_phone"]