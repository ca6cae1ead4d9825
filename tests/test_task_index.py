import pytest

from pgrpc.task_index import (
    TaskField,
    TaskIndex,
    TaskQueueConfig,
    TaskType,
    build_task_index,
    parse_task_field,
    parse_task_fields,
)


def _field(name, type_oid, postgres_type, position, not_null=True, comment=None):
    return {
        "name": name,
        "type_oid": type_oid,
        "postgres_type": postgres_type,
        "position": position,
        "not_null": not_null,
        "comment": comment,
    }


def _test_index():
    index = TaskIndex()
    index["send_verification_code"] = TaskType(
        task_name="send_verification_code",
        type_oid=123456,
        fields=[
            TaskField("email", 1001, "email", 1, True),
            TaskField("code", 1002, "verification_code", 2, True),
        ],
    )
    index["shipment_created"] = TaskType(
        task_name="shipment_created", type_oid=123457, fields=[]
    )
    return index


def test_task_field_processing_from_json():
    fields = parse_task_fields(
        [
            _field("email", 1001, "email", 1),
            _field("code", 1002, "verification_code", 2),
        ]
    )
    assert [f.name for f in fields] == ["email", "code"]
    assert fields[0].type_oid == 1001
    assert fields[1].type_oid == 1002
    assert fields[0].comment is None


def test_empty_fields_json_processing():
    assert parse_task_fields([]) == []
    assert parse_task_fields(None) == []


def test_non_array_fields_is_error():
    with pytest.raises(ValueError):
        parse_task_fields({"name": "email"})


def test_type_oid_as_string():
    parsed = parse_task_field(_field("email", "1001", "email", 1))
    assert parsed == TaskField("email", 1001, "email", 1, True, None)


@pytest.mark.parametrize(
    "broken",
    [
        {"type_oid": 1, "postgres_type": "text", "position": 1, "not_null": True},
        _field("x", "abc", "text", 1),
        _field("x", -1, "text", 1),
        _field("x", 1, "text", 1, not_null="yes"),
        _field("x", 1, "text", 1.5),
        _field("x", True, "text", 1),
        "not an object",
    ],
)
def test_malformed_field_is_skipped(broken):
    assert parse_task_field(broken) is None
    assert parse_task_fields([broken, _field("ok", 25, "text", 1)]) == [
        TaskField("ok", 25, "text", 1, True)
    ]


def test_field_comment_kept():
    parsed = parse_task_field(_field("a", 25, "text", 3, False, "@pgrpc_not_null"))
    assert parsed.comment == "@pgrpc_not_null"
    assert parsed.not_null is False
    assert parsed.position == 3


def test_task_names_and_type_oids():
    index = _test_index()
    assert sorted(index.task_names()) == ["send_verification_code", "shipment_created"]
    assert sorted(index.collect_type_oids()) == [1001, 1002, 123456, 123457]


def test_empty_index():
    index = TaskIndex()
    assert len(index) == 0
    assert index.collect_type_oids() == []


def test_build_task_index():
    rows = [
        {
            "task_name": "send_welcome_email",
            "type_oid": 500,
            "type_comment": "Welcome @pgrpc_not_null(email)",
            "fields": [
                _field("user_id", 23, "int4", 1, False),
                _field("email", 25, "text", 2, False),
            ],
        },
        {
            "task_name": "cleanup_files",
            "type_oid": 501,
            "type_comment": None,
            "fields": None,
        },
    ]
    index = build_task_index(rows)
    assert sorted(index.task_names()) == ["cleanup_files", "send_welcome_email"]
    welcome = index["send_welcome_email"]
    assert welcome.comment == "Welcome @pgrpc_not_null(email)"
    assert [f.name for f in welcome.fields] == ["user_id", "email"]
    assert index["cleanup_files"].fields == []


def test_build_task_index_bad_fields_raises():
    rows = [{"task_name": "t", "type_oid": 1, "type_comment": None, "fields": "oops"}]
    with pytest.raises(ValueError):
        build_task_index(rows)


def test_build_task_index_missing_column_raises():
    with pytest.raises(KeyError):
        build_task_index([{"task_name": "t", "type_oid": 1, "fields": []}])


def test_full_table_name_custom():
    config = TaskQueueConfig(
        schema="task_types",
        table_schema="queue",
        table_name="jobs",
        task_name_column="job_type",
        payload_column="data",
    )
    assert config.full_table_name() == "queue.jobs"


def test_full_table_name_explicit_defaults():
    config = TaskQueueConfig(schema="tasks", table_schema="mq", table_name="task")
    assert config.full_table_name() == "mq.task"
    assert config.task_name_column == "task_name"
    assert config.payload_column == "payload"