from datetime import datetime, timedelta, timezone

import pytest

from playengine.contracts import Workstream
from playengine.errors import InvalidInput
from playengine.inputs import InputContext, apply_transform, resolve_inputs


@pytest.fixture
def context():
    return InputContext(
        workstream=Workstream(id="ws-1", name="Acme", annual_value=120000),
        previous_outputs={"collect": {"contact": {"email": "ops@acme.test"}}},
    )


def test_days_from_now_produces_future_timestamp():
    value = apply_transform(3, "days_from_now")
    moment = datetime.fromisoformat(value)
    expected = datetime.now(timezone.utc) + timedelta(days=3)
    assert abs((moment - expected).total_seconds()) < 60
    assert apply_transform("soon", "days_from_now") is None


@pytest.mark.parametrize(
    "value,transform,expected",
    [
        ("1", "to_boolean", True),
        ("false", "to_boolean", False),
        ("x", "to_array", ["x"]),
        ("", "to_array", []),
        ('{"a": 1}', "json_parse", {"a": 1}),
        ("not json", "json_parse", "not json"),
        ({"a": 1}, "json_stringify", '{"a": 1}'),
        ("MiXed", "to_lowercase", "mixed"),
    ],
)
def test_transforms(value, transform, expected):
    assert apply_transform(value, transform) == expected


def test_nested_previous_output_and_unknown_scope(context):
    resolved = resolve_inputs(
        {
            "email": {"source": "previous_output", "field": "collect.contact.email"},
            "value": {"source": "workstream", "field": "annual_value"},
            "other": {"source": "context", "field": "session.id", "default": "none"},
            "title": {"source": "template", "template": "{{name}}: {{missing}}"},
        },
        context,
    )
    assert resolved == {
        "email": "ops@acme.test",
        "value": 120000.0,
        "other": "none",
        "title": "Acme: ",
    }


def test_dict_with_unrelated_source_key_is_left_alone(context):
    config = {"feed": {"source": "crm", "field": "x"}}
    assert resolve_inputs(config, context) == config


def test_unknown_binding_keys_are_rejected(context):
    with pytest.raises(InvalidInput, match="Input 'email' is malformed"):
        resolve_inputs({"email": {"source": "workstream", "path": "owner_id"}}, context)
