import json
from types import SimpleNamespace

import pytest

from mcpchat.tools.codec import (
    ToolDescriptor,
    describe_tool,
    describe_tools,
    tool_table_from_json,
    tool_table_to_json,
)


def test_describe_mcp_style_tool() -> None:
    raw = SimpleNamespace(
        name="search",
        description="Search the docs",
        inputSchema={
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Search terms"}},
            "required": ["query"],
        },
        annotations=None,
    )

    descriptor = describe_tool(raw)
    assert descriptor == ToolDescriptor(
        name="search",
        description="Search the docs",
        parameters={"query": {"type": "string", "description": "Search terms"}},
        required=("query",),
    )


def test_descriptor_serializes_to_plain_json() -> None:
    descriptor = describe_tool(
        {
            "name": "lookup",
            "inputSchema": {"properties": {"id": {"type": "integer", "default": object()}}},
            "execute": lambda args: args,
        }
    )

    data = descriptor.to_dict()
    assert data == {
        "name": "lookup",
        "description": "",
        "parameters": {"properties": {"id": {"type": "integer"}}},
    }
    json.dumps(data)


def test_json_schema_for_model_tools() -> None:
    descriptor = ToolDescriptor(name="t", parameters={"a": {"type": "string"}}, required=("a",))
    assert descriptor.json_schema() == {
        "type": "object",
        "properties": {"a": {"type": "string"}},
        "required": ["a"],
    }


def test_stored_table_round_trip_accepts_wrapped_schema() -> None:
    stored = {
        "getForecast": {
            "description": "Forecast",
            "parameters": {"jsonSchema": {"properties": {"city": {"type": "string"}}, "required": ["city"]}},
        }
    }

    table = tool_table_from_json(stored)
    assert table["getForecast"].name == "getForecast"
    assert table["getForecast"].required == ("city",)
    assert tool_table_to_json(table)["getForecast"]["parameters"]["required"] == ["city"]


def test_describe_tools_last_duplicate_wins() -> None:
    table = describe_tools([{"name": "a", "description": "one"}, {"name": "a", "description": "two"}])
    assert list(table) == ["a"]
    assert table["a"].description == "two"


def test_tool_without_name_is_rejected() -> None:
    with pytest.raises(ValueError):
        describe_tool({"description": "nameless"})
