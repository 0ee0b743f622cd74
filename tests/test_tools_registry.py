"""Tests for tool schemas, catalogs and argument validation."""

from __future__ import annotations

import pytest

from fishwallet.ai.tools.base import FamilyExecutorBase, optional_str, require_int, require_str
from fishwallet.ai.tools.errors import InvalidParameterError, UnknownToolError
from fishwallet.ai.tools.registry import ParameterSchema, ToolCatalog, ToolFamily, ToolSchema

from tests.helpers import ECHO, LOOKUP, fake_catalog


def test_schema_to_tool_spec() -> None:
    spec = ECHO.to_tool_spec()

    assert spec == {
        "name": "echo",
        "description": "Echo the text back.",
        "input_schema": {
            "type": "object",
            "properties": {"text": {"type": "string", "description": "Text to echo"}},
            "required": ["text"],
        },
    }


def test_nested_object_parameters() -> None:
    schema = ToolSchema(
        name="price",
        description="",
        parameters=(
            ParameterSchema(
                "pricing",
                "object",
                "Pricing",
                properties={"model": ParameterSchema("model", "string", "m", required=True)},
            ),
        ),
    )

    pricing = schema.to_json_schema()["properties"]["pricing"]
    assert pricing["required"] == ["model"]
    assert "required" not in schema.to_json_schema()


def test_catalog_rejects_duplicates() -> None:
    with pytest.raises(ValueError, match="already registered"):
        ToolCatalog((ECHO, ECHO))


def test_catalog_lookup_and_merge() -> None:
    catalog = ToolCatalog((ECHO,)).merged(ToolCatalog((LOOKUP,)))

    assert catalog.names == ("echo", "lookup")
    assert "lookup" in catalog
    assert catalog.family_of("lookup") is ToolFamily.RESEARCH
    assert catalog.family_of("nope") is None
    assert catalog.mutating_names() == frozenset({"echo"})
    assert len(catalog) == 2


def test_validate_reports_paths() -> None:
    catalog = fake_catalog()

    assert catalog.validate("echo", {"text": "ok"}) == []
    assert catalog.validate("echo", {}) == ["'text' is a required property"]
    assert catalog.validate("echo", {"text": 3}) == ["text: 3 is not of type 'string'"]
    assert catalog.validate("unknown", {"x": 1}) == []


def test_argument_helpers() -> None:
    assert require_str({"a": "x"}, "a") == "x"
    assert optional_str({}, "a") is None
    assert require_int({"n": 3.0}, "n") == 3
    for bad in ({"a": ""}, {"a": 1}, {}):
        with pytest.raises(InvalidParameterError):
            require_str(bad, "a")
    for bad in ({"n": True}, {"n": 1.5}, {"n": "2"}):
        with pytest.raises(InvalidParameterError):
            require_int(bad, "n")


@pytest.mark.asyncio
async def test_family_executor_dispatch(context) -> None:
    executor = FamilyExecutorBase()

    async def handler(arguments, ctx):
        return {"got": arguments["x"], "idea": ctx.idea_id}

    executor.register("thing", handler)
    executor.register("sync_thing", lambda arguments, ctx: "sync")

    assert await executor.execute("thing", {"x": 1}, context) == {"got": 1, "idea": "idea-1"}
    assert await executor.execute("sync_thing", {}, context) == "sync"
    assert executor.tool_names == frozenset({"thing", "sync_thing"})
    with pytest.raises(UnknownToolError):
        await executor.execute("other", {}, context)
