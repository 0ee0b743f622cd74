"""Declarative tool schemas and per-feature tool catalogs.

A :class:`ToolCatalog` is the set of tools offered to the model for one
feature. Each tool belongs to exactly one :class:`ToolFamily`, which decides
the executor that runs it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Sequence

from jsonschema import Draft7Validator

__all__ = ["ToolFamily", "ParameterSchema", "ToolSchema", "ToolCatalog", "MAX_SCHEMA_ERRORS"]

LOGGER = logging.getLogger(__name__)
MAX_SCHEMA_ERRORS = 5


# -----------------------------------------------------------------------------
# Tool Families
# -----------------------------------------------------------------------------


class ToolFamily(Enum):
    """Executor families. Every tool name maps to exactly one."""

    GRAPH = "graph"  # dependency-graph editing
    FILES = "files"  # project file editing
    RESEARCH = "research"  # web search and note synthesis
    OTHER = "other"  # page automation and anything else


# -----------------------------------------------------------------------------
# Tool Schema Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """Schema for a single tool parameter.

    Attributes:
        name: Parameter name.
        type: JSON Schema type (string, integer, boolean, object, array).
        description: Human-readable description.
        required: Whether the parameter is required.
        enum: List of allowed values.
        minimum: Minimum value for numbers.
        maximum: Maximum value for numbers.
        items: Schema for array items.
        properties: Nested properties for object types.
    """

    name: str
    type: str
    description: str
    required: bool = False
    enum: Sequence[Any] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    items: "ParameterSchema" | None = None
    properties: Mapping[str, "ParameterSchema"] | None = None

    def to_json_schema(self) -> dict[str, Any]:
        """Convert to JSON Schema format."""
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.items:
            schema["items"] = self.items.to_json_schema()
        if self.properties:
            schema["properties"] = {key: value.to_json_schema() for key, value in self.properties.items()}
            required = [key for key, value in self.properties.items() if value.required]
            if required:
                schema["required"] = required
        return schema


@dataclass(slots=True, frozen=True)
class ToolSchema:
    """Complete schema for a tool.

    Attributes:
        name: Tool name (identifier).
        description: Description shown to the model.
        parameters: Parameters accepted by the tool.
        family: Executor family that runs the tool.
        mutates: Whether a successful call changes persisted state.
    """

    name: str
    description: str
    parameters: Sequence[ParameterSchema] = field(default_factory=tuple)
    family: ToolFamily = ToolFamily.OTHER
    mutates: bool = False

    def to_json_schema(self) -> dict[str, Any]:
        """Convert the parameters to a JSON Schema object."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema

    def to_tool_spec(self) -> dict[str, Any]:
        """Return the provider-neutral tool definition."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.to_json_schema(),
        }


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------


class ToolCatalog:
    """Ordered, name-unique collection of tool schemas."""

    def __init__(self, schemas: Iterable[ToolSchema] = ()) -> None:
        self._schemas: dict[str, ToolSchema] = {}
        self._validators: dict[str, Draft7Validator] = {}
        for schema in schemas:
            self.add(schema)

    def add(self, schema: ToolSchema) -> None:
        if schema.name in self._schemas:
            raise ValueError(f"Tool '{schema.name}' is already registered")
        json_schema = schema.to_json_schema()
        Draft7Validator.check_schema(json_schema)
        self._schemas[schema.name] = schema
        self._validators[schema.name] = Draft7Validator(json_schema)

    def merged(self, *others: ToolCatalog) -> ToolCatalog:
        """Return a new catalog containing this catalog's tools then ``others``."""
        catalog = ToolCatalog(self)
        for other in others:
            for schema in other:
                catalog.add(schema)
        return catalog

    def __iter__(self) -> Iterator[ToolSchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def get(self, name: str) -> ToolSchema | None:
        return self._schemas.get(name)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._schemas)

    def family_of(self, name: str) -> ToolFamily | None:
        schema = self._schemas.get(name)
        return schema.family if schema else None

    def mutating_names(self) -> frozenset[str]:
        return frozenset(schema.name for schema in self if schema.mutates)

    def tool_specs(self) -> list[dict[str, Any]]:
        return [schema.to_tool_spec() for schema in self]

    def validate(self, name: str, arguments: Mapping[str, Any]) -> list[str]:
        """Return human-readable validation errors for ``arguments``."""
        validator = self._validators.get(name)
        if validator is None:
            return []
        errors: list[str] = []
        for issue in validator.iter_errors(dict(arguments)):
            path = ".".join(str(part) for part in issue.absolute_path)
            errors.append(f"{path}: {issue.message}" if path else issue.message)
            if len(errors) >= MAX_SCHEMA_ERRORS:
                break
        return errors
