"""Normalize provider tool metadata into a serializable descriptor."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

_DROP = object()


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    required: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        parameters: Dict[str, Any] = {"properties": dict(self.parameters)}
        if self.required:
            parameters["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
        }

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": "object", "properties": dict(self.parameters)}
        if self.required:
            schema["required"] = list(self.required)
        return schema

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], fallback_name: Optional[str] = None) -> "ToolDescriptor":
        return describe_tool(data, fallback_name=fallback_name)


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        cleaned: Dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                continue
            item = _json_safe(item)
            if item is not _DROP:
                cleaned[key] = item
        return cleaned
    if isinstance(value, (list, tuple)):
        return [item for item in (_json_safe(v) for v in value) if item is not _DROP]
    if hasattr(value, "model_dump"):
        return _json_safe(value.model_dump(exclude_none=True, by_alias=True))
    return _DROP


def _field(raw: Any, *names: str) -> Any:
    for name in names:
        if isinstance(raw, Mapping):
            if name in raw:
                return raw[name]
        elif hasattr(raw, name):
            return getattr(raw, name)
    return None


def _input_schema(raw: Any) -> Mapping[str, Any]:
    schema = _field(raw, "inputSchema", "input_schema", "parameters")
    if hasattr(schema, "model_dump"):
        schema = schema.model_dump(exclude_none=True, by_alias=True)
    if not isinstance(schema, Mapping):
        return {}
    # Already normalized descriptors and AI-SDK style wrappers nest the schema one level down.
    if "jsonSchema" in schema and isinstance(schema["jsonSchema"], Mapping):
        return schema["jsonSchema"]
    return schema


def describe_tool(raw: Any, fallback_name: Optional[str] = None) -> ToolDescriptor:
    """Build a ToolDescriptor from an MCP tool, a descriptor-like object or a mapping.

    Only the name, the description and the parameter properties survive;
    callables and provider-internal fields are dropped.
    """
    name = _field(raw, "name") or fallback_name
    if not isinstance(name, str) or not name:
        raise ValueError(f"Tool is missing a name: {raw!r}")

    description = _field(raw, "description")
    schema = _input_schema(raw)
    properties = _json_safe(schema.get("properties") or {})
    required = schema.get("required") or ()

    return ToolDescriptor(
        name=name,
        description=description if isinstance(description, str) else "",
        parameters=properties if isinstance(properties, dict) else {},
        required=tuple(str(item) for item in required if isinstance(item, str)),
    )


def describe_tools(raw_tools: Iterable[Any]) -> Dict[str, ToolDescriptor]:
    table: Dict[str, ToolDescriptor] = {}
    for raw in raw_tools:
        descriptor = describe_tool(raw)
        table[descriptor.name] = descriptor
    return table


def tool_table_to_json(table: Mapping[str, ToolDescriptor]) -> Dict[str, Dict[str, Any]]:
    return {name: descriptor.to_dict() for name, descriptor in table.items()}


def tool_table_from_json(data: Mapping[str, Any]) -> Dict[str, ToolDescriptor]:
    return {key: ToolDescriptor.from_dict(value, fallback_name=key) for key, value in data.items()}


def tool_lines(table: Mapping[str, ToolDescriptor]) -> List[str]:
    return [f"- {name}: {descriptor.description or 'No description available'}" for name, descriptor in table.items()]
