import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from .codec import ToolDescriptor

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any] | Any]


@dataclass
class AgentTool:
    descriptor: ToolDescriptor
    handler: ToolHandler
    source: str = field(default="local")

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    async def __call__(self, arguments: Dict[str, Any]) -> str:
        result = self.handler(arguments)
        if asyncio.iscoroutine(result):
            result = await result
        return result_to_string(result)

    def as_response_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.descriptor.json_schema(),
        }


def result_to_string(result: Any) -> str:
    if isinstance(result, str):
        return result
    content = getattr(result, "content", None)
    if isinstance(content, list) and content:
        first = content[0]
        text = getattr(first, "text", None) or getattr(first, "value", None)
        if text is not None:
            return str(text)
    if hasattr(result, "model_dump"):
        return json.dumps(result.model_dump(exclude_none=True, by_alias=True))
    try:
        return json.dumps(result)
    except TypeError:
        return str(result)


class ToolRegistry:
    """Ordered name -> tool table. Registering an existing name replaces it."""

    def __init__(self, tools: Iterable[AgentTool] = ()) -> None:
        self._tools: Dict[str, AgentTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        previous = self._tools.get(tool.name)
        if previous is not None:
            logger.debug("Tool %s from %s overrides %s", tool.name, tool.source, previous.source)
        self._tools[tool.name] = tool

    def list_for_responses(self) -> List[Dict[str, Any]]:
        return [tool.as_response_tool() for tool in self._tools.values()]

    def get(self, name: str) -> AgentTool:
        return self._tools[name]

    def names(self) -> List[str]:
        return list(self._tools)

    async def execute(self, name: str, arguments: Dict[str, Any]) -> str:
        return await self._tools[name](arguments)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_capability_set(local_tools: Iterable[AgentTool], remote: "ToolRegistry | Iterable[AgentTool]") -> ToolRegistry:
    """Local tools first, remote tools layered on top: a remote tool shadows a local one of the same name."""
    registry = ToolRegistry(local_tools)
    remote_tools = remote._tools.values() if isinstance(remote, ToolRegistry) else remote
    for tool in remote_tools:
        registry.register(tool)
    return registry
