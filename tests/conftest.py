import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from mcpchat.agent.models import ModelProvider, StepFinish
from mcpchat.config import AppConfig
from mcpchat.errors import ModelInferenceError
from mcpchat.storage import Database
from mcpchat.tools import ProviderConnector


STALL = object()


class ScriptedModelProvider(ModelProvider):
    """Replays one list of model events per step."""

    def __init__(self, steps: Optional[List[List[Any]]] = None, *, title: str = "Weather chat", described: Any = None) -> None:
        self.steps = list(steps or [])
        self.title = title
        self.described = described
        self.calls: List[Dict[str, Any]] = []
        self.title_calls = 0
        self.closed = False

    async def stream_step(self, model_id, input_items, tools, instructions):
        self.calls.append({"model_id": model_id, "input": list(input_items), "tools": list(tools)})
        if not self.steps:
            yield StepFinish()
            return
        for event in self.steps.pop(0):
            if event is STALL:
                # Blocks until the reading task is cancelled.
                await asyncio.Event().wait()
            if isinstance(event, Exception):
                raise event
            yield event

    async def generate_text(self, model_id, prompt, instructions=""):
        self.title_calls += 1
        await asyncio.sleep(0)
        if isinstance(self.title, Exception):
            raise self.title
        return self.title

    async def generate_object(self, model_id, prompt, schema):
        if self.described is None:
            raise ModelInferenceError("no structured output")
        if isinstance(self.described, Exception):
            raise self.described
        return schema(**self.described)

    async def close(self) -> None:
        self.closed = True


class FakeClient:
    """Stand-in for a fastmcp Client bound to one provider."""

    def __init__(
        self,
        tools: List[Dict[str, Any]],
        *,
        server_name: str = "",
        instructions: Optional[str] = None,
        resources: Optional[List[Any]] = None,
        fail: Optional[Exception] = None,
        hang: bool = False,
        results: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.tools = tools
        self.resources = resources
        self.fail = fail
        self.hang = hang
        self.results = results or {}
        self.calls: List[Any] = []
        self.initialize_result = SimpleNamespace(
            serverInfo=SimpleNamespace(name=server_name, version="1.0.0"),
            instructions=instructions,
            capabilities=SimpleNamespace(resources={} if resources is not None else None),
        )

    async def __aenter__(self) -> "FakeClient":
        if self.hang:
            await asyncio.sleep(3600)
        if self.fail is not None:
            raise self.fail
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    async def list_tools(self) -> List[Dict[str, Any]]:
        return self.tools

    async def list_resources(self) -> List[Any]:
        return list(self.resources or [])

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        result = self.results.get(name, f"{name} ok")
        return result(arguments) if callable(result) else result


def tool(name: str, description: str = "", **properties: str) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": {key: {"type": kind} for key, kind in properties.items()},
            "required": list(properties),
        },
    }


def fake_connector(clients: Dict[str, FakeClient], timeout: float = 1.0) -> ProviderConnector:
    def factory(spec, _timeout):
        if spec.url not in clients:
            raise ConnectionError(f"connection refused: {spec.url}")
        return clients[spec.url]

    return ProviderConnector(timeout, tool_timeout=timeout, client_factory=factory)


@pytest.fixture
def db() -> Database:
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(database_url="sqlite://", provider_timeout=1.0, max_steps=3)
