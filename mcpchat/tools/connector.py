"""Connect to one external MCP tool provider.

Every connection is its own failure domain: ``ProviderConnector.connect``
turns connection, protocol and timeout failures into a ``ProviderUnavailable``
value instead of raising. Clients are opened per call and never cached.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastmcp import Client
from fastmcp.client.transports import SSETransport, StreamableHttpTransport
from mcp.types import Implementation

from .codec import ToolDescriptor, describe_tools
from .registry import result_to_string

logger = logging.getLogger(__name__)

_CLIENT_INFO = Implementation(name="mcpchat", version="0.1.0")

TRANSPORTS = ("sse", "stdio", "http")


@dataclass(frozen=True)
class ProviderSpec:
    url: str
    transport: str = "sse"
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.url


@dataclass(frozen=True)
class ServerInfo:
    name: str = ""
    description: str = ""
    version: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "description": self.description, "version": self.version}


@dataclass
class ProviderListing:
    spec: ProviderSpec
    tools: Dict[str, ToolDescriptor]
    server_info: Optional[ServerInfo] = None
    resources: Optional[List[Any]] = None

    ok = True


@dataclass(frozen=True)
class ProviderUnavailable:
    spec: ProviderSpec
    reason: str

    ok = False


ClientFactory = Callable[[ProviderSpec, float], Any]


def make_client(spec: ProviderSpec, timeout: float) -> Client:
    if spec.transport == "sse":
        transport: Any = SSETransport(url=spec.url)
    elif spec.transport == "http":
        transport = StreamableHttpTransport(url=spec.url)
    elif spec.transport == "stdio":
        # FastMCP infers a stdio transport from a script path.
        transport = spec.url
    else:
        raise ValueError(f"Unsupported transport '{spec.transport}'")
    return Client(transport, name="mcpchat", client_info=_CLIENT_INFO, timeout=timeout)


def _probe_server_info(client: Any) -> Optional[ServerInfo]:
    result = getattr(client, "initialize_result", None)
    server_info = getattr(result, "serverInfo", None)
    if server_info is None:
        return None
    description = getattr(server_info, "description", None) or getattr(result, "instructions", None) or ""
    return ServerInfo(
        name=getattr(server_info, "name", "") or "",
        description=description,
        version=getattr(server_info, "version", "") or "",
    )


async def _probe_resources(client: Any) -> Optional[List[Any]]:
    result = getattr(client, "initialize_result", None)
    capabilities = getattr(result, "capabilities", None)
    if capabilities is not None and getattr(capabilities, "resources", None) is None:
        return None
    try:
        return list(await client.list_resources())
    except Exception as exc:  # noqa: BLE001
        logger.debug("Resource listing not available: %s", exc)
        return None


class ProviderConnector:
    def __init__(
        self,
        timeout: float = 5.0,
        *,
        tool_timeout: float = 30.0,
        client_factory: ClientFactory = make_client,
    ) -> None:
        self.timeout = timeout
        self.tool_timeout = tool_timeout
        self.client_factory = client_factory

    async def connect(
        self,
        spec: ProviderSpec,
        *,
        timeout: Optional[float] = None,
        probe: bool = False,
    ) -> ProviderListing | ProviderUnavailable:
        limit = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._list(spec, limit, probe), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs", spec.label, limit)
            return ProviderUnavailable(spec=spec, reason="timeout")
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or type(exc).__name__
            logger.warning("Provider %s unavailable: %s", spec.label, reason)
            return ProviderUnavailable(spec=spec, reason=reason)

    async def _list(self, spec: ProviderSpec, limit: float, probe: bool) -> ProviderListing:
        client = self.client_factory(spec, limit)
        async with client:
            raw_tools = list(await client.list_tools())
            server_info = _probe_server_info(client) if probe else None
            resources = await _probe_resources(client) if probe else None

        return ProviderListing(
            spec=spec,
            tools=describe_tools(raw_tools),
            server_info=server_info,
            resources=resources,
        )

    async def call_tool(self, spec: ProviderSpec, name: str, arguments: Dict[str, Any]) -> str:
        async def _call() -> Any:
            client = self.client_factory(spec, self.tool_timeout)
            async with client:
                return await client.call_tool(name, arguments or {})

        result = await asyncio.wait_for(_call(), timeout=self.tool_timeout)
        return result_to_string(result)
