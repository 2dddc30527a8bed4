import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .codec import ToolDescriptor
from .connector import ProviderConnector, ProviderListing, ProviderSpec, ProviderUnavailable
from .registry import AgentTool, ToolRegistry, build_capability_set

logger = logging.getLogger(__name__)


class RemoteTool(AgentTool):
    """Binding that invokes a tool on its provider through the connector."""

    def __init__(
        self,
        descriptor: ToolDescriptor,
        *,
        connector: ProviderConnector,
        spec: ProviderSpec,
    ) -> None:
        self.connector = connector
        self.spec = spec
        super().__init__(descriptor=descriptor, handler=self._call, source=f"mcp:{spec.label}")

    async def _call(self, arguments: Dict[str, Any]) -> str:
        return await self.connector.call_tool(self.spec, self.name, arguments)


@dataclass(frozen=True)
class ProviderStatus:
    provider_id: Optional[str]
    name: str
    url: str
    ok: bool
    reason: Optional[str] = None
    tool_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "name": self.name,
            "url": self.url,
            "status": "succeeded" if self.ok else "failed",
            "reason": self.reason,
            "toolCount": self.tool_count,
        }


@dataclass
class AggregationResult:
    tools: ToolRegistry
    remote: ToolRegistry
    statuses: List[ProviderStatus] = field(default_factory=list)

    @property
    def failed(self) -> List[ProviderStatus]:
        return [status for status in self.statuses if not status.ok]


def spec_for(provider: Any) -> ProviderSpec:
    return ProviderSpec(
        url=getattr(provider, "url", "") or "",
        transport=getattr(provider, "type", None) or "sse",
        name=getattr(provider, "name", "") or "",
    )


class ToolAggregator:
    def __init__(
        self,
        connector: ProviderConnector,
        concurrency: int = 4,
        transports: Sequence[str] = ("sse", "http"),
    ) -> None:
        self.connector = connector
        self.concurrency = max(1, concurrency)
        self.transports = tuple(transports)

    async def aggregate(
        self,
        providers: Sequence[Any],
        local_tools: Iterable[AgentTool] = (),
    ) -> AggregationResult:
        providers = list(providers)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _connect(spec: ProviderSpec) -> ProviderListing | ProviderUnavailable:
            if not spec.url:
                return ProviderUnavailable(spec=spec, reason="missing url")
            if spec.transport not in self.transports:
                return ProviderUnavailable(spec=spec, reason=f"transport '{spec.transport}' not allowed")
            async with semaphore:
                return await self.connector.connect(spec)

        specs = [spec_for(provider) for provider in providers]
        outcomes = await asyncio.gather(*(_connect(spec) for spec in specs), return_exceptions=True)

        # Fold in provider order so a later provider deterministically wins a name collision.
        remote = ToolRegistry()
        statuses: List[ProviderStatus] = []
        for provider, spec, outcome in zip(providers, specs, outcomes):
            provider_id = getattr(provider, "id", None)
            if isinstance(outcome, BaseException):
                outcome = ProviderUnavailable(spec=spec, reason=str(outcome) or type(outcome).__name__)

            if isinstance(outcome, ProviderUnavailable):
                statuses.append(
                    ProviderStatus(provider_id=provider_id, name=spec.label, url=spec.url, ok=False, reason=outcome.reason)
                )
                continue

            for descriptor in outcome.tools.values():
                remote.register(RemoteTool(descriptor, connector=self.connector, spec=spec))
            logger.info("Provider %s contributed %d tools", spec.label, len(outcome.tools))
            statuses.append(
                ProviderStatus(
                    provider_id=provider_id,
                    name=spec.label,
                    url=spec.url,
                    ok=True,
                    tool_count=len(outcome.tools),
                )
            )

        return AggregationResult(
            tools=build_capability_set(local_tools, remote),
            remote=remote,
            statuses=statuses,
        )

    async def aggregate_for_user(
        self,
        user_id: str,
        store: Any,
        local_tools: Iterable[AgentTool] = (),
    ) -> AggregationResult:
        providers = store.list_active_for_user(user_id)
        return await self.aggregate(providers, local_tools)
