import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..agent.models import ModelProvider
from ..config import AppConfig
from ..errors import AuthorizationError, DuplicateRegistration, NotFoundError, ValidationError
from ..storage import Provider, ProviderStore
from ..tools import ProviderConnector, ProviderSpec, ProviderUnavailable, ServerInfo, ToolDescriptor
from ..tools.codec import tool_table_to_json
from ..tools.connector import TRANSPORTS
from .describer import describe_provider

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    url: str
    transport: str
    name: str
    description: str
    capabilities: Dict[str, bool]
    tools: Dict[str, ToolDescriptor]
    server_info: ServerInfo = field(default_factory=ServerInfo)
    is_synthesized: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "name": self.name,
            "description": self.description,
            "capabilities": dict(self.capabilities),
            "serverInfo": self.server_info.to_dict(),
            "tools": tool_table_to_json(self.tools),
            "toolCount": len(self.tools),
            "isSynthesized": self.is_synthesized,
        }


def detect_capabilities(tools: Dict[str, ToolDescriptor], resources: Optional[List[Any]]) -> Dict[str, bool]:
    # Prompts and sampling are never probed and always reported as unsupported.
    return {
        "tools": len(tools) > 0,
        "resources": bool(resources),
        "prompts": False,
        "sampling": False,
    }


class ProviderRegistry:
    def __init__(
        self,
        store: ProviderStore,
        connector: ProviderConnector,
        model_provider: ModelProvider,
        config: AppConfig,
    ) -> None:
        self.store = store
        self.connector = connector
        self.model_provider = model_provider
        self.config = config

    def _check_url(self, url: str, transport: str) -> None:
        if not url or not url.strip():
            raise ValidationError("URL is required")
        if transport not in TRANSPORTS or transport not in self.config.allowed_transports:
            raise ValidationError(f"Unsupported transport '{transport}'", details={"transport": transport})
        if transport in ("sse", "http"):
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValidationError("Invalid provider URL", details={"url": url})

    async def validate(self, url: str, transport: Optional[str] = None) -> ValidationReport:
        transport = transport or self.config.default_transport
        self._check_url(url, transport)

        listing = await self.connector.connect(ProviderSpec(url=url, transport=transport), probe=True)
        if isinstance(listing, ProviderUnavailable):
            raise ValidationError(
                f"Could not connect to the MCP server: {listing.reason}",
                details={"url": url, "reason": listing.reason},
            )

        server_info = listing.server_info or ServerInfo()
        name = server_info.name
        description = server_info.description
        is_synthesized = False
        if not name or not description:
            generated = await describe_provider(url, listing.tools, self.model_provider, self.config.describer_model)
            name = name or generated.name
            description = description or generated.description
            is_synthesized = True

        return ValidationReport(
            url=url,
            transport=transport,
            name=name,
            description=description,
            capabilities=detect_capabilities(listing.tools, listing.resources),
            tools=listing.tools,
            server_info=server_info,
            is_synthesized=is_synthesized,
        )

    async def register(self, user_id: Optional[str], url: str, transport: Optional[str] = None) -> Dict[str, Any]:
        if not user_id:
            raise AuthorizationError("You must be signed in to register a provider")
        if not url or not url.strip():
            raise ValidationError("URL is required")
        if self.store.find_by_url(user_id, url) is not None:
            raise DuplicateRegistration(
                "You already have a provider registered with this URL",
                details={"url": url},
            )

        report = await self.validate(url, transport)
        provider = self.store.create(
            user_id=user_id,
            name=report.name,
            url=url,
            type=report.transport,
            is_active=True,
            description=report.description,
            capabilities=report.capabilities,
            tools=tool_table_to_json(report.tools),
            is_synthesized=report.is_synthesized,
        )
        logger.info("Registered provider %s (%s) for user %s with %d tools", provider.id, url, user_id, len(report.tools))

        data = report.to_dict()
        data.update(id=provider.id, url=url, type=provider.type, isActive=provider.is_active)
        return data

    def _owned(self, user_id: Optional[str], provider_id: str) -> Provider:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        provider = self.store.get(provider_id)
        if provider is None:
            raise NotFoundError("Provider not found", details={"providerId": provider_id})
        if provider.user_id != user_id:
            raise AuthorizationError("You do not have permission to modify this provider")
        return provider

    def toggle(self, user_id: Optional[str], provider_id: str) -> Dict[str, Any]:
        self._owned(user_id, provider_id)
        provider = self.store.toggle_active(provider_id)
        if provider is None:
            raise NotFoundError("Provider not found", details={"providerId": provider_id})
        return provider.to_dict()

    def delete(self, user_id: Optional[str], provider_id: str) -> Dict[str, Any]:
        self._owned(user_id, provider_id)
        provider = self.store.delete(provider_id)
        if provider is None:
            raise NotFoundError("Provider not found", details={"providerId": provider_id})
        return provider.to_dict()

    def list(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        return [provider.to_dict() for provider in self.store.list_for_user(user_id)]

    def tool_summary(self, user_id: Optional[str]) -> Dict[str, Any]:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        return self.store.tool_summary(user_id)
