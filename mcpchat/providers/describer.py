import logging
from typing import Mapping
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from ..agent.models import ModelProvider
from ..tools.codec import ToolDescriptor, tool_lines

logger = logging.getLogger(__name__)


class ProviderDescription(BaseModel):
    name: str = Field(..., description="A descriptive, professional name for the MCP server")
    description: str = Field(..., description="A clear, concise and very brief description of what the MCP server does")


def _host(url: str) -> str:
    return urlparse(url).hostname or url


def fallback_description(url: str, tools: Mapping[str, ToolDescriptor]) -> ProviderDescription:
    return ProviderDescription(
        name=f"MCP server at {_host(url)}",
        description=f"MCP server with {len(tools)} tools available.",
    )


def describe_prompt(url: str, tools: Mapping[str, ToolDescriptor]) -> str:
    parsed = urlparse(url)
    listing = "\n".join(tool_lines(tools)) or "(no tools reported)"
    return (
        "Create a professional name and description for an MCP (Model Context Protocol) server "
        "based on the following information:\n\n"
        f"URL: {url}\n"
        f"Domain: {parsed.hostname or ''}\n"
        f"Path: {parsed.path or '/'}\n\n"
        f"Available tools:\n{listing}\n\n"
        "Use the domain to build a descriptive name. For example, if the tools deal with Google Calendar "
        'and the domain belongs to Zapier, the name could be "Google Calendar MCP (Zapier)". '
        "Look at the tool names and the URL to understand the purpose of the server. "
        "The name must be concise and descriptive; the description must clearly explain what the server does."
    )


async def describe_provider(
    url: str,
    tools: Mapping[str, ToolDescriptor],
    model_provider: ModelProvider,
    model_id: str,
) -> ProviderDescription:
    """Synthesize a name and description for a provider that did not report one.

    Never raises: any failure falls back to a name built from the URL host.
    """
    try:
        described = await model_provider.generate_object(model_id, describe_prompt(url, tools), ProviderDescription)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Auto-description failed for %s, using fallback: %s", url, exc)
        return fallback_description(url, tools)

    fallback = fallback_description(url, tools)
    return ProviderDescription(
        name=described.name.strip() or fallback.name,
        description=described.description.strip() or fallback.description,
    )
