"""Tool registry and MCP provider integration package.

Public surface is re-exported here so callers can keep using
`from mcpchat.tools import ToolRegistry, ToolAggregator`, etc.
"""

from .aggregator import AggregationResult, ProviderStatus, RemoteTool, ToolAggregator
from .codec import ToolDescriptor, describe_tool, describe_tools, tool_table_to_json
from .connector import (
    ProviderConnector,
    ProviderListing,
    ProviderSpec,
    ProviderUnavailable,
    ServerInfo,
)
from .local import local_tools
from .registry import AgentTool, ToolRegistry, build_capability_set

__all__ = [
    "AgentTool",
    "AggregationResult",
    "ProviderConnector",
    "ProviderListing",
    "ProviderSpec",
    "ProviderStatus",
    "ProviderUnavailable",
    "RemoteTool",
    "ServerInfo",
    "ToolAggregator",
    "ToolDescriptor",
    "ToolRegistry",
    "build_capability_set",
    "describe_tool",
    "describe_tools",
    "local_tools",
    "tool_table_to_json",
]
