"""Chat service that streams model output over tools aggregated from MCP providers."""

__version__ = "0.1.0"
