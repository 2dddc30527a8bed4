"""Registration and description of external MCP tool providers."""

from .describer import ProviderDescription, describe_provider, fallback_description
from .registration import ProviderRegistry, ValidationReport, detect_capabilities

__all__ = [
    "ProviderDescription",
    "ProviderRegistry",
    "ValidationReport",
    "describe_provider",
    "detect_capabilities",
    "fallback_description",
]
