"""External tool-provider (MCP) connections."""
from .manager import ClientFactory, ProviderConnectionManager
from .storage import ProviderStorage
from .types import (
    ConfigOrigin,
    ProviderConfig,
    ProviderResource,
    ProviderStatus,
    ProviderTool,
    TransportKind,
    parse_system_configs,
)

__all__ = [
    "ClientFactory",
    "ConfigOrigin",
    "ProviderConfig",
    "ProviderConnectionManager",
    "ProviderResource",
    "ProviderStatus",
    "ProviderStorage",
    "ProviderTool",
    "TransportKind",
    "parse_system_configs",
]
