"""Model provider registry and adapters.

Providers are configured declaratively in providers.toml and turned into
``ModelClient`` instances backed by Strands models.
"""

from agent_context.providers.base import ModelClient, ProviderType, ToolSpec
from agent_context.providers.registry import (
    ModelProviderRegistry,
    get_default_registry,
    load_providers,
    reset_default_registry,
)
from agent_context.providers.strands_client import StrandsModelClient, to_strands_messages

__all__ = [
    "ModelClient",
    "ModelProviderRegistry",
    "ProviderType",
    "StrandsModelClient",
    "ToolSpec",
    "get_default_registry",
    "load_providers",
    "reset_default_registry",
    "to_strands_messages",
]
