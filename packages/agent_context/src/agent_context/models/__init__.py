"""Configuration and settings models."""

from agent_context.models.config import (
    ModelConfig,
    ProviderConfig,
    SummarizationConfig,
    TriggerConfig,
)
from agent_context.models.settings import Settings, load_settings

__all__ = [
    "ModelConfig",
    "ProviderConfig",
    "Settings",
    "SummarizationConfig",
    "TriggerConfig",
    "load_settings",
]
