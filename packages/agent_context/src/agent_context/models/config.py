"""Pydantic models for configuration schema."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

TriggerKind = Literal["token_ratio", "remaining_tokens", "messages_to_refine"]

# Keys accepted in summarization ``parameters`` that configure the engine
# rather than the model call.
SUMMARIZATION_ONLY_PARAMETERS: frozenset[str] = frozenset(
    {
        "parts",
        "min_messages_for_split",
        "minMessagesForSplit",
        "max_input_tokens_for_single_pass",
        "maxInputTokensForSinglePass",
    }
)


class ModelConfig(BaseModel, frozen=True):
    """Configuration for a specific model."""

    model_id: str
    temperature: float = 0.7
    max_tokens: int | None = None
    max_context_tokens: int | None = None
    streaming: bool = True
    extra: dict[str, Any] = Field(default_factory=dict)


class ProviderConfig(BaseModel, frozen=True):
    """Configuration for a model provider."""

    type: str  # bedrock, anthropic, openai, ollama
    region: str | None = None
    api_key_env: str | None = None  # Environment variable name for API key
    default: bool = False
    models: dict[str, ModelConfig] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)


class TriggerConfig(BaseModel, frozen=True):
    """When the deferred backlog should be summarized.

    ``kind`` is kept as a free string so unknown kinds can be loaded and
    then ignored by the trigger instead of failing configuration.
    """

    kind: str
    value: float


class SummarizationConfig(BaseModel, frozen=True):
    """Summarization model call and splitting options."""

    enabled: bool = True
    provider: str | None = None
    model: str | None = None
    prompt: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    parts: int = 1
    min_messages_for_split: int = 4
    stream: bool = True
    trigger: TriggerConfig | None = None
    max_input_chars: int = 20_000

    @field_validator("parts", "min_messages_for_split")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            msg = "must be at least 1"
            raise ValueError(msg)
        return value

    def model_parameters(self) -> dict[str, Any]:
        """Parameters forwarded to the model client."""
        return {
            key: value
            for key, value in self.parameters.items()
            if key not in SUMMARIZATION_ONLY_PARAMETERS
        }

    def resolved_parts(self) -> int:
        value = self.parameters.get("parts", self.parts)
        return max(1, int(value))

    def resolved_min_messages_for_split(self) -> int:
        value = self.parameters.get(
            "min_messages_for_split",
            self.parameters.get("minMessagesForSplit", self.min_messages_for_split),
        )
        return max(1, int(value))

    def model_reference(self) -> str | None:
        """``provider.model`` reference, when both are configured."""
        if self.provider and self.model:
            return f"{self.provider}.{self.model}"
        return self.model
