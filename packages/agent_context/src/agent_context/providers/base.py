"""Model client capability interface."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from agent_context.messages.models import Message, MessageChunk

ToolSpec = dict[str, Any]


class ProviderType(str, Enum):
    """Supported provider adapters."""

    BEDROCK = "bedrock"
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"

    @classmethod
    def parse(cls, value: str) -> ProviderType:
        """Parse a provider tag, failing with the list of supported tags."""
        try:
            return cls(value.lower())
        except ValueError:
            supported = [member.value for member in cls]
            msg = f"Unsupported provider type '{value}'. Supported types: {supported}"
            raise ValueError(msg) from None


@runtime_checkable
class ModelClient(Protocol):
    """What this package needs from a model provider.

    ``stream`` yields partial assistant messages in arrival order. Abort
    handling belongs to the client; callers cancel the consuming task.
    """

    provider: str
    model: str | None

    async def invoke(self, messages: list[Message], **options: Any) -> Message:
        """Run a blocking call and return the complete assistant message."""
        ...

    def stream(self, messages: list[Message], **options: Any) -> AsyncIterator[MessageChunk]:
        """Run a streaming call."""
        ...

    def bind_tools(self, tools: list[ToolSpec]) -> ModelClient:
        """Return a client that offers ``tools`` to the model."""
        ...
