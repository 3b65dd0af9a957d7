"""Summarization data models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agent_context.messages.models import Message


@dataclass(frozen=True)
class SummaryBoundary:
    """Position in the output content stream that a summary closes."""

    step_id: str
    content_index: int


@dataclass(frozen=True)
class SummaryBlock:
    """Versioned summary of a span of deferred messages.

    Starts as an empty placeholder when summarization begins and is replaced
    wholesale on success. On failure the placeholder keeps empty text and
    carries ``error``.
    """

    text: str = ""
    token_count: int = 0
    version: int = 0
    range_hash: str | None = None
    boundary: SummaryBoundary | None = None
    model: str | None = None
    provider: str | None = None
    created_at: str | None = None
    error: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return not self.text

    def with_error(self, error: str) -> SummaryBlock:
        return replace(self, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "text": self.text,
            "token_count": self.token_count,
            "version": self.version,
            "range_hash": self.range_hash,
            "model": self.model,
            "provider": self.provider,
            "created_at": self.created_at,
        }
        if self.boundary is not None:
            data["boundary"] = {
                "step_id": self.boundary.step_id,
                "content_index": self.boundary.content_index,
            }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SummarizeRequest:
    """Backlog handed from pruning to the summarization engine."""

    agent_id: str
    messages_to_refine: list[Message] = field(default_factory=list)
