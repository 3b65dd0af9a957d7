"""Per-agent context state."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_context.messages.models import summary_message as build_summary_message
from agent_context.messages.prune import effective_budget, format_token_budget_breakdown
from agent_context.messages.tokens import TokenIndex, estimate_message_tokens
from agent_context.stream.thinking import ThinkingTagParser

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.messages.models import Message
    from agent_context.messages.tokens import TokenCounter
    from agent_context.models.config import SummarizationConfig
    from agent_context.models.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class AgentContext:
    """Budget, summary and streaming state for one agent within a run.

    The owning ``RunSession`` keeps contexts by ``agent_id``; a context never
    holds a reference back to its session.
    """

    agent_id: str
    provider: str | None = None
    model: str | None = None
    max_context_tokens: int | None = None
    token_counter: TokenCounter = estimate_message_tokens
    summarization: SummarizationConfig | None = None
    reserve_ratio: float = 0.0
    instruction_tokens: int = 0
    thinking_enabled: bool = False
    max_overflow_recovery_attempts: int = 3
    fallback_models: list[str] = field(default_factory=list)
    token_index: TokenIndex = field(default_factory=TokenIndex)
    thinking: ThinkingTagParser = field(default_factory=ThinkingTagParser)
    summary_text: str | None = None
    previous_summary_text: str | None = None
    summary_version: int = 0
    summary_token_count: int = 0
    last_summary_range_hash: str | None = None
    overflow_attempts: int = 0
    last_usage: dict[str, Any] | None = None
    last_prompt_range: tuple[int, int] | None = None

    @classmethod
    def from_settings(cls, agent_id: str, settings: Settings, **overrides: object) -> AgentContext:
        """Create a context from loaded settings, with per-agent overrides."""
        values: dict[str, object] = {
            "model": settings.default_model,
            "max_context_tokens": settings.max_context_tokens,
            "summarization": settings.summarization,
            "reserve_ratio": settings.reserve_ratio,
            "thinking_enabled": settings.thinking_enabled,
            "max_overflow_recovery_attempts": settings.max_overflow_recovery_attempts,
            "fallback_models": list(settings.fallback_models),
        }
        values.update(overrides)
        return cls(agent_id=agent_id, **values)  # type: ignore[arg-type]

    def get_summary_text(self) -> str | None:
        return self.summary_text

    def set_summary(self, text: str, token_count: int) -> int:
        """Store a new summary and return its version."""
        self.previous_summary_text = self.summary_text
        self.summary_text = text
        self.summary_token_count = token_count
        self.summary_version += 1
        logger.info(
            "Agent %s summary v%d stored (%d tokens)",
            self.agent_id,
            self.summary_version,
            token_count,
        )
        return self.summary_version

    def summary_message(self) -> Message | None:
        """System message carrying the current summary, if any."""
        if not self.summary_text:
            return None
        return build_summary_message(self.summary_text)

    def total_instruction_tokens(self) -> int:
        """Instruction overhead prepended after pruning, including the summary."""
        return self.instruction_tokens + self.summary_token_count

    def effective_budget(self) -> int:
        if self.max_context_tokens is None:
            return 0
        return effective_budget(
            self.max_context_tokens, self.reserve_ratio, self.total_instruction_tokens()
        )

    def record_usage(self, usage: dict[str, Any] | None) -> None:
        """Keep the provider usage of the latest call for the next prune."""
        if usage:
            self.last_usage = usage

    def can_recover_from_overflow(self) -> bool:
        return self.overflow_attempts < self.max_overflow_recovery_attempts

    def increment_overflow_attempts(self) -> int:
        self.overflow_attempts += 1
        return self.overflow_attempts

    def reset_overflow_recovery(self) -> None:
        self.overflow_attempts = 0

    def format_token_budget_breakdown(self, messages: Sequence[Message]) -> str:
        counts = self.token_index.fill(messages, self.token_counter)
        return format_token_budget_breakdown(messages, counts, self.effective_budget())

    def reset(self) -> None:
        """Clear per-run state; summaries survive across runs."""
        self.token_index = TokenIndex()
        self.thinking.reset()
        self.overflow_attempts = 0
        self.last_usage = None
        self.last_prompt_range = None
