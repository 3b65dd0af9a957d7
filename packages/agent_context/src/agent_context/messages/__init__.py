"""Message model, token accounting, pruning and truncation."""

from agent_context.messages.models import (
    ContentBlock,
    Message,
    MessageChunk,
    ReasoningBlock,
    TextBlock,
    ToolCallBlock,
    ToolCallChunk,
    ToolResultBlock,
    assistant_message,
    summary_message,
    system_message,
    tool_message,
    user_message,
)
from agent_context.messages.prune import (
    REPLY_PRIMING_TOKENS,
    PruneResult,
    effective_budget,
    format_token_budget_breakdown,
    group_messages,
    prune_messages,
)
from agent_context.messages.tokens import (
    TokenCounter,
    TokenIndex,
    calibrate_token_index,
    estimate_message_tokens,
    estimate_tokens,
    total_usage_tokens,
)
from agent_context.messages.truncation import (
    EMERGENCY_MAX_CHARS,
    HARD_MAX_TOOL_RESULT_CHARS,
    MIN_TOOL_RESULT_CHARS,
    TruncatedInput,
    emergency_truncate,
    max_tool_result_chars,
    preflight_truncate,
    truncate_for_overflow,
    truncate_input,
    truncate_tool_result,
)

__all__ = [
    "EMERGENCY_MAX_CHARS",
    "HARD_MAX_TOOL_RESULT_CHARS",
    "MIN_TOOL_RESULT_CHARS",
    "REPLY_PRIMING_TOKENS",
    "ContentBlock",
    "Message",
    "MessageChunk",
    "PruneResult",
    "ReasoningBlock",
    "TextBlock",
    "TokenCounter",
    "TokenIndex",
    "ToolCallBlock",
    "ToolCallChunk",
    "ToolResultBlock",
    "TruncatedInput",
    "assistant_message",
    "calibrate_token_index",
    "effective_budget",
    "emergency_truncate",
    "estimate_message_tokens",
    "estimate_tokens",
    "format_token_budget_breakdown",
    "group_messages",
    "max_tool_result_chars",
    "preflight_truncate",
    "prune_messages",
    "summary_message",
    "system_message",
    "tool_message",
    "total_usage_tokens",
    "truncate_for_overflow",
    "truncate_input",
    "truncate_tool_result",
    "user_message",
]
