from agent_context.agents import AgentContext
from agent_context.errors import (
    ContextError,
    EmptyContextError,
    ProviderOverflowError,
    SummarizationError,
    is_context_overflow_error,
    is_likely_context_overflow_error,
)
from agent_context.execution import (
    PreparedContext,
    invoke_with_overflow_recovery,
    prepare_context,
    stream_model_response,
)
from agent_context.messages import (
    Message,
    MessageChunk,
    PruneResult,
    TokenIndex,
    estimate_message_tokens,
    max_tool_result_chars,
    prune_messages,
    truncate_tool_result,
)
from agent_context.models import Settings, SummarizationConfig, TriggerConfig, load_settings
from agent_context.providers import ModelClient, ModelProviderRegistry, ProviderType
from agent_context.session import RunSession, StepKey, new_run_id
from agent_context.stream import ContentAggregator, StreamHandler, ThinkingTagParser
from agent_context.summarization import (
    SummaryBlock,
    run_summarization,
    should_summarize,
    summarize_messages,
)
from agent_context.utils import utc_timestamp

__all__ = [
    "AgentContext",
    "ContentAggregator",
    "ContextError",
    "EmptyContextError",
    "Message",
    "MessageChunk",
    "ModelClient",
    "ModelProviderRegistry",
    "PreparedContext",
    "ProviderOverflowError",
    "ProviderType",
    "PruneResult",
    "RunSession",
    "Settings",
    "StepKey",
    "StreamHandler",
    "SummarizationConfig",
    "SummarizationError",
    "SummaryBlock",
    "ThinkingTagParser",
    "TokenIndex",
    "TriggerConfig",
    "estimate_message_tokens",
    "invoke_with_overflow_recovery",
    "is_context_overflow_error",
    "is_likely_context_overflow_error",
    "load_settings",
    "max_tool_result_chars",
    "new_run_id",
    "prepare_context",
    "prune_messages",
    "run_summarization",
    "should_summarize",
    "stream_model_response",
    "summarize_messages",
    "truncate_tool_result",
    "utc_timestamp",
]
