"""Summarization trigger, prompt formatting and engine."""

from agent_context.summarization.models import SummarizeRequest, SummaryBlock, SummaryBoundary
from agent_context.summarization.formatting import (
    FieldLimits,
    compute_range_hash,
    format_message,
    format_messages,
    split_messages_by_char_share,
)
from agent_context.summarization.trigger import should_summarize
from agent_context.summarization.engine import (
    DEFAULT_SUMMARIZATION_PROMPT,
    MERGE_PROMPT,
    run_summarization,
    summarize_in_stages,
    summarize_messages,
    summarize_single_pass,
)

__all__ = [
    "DEFAULT_SUMMARIZATION_PROMPT",
    "MERGE_PROMPT",
    "FieldLimits",
    "SummarizeRequest",
    "SummaryBlock",
    "SummaryBoundary",
    "compute_range_hash",
    "format_message",
    "format_messages",
    "run_summarization",
    "should_summarize",
    "split_messages_by_char_share",
    "summarize_in_stages",
    "summarize_messages",
    "summarize_single_pass",
]
