"""Streaming events, reasoning-tag parsing and content aggregation."""

from agent_context.stream.aggregator import (
    AgentUpdatePart,
    ContentAggregator,
    ContentPart,
    SummaryPart,
    TextPart,
    ThinkPart,
    ToolCallPart,
)
from agent_context.stream.events import (
    CallbackSink,
    CollectingSink,
    EventKind,
    EventSink,
    FanoutSink,
    RunStep,
    StreamEvent,
    safe_dispatch,
)
from agent_context.stream.handler import StreamHandler
from agent_context.stream.thinking import ParsedChunk, Segment, ThinkingTagParser

__all__ = [
    "AgentUpdatePart",
    "CallbackSink",
    "CollectingSink",
    "ContentAggregator",
    "ContentPart",
    "EventKind",
    "EventSink",
    "FanoutSink",
    "ParsedChunk",
    "RunStep",
    "Segment",
    "StreamEvent",
    "StreamHandler",
    "SummaryPart",
    "TextPart",
    "ThinkPart",
    "ThinkingTagParser",
    "ToolCallPart",
    "safe_dispatch",
]
