from __future__ import annotations

import pytest
from agent_context.agents import AgentContext
from agent_context.messages import MessageChunk, ReasoningBlock, TextBlock, ToolCallChunk
from agent_context.session import RunSession
from agent_context.stream import (
    CollectingSink,
    ContentAggregator,
    FanoutSink,
    StreamHandler,
    TextPart,
    ThinkPart,
    ToolCallPart,
)


async def _chunks(items: list[MessageChunk]):
    for item in items:
        yield item


@pytest.fixture
def aggregator() -> ContentAggregator:
    return ContentAggregator()


@pytest.fixture
def collector() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def session(aggregator: ContentAggregator, collector: CollectingSink) -> RunSession:
    run = RunSession(run_id="run_stream", sink=FanoutSink([collector, aggregator]))
    run.add_agent_context(AgentContext(agent_id="agent-1"))
    return run


@pytest.mark.asyncio
async def test_tagged_reasoning_splits_into_two_parts(
    session: RunSession, aggregator: ContentAggregator
) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))
    chunks = [MessageChunk(content=c) for c in ["<think>", "I am thinking", "</think>", "Answer"]]

    message = await handler.consume(_chunks(chunks))

    assert aggregator.get_content() == [ThinkPart(think="I am thinking"), TextPart(text="Answer")]
    assert message.role == "assistant"
    assert message.content == [ReasoningBlock(text="I am thinking"), TextBlock(text="Answer")]


@pytest.mark.asyncio
async def test_native_reasoning_field(session: RunSession, aggregator: ContentAggregator) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))
    chunks = [
        MessageChunk(reasoning="step one, "),
        MessageChunk(reasoning="step two"),
        MessageChunk(content="Result", id="msg_1", usage={"input_tokens": 12}),
    ]

    message = await handler.consume(_chunks(chunks))

    assert aggregator.get_content() == [
        ThinkPart(think="step one, step two"),
        TextPart(text="Result"),
    ]
    assert message.id == "msg_1"
    assert handler.usage == {"input_tokens": 12}
    assert session.get_agent_context("agent-1").last_usage == {"input_tokens": 12}


@pytest.mark.asyncio
async def test_tool_call_arguments_resolve_to_dict(
    session: RunSession, aggregator: ContentAggregator
) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))
    chunks = [
        MessageChunk(content="Let me search."),
        MessageChunk(tool_call_chunks=[ToolCallChunk(index=0, id="call_1", name="search")]),
        MessageChunk(tool_call_chunks=[ToolCallChunk(index=0, args='{"q": ')]),
        MessageChunk(tool_call_chunks=[ToolCallChunk(index=0, args='"docs"}')]),
    ]

    message = await handler.consume(_chunks(chunks))

    [call] = message.tool_calls
    assert call.id == "call_1"
    assert call.name == "search"
    assert call.input == {"q": "docs"}
    assert "call_1" in session.tool_call_step_ids

    session.dispatch_step_completed("call_1", name="search", output="3 hits")

    content = aggregator.get_content()
    assert content[0] == TextPart(text="Let me search.")
    assert content[1] == ToolCallPart(
        id="call_1", name="search", args={"q": "docs"}, output="3 hits", progress=1.0
    )


@pytest.mark.asyncio
async def test_invalid_json_arguments_are_kept_raw(session: RunSession) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))
    chunks = [
        MessageChunk(tool_call_chunks=[ToolCallChunk(index=0, id="c1", name="run", args="{bad")]),
    ]

    message = await handler.consume(_chunks(chunks))

    assert message.tool_calls[0].input == "{bad"


@pytest.mark.asyncio
async def test_missing_tool_call_id_gets_fallback(session: RunSession) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))
    chunks = [
        MessageChunk(id="m1", tool_call_chunks=[ToolCallChunk(index=0, name="noop")]),
    ]

    message = await handler.consume(_chunks(chunks))

    assert message.tool_calls[0].id == "call_m1_0"
    assert message.tool_calls[0].input == {}


@pytest.mark.asyncio
async def test_parallel_tool_calls_get_separate_steps(
    session: RunSession, collector: CollectingSink
) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))
    chunks = [
        MessageChunk(
            tool_call_chunks=[
                ToolCallChunk(index=0, id="a", name="one", args="{}"),
                ToolCallChunk(index=1, id="b", name="two", args="{}"),
            ]
        ),
    ]

    await handler.consume(_chunks(chunks))

    steps = [event.payload["step"] for event in collector.of_kind("step_created")]
    assert [step.step_kind for step in steps] == ["tool_calls", "tool_calls"]
    assert session.tool_call_step_ids["a"] != session.tool_call_step_ids["b"]


@pytest.mark.asyncio
async def test_held_back_text_is_flushed(
    session: RunSession, aggregator: ContentAggregator
) -> None:
    handler = StreamHandler(session, session.get_agent_context("agent-1"))

    message = await handler.consume(_chunks([MessageChunk(content="a <thi")]))

    assert message.text == "a <thi"
    assert aggregator.get_content() == [TextPart(text="a <thi")]
