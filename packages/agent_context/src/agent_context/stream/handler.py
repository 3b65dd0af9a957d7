"""Convert streamed model chunks into run-step events."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from agent_context.messages.models import (
    ContentBlock,
    Message,
    ReasoningBlock,
    TextBlock,
    ToolCallBlock,
)
from agent_context.telemetry.logging_utils import bind_run_context

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from agent_context.agents.context import AgentContext
    from agent_context.messages.models import MessageChunk, ToolCallChunk
    from agent_context.session import RunSession, StepKey
    from agent_context.stream.events import RunStep
    from agent_context.stream.thinking import ParsedChunk

logger = logging.getLogger(__name__)

_ActiveKind = Literal["text", "think", "tool"]


class StreamHandler:
    """Dispatches one model response for one agent into a ``RunSession``.

    Reasoning and answer text always land in separate message steps: each
    change between reasoning, text and tool calls advances the step-key
    phase so the next segment opens a new step after the previous one.
    """

    def __init__(
        self,
        session: RunSession,
        agent_context: AgentContext,
        *,
        node: str = "agent",
        execution_step: int = 0,
        checkpoint_ns: str = "",
    ) -> None:
        self.session = session
        self.agent_context = agent_context
        self.node = node
        self.execution_step = execution_step
        self.checkpoint_ns = checkpoint_ns
        self.parser = agent_context.thinking
        self.parser.reset()
        self.message_id: str | None = None
        self.usage: dict[str, int] | None = None
        self._phase = 0
        self._active: _ActiveKind | None = None
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._tool_steps: dict[int, str] = {}
        self._tool_ids: dict[int, str] = {}
        self._tool_names: dict[int, str] = {}
        self._tool_args: dict[int, str | dict[str, Any]] = {}
        bind_run_context(agent_id=agent_context.agent_id)

    def step_key(self, suffix: str | None = None) -> StepKey:
        phase = str(self._phase) if suffix is None else f"{self._phase}:{suffix}"
        return self.session.step_key(
            f"{self.node}:{self.agent_context.agent_id}",
            self.execution_step,
            checkpoint_ns=self.checkpoint_ns,
            phase=phase,
        )

    def handle_chunk(self, chunk: MessageChunk) -> None:
        """Process one chunk; chunks must be fed in arrival order."""
        if chunk.id and self.message_id is None:
            self.message_id = chunk.id
        if chunk.usage:
            self.usage = chunk.usage
        if chunk.reasoning:
            self._dispatch_parsed(self.parser.feed_reasoning(chunk.reasoning))
        for tool_chunk in chunk.tool_call_chunks:
            self._handle_tool_call_chunk(tool_chunk)
        if chunk.content:
            self._dispatch_parsed(self.parser.feed(chunk.content))

    def finish(self) -> Message:
        """Flush held-back text, resolve tool-call arguments and build the message."""
        self._dispatch_parsed(self.parser.flush())
        self.agent_context.record_usage(self.usage)

        content: list[ContentBlock] = []
        reasoning = "".join(self._reasoning)
        if reasoning:
            content.append(ReasoningBlock(text=reasoning))
        text = "".join(self._text)
        if text:
            content.append(TextBlock(text=text))

        for index in sorted(self._tool_steps):
            args = self._resolve_args(index)
            fallback_id = f"call_{self.message_id or 'stream'}_{index}"
            tool_call_id = self._tool_ids.get(index) or fallback_id
            content.append(
                ToolCallBlock(id=tool_call_id, name=self._tool_names.get(index, ""), input=args)
            )
        return Message(role="assistant", content=content, id=self.message_id)

    async def consume(self, chunks: AsyncIterator[MessageChunk]) -> Message:
        """Handle a whole chunk stream and return the assembled assistant message."""
        async for chunk in chunks:
            self.handle_chunk(chunk)
        return self.finish()

    def _message_step(self, kind: _ActiveKind) -> RunStep:
        if self._active is not None and self._active != kind:
            self._phase += 1
        self._active = kind
        return self.session.dispatch_run_step(
            self.step_key(), "message", agent_id=self.agent_context.agent_id
        )

    def _dispatch_parsed(self, parsed: ParsedChunk) -> None:
        for segment in parsed.segments:
            step = self._message_step(segment.type)
            if segment.type == "think":
                self._reasoning.append(segment.text)
                self.session.dispatch_reasoning_delta(step.id, segment.text)
            else:
                self._text.append(segment.text)
                self.session.dispatch_message_delta(step.id, segment.text)

    def _handle_tool_call_chunk(self, tool_chunk: ToolCallChunk) -> None:
        index = tool_chunk.index
        step_id = self._tool_steps.get(index)
        if step_id is None:
            if self._active is not None and self._active != "tool":
                self._phase += 1
            self._active = "tool"
            step = self.session.dispatch_run_step(
                self.step_key(f"tool:{index}"),
                "tool_calls",
                agent_id=self.agent_context.agent_id,
                tool_call_ids=[tool_chunk.id] if tool_chunk.id else None,
            )
            step_id = step.id
            self._tool_steps[index] = step_id

        if tool_chunk.id:
            self._tool_ids.setdefault(index, tool_chunk.id)
        if tool_chunk.name:
            self._tool_names.setdefault(index, tool_chunk.name)
        current = self._tool_args.get(index, "")
        if isinstance(current, str) and isinstance(tool_chunk.args, str):
            self._tool_args[index] = current + tool_chunk.args
        elif tool_chunk.args not in ("", None):
            self._tool_args[index] = tool_chunk.args

        self.session.dispatch_tool_call_delta(
            step_id,
            tool_call_id=tool_chunk.id,
            name=tool_chunk.name,
            args=tool_chunk.args,
            index=index,
        )

    def _resolve_args(self, index: int) -> dict[str, Any] | str:
        args = self._tool_args.get(index, "")
        if not isinstance(args, str):
            return args
        if not args.strip():
            resolved: dict[str, Any] | str = {}
        else:
            try:
                resolved = json.loads(args)
            except json.JSONDecodeError:
                logger.debug("Tool call %d arguments are not valid JSON; keeping raw text", index)
                return args
        if isinstance(resolved, dict):
            self.session.dispatch_tool_call_delta(
                self._tool_steps[index],
                tool_call_id=self._tool_ids.get(index),
                name=self._tool_names.get(index),
                args=resolved,
                index=index,
            )
            return resolved
        return args
