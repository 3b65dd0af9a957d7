"""Model client backed by a Strands model.

Maps vendor-neutral messages to Strands ``Messages`` and Strands stream
events back to ``MessageChunk``s. Strands already normalizes Bedrock,
Anthropic, OpenAI and Ollama wire formats into one event shape.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from agent_context.messages.models import (
    ContentBlock,
    Message,
    MessageChunk,
    ReasoningBlock,
    TextBlock,
    ToolCallBlock,
    ToolCallChunk,
    ToolResultBlock,
)
from agent_context.messages.truncation import TruncatedInput

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from strands.models.model import Model

    from agent_context.providers.base import ToolSpec

logger = logging.getLogger(__name__)


def _to_strands_block(block: ContentBlock) -> dict[str, Any] | None:
    if isinstance(block, TextBlock):
        return {"text": block.text} if block.text else None
    if isinstance(block, ReasoningBlock):
        reasoning_text: dict[str, Any] = {"text": block.text}
        if block.signature:
            reasoning_text["signature"] = block.signature
        return {"reasoningContent": {"reasoningText": reasoning_text}}
    if isinstance(block, ToolCallBlock):
        tool_input: Any = block.input
        if isinstance(tool_input, TruncatedInput):
            tool_input = tool_input.to_dict()
        elif isinstance(tool_input, str):
            tool_input = {"input": tool_input}
        return {"toolUse": {"toolUseId": block.id, "name": block.name, "input": tool_input}}
    if isinstance(block, ToolResultBlock):
        return {
            "toolResult": {
                "toolUseId": block.tool_call_id,
                "status": block.status,
                "content": [{"text": block.content}],
            }
        }
    return None


def to_strands_messages(messages: Sequence[Message]) -> tuple[list[dict[str, Any]], str | None]:
    """Convert messages to Strands format.

    System messages become the system prompt. Tool results travel in user
    turns, and consecutive turns of the same role are merged.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            if message.text:
                system_parts.append(message.text)
            continue
        role = "assistant" if message.role == "assistant" else "user"
        content = [b for b in (_to_strands_block(block) for block in message.content) if b]
        if not content:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(content)
        else:
            converted.append({"role": role, "content": content})
    return converted, "\n\n".join(system_parts) or None


def _parse_args(args: str | dict[str, Any]) -> str | dict[str, Any]:
    if not isinstance(args, str):
        return args
    if not args.strip():
        return {}
    try:
        parsed = json.loads(args)
    except json.JSONDecodeError:
        logger.debug("Tool call arguments are not valid JSON; keeping raw text")
        return args
    return parsed if isinstance(parsed, dict) else args


def _usage_from_metadata(metadata: dict[str, Any]) -> dict[str, int] | None:
    usage = metadata.get("usage")
    if not isinstance(usage, dict):
        return None
    return {
        "input_tokens": int(usage.get("inputTokens", 0)),
        "output_tokens": int(usage.get("outputTokens", 0)),
        "cache_read_input_tokens": int(usage.get("cacheReadInputTokens", 0)),
        "cache_creation_input_tokens": int(usage.get("cacheWriteInputTokens", 0)),
    }


class StrandsModelClient:
    """``ModelClient`` implementation wrapping a Strands ``Model``."""

    def __init__(
        self,
        model: Model,
        *,
        provider: str,
        model_name: str | None = None,
        tool_specs: list[ToolSpec] | None = None,
    ) -> None:
        self._model = model
        self.provider = provider
        self.model = model_name
        self.tool_specs = list(tool_specs or [])

    def bind_tools(self, tools: list[ToolSpec]) -> StrandsModelClient:
        return StrandsModelClient(
            self._model,
            provider=self.provider,
            model_name=self.model,
            tool_specs=tools,
        )

    async def stream(self, messages: list[Message], **options: Any) -> AsyncIterator[MessageChunk]:
        """Stream a response as ``MessageChunk``s."""
        strands_messages, system_prompt = to_strands_messages(messages)
        tool_index = -1
        async for event in self._model.stream(
            strands_messages,
            tool_specs=self.tool_specs or None,
            system_prompt=system_prompt,
            **options,
        ):
            if "contentBlockStart" in event:
                tool_use = event["contentBlockStart"].get("start", {}).get("toolUse")
                if tool_use:
                    tool_index += 1
                    yield MessageChunk(
                        tool_call_chunks=[
                            ToolCallChunk(
                                index=tool_index,
                                id=tool_use.get("toolUseId"),
                                name=tool_use.get("name"),
                            )
                        ]
                    )
            elif "contentBlockDelta" in event:
                delta = event["contentBlockDelta"].get("delta", {})
                if "text" in delta:
                    yield MessageChunk(content=delta["text"])
                elif "reasoningContent" in delta:
                    text = delta["reasoningContent"].get("text", "")
                    if text:
                        yield MessageChunk(reasoning=text)
                elif "toolUse" in delta and tool_index >= 0:
                    args = delta["toolUse"].get("input", "")
                    chunk = ToolCallChunk(index=tool_index, args=args)
                    yield MessageChunk(tool_call_chunks=[chunk])
            elif "metadata" in event:
                usage = _usage_from_metadata(event["metadata"])
                if usage:
                    yield MessageChunk(usage=usage)

    async def invoke(self, messages: list[Message], **options: Any) -> Message:
        """Run the model and assemble the complete assistant message."""
        text: list[str] = []
        reasoning: list[str] = []
        tool_calls: dict[int, ToolCallChunk] = {}
        async for chunk in self.stream(messages, **options):
            text.append(chunk.content)
            reasoning.append(chunk.reasoning)
            for part in chunk.tool_call_chunks:
                existing = tool_calls.setdefault(part.index, ToolCallChunk(index=part.index))
                existing.id = existing.id or part.id
                existing.name = existing.name or part.name
                if isinstance(existing.args, str) and isinstance(part.args, str):
                    existing.args += part.args
                else:
                    existing.args = part.args

        content: list[ContentBlock] = []
        if "".join(reasoning):
            content.append(ReasoningBlock(text="".join(reasoning)))
        if "".join(text):
            content.append(TextBlock(text="".join(text)))
        for index in sorted(tool_calls):
            call = tool_calls[index]
            tool_call_id = call.id or f"call_{index}"
            args = _parse_args(call.args)
            content.append(ToolCallBlock(id=tool_call_id, name=call.name or "", input=args))
        return Message(role="assistant", content=content)
