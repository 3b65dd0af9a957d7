"""Vendor-neutral message model.

Messages are ordered lists of discriminated content blocks. Provider
adapters map into and out of this model; pruning, truncation and
summarization only ever see these types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from agent_context.messages.truncation import TruncatedInput

Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class TextBlock:
    """Plain text content."""

    text: str
    type: Literal["text"] = "text"


@dataclass
class ReasoningBlock:
    """Model reasoning ("thinking") content."""

    text: str
    signature: str | None = None
    type: Literal["reasoning"] = "reasoning"


@dataclass
class ToolCallBlock:
    """A tool invocation requested by the assistant.

    ``input`` holds the parsed arguments, a raw argument string while it is
    still streaming, or a ``TruncatedInput`` marker after truncation.
    """

    id: str
    name: str
    input: dict[str, Any] | str | TruncatedInput = field(default_factory=dict)
    type: Literal["tool_call"] = "tool_call"


@dataclass
class ToolResultBlock:
    """Output of a tool invocation."""

    tool_call_id: str
    content: str
    status: Literal["success", "error"] = "success"
    type: Literal["tool_result"] = "tool_result"


ContentBlock = TextBlock | ReasoningBlock | ToolCallBlock | ToolResultBlock


@dataclass
class Message:
    """A single conversation message.

    Content is treated as immutable once produced by a model; only the
    truncation routines replace block content in place.
    """

    role: Role
    content: list[ContentBlock] = field(default_factory=list)
    id: str | None = None
    name: str | None = None
    tool_call_id: str | None = None

    @property
    def text(self) -> str:
        """Concatenated text blocks."""
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def reasoning(self) -> list[ReasoningBlock]:
        return [block for block in self.content if isinstance(block, ReasoningBlock)]

    @property
    def tool_calls(self) -> list[ToolCallBlock]:
        return [block for block in self.content if isinstance(block, ToolCallBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [block for block in self.content if isinstance(block, ToolResultBlock)]

    def has_tool_calls(self) -> bool:
        return self.role == "assistant" and any(isinstance(b, ToolCallBlock) for b in self.content)

    def result_call_ids(self) -> set[str]:
        """Tool-call ids answered by this message (tool messages only)."""
        if self.role != "tool":
            return set()
        ids = {block.tool_call_id for block in self.tool_results}
        if self.tool_call_id:
            ids.add(self.tool_call_id)
        return ids


@dataclass
class ToolCallChunk:
    """Fragment of a streamed tool call, keyed by position in the response."""

    index: int
    id: str | None = None
    name: str | None = None
    args: str | dict[str, Any] = ""


@dataclass
class MessageChunk:
    """A partial assistant message produced while streaming."""

    content: str = ""
    reasoning: str = ""
    tool_call_chunks: list[ToolCallChunk] = field(default_factory=list)
    id: str | None = None
    usage: dict[str, int] | None = None

    def is_empty(self) -> bool:
        return not (self.content or self.reasoning or self.tool_call_chunks)


def system_message(text: str) -> Message:
    """Create a system message."""
    return Message(role="system", content=[TextBlock(text=text)])


def summary_message(summary: str) -> Message:
    """System message carrying a conversation summary."""
    return system_message(f"## Conversation Summary\n\n{summary}")


def user_message(text: str, *, message_id: str | None = None) -> Message:
    """Create a user message."""
    return Message(role="user", content=[TextBlock(text=text)], id=message_id)


def assistant_message(
    text: str = "",
    *,
    tool_calls: list[ToolCallBlock] | None = None,
    reasoning: str | None = None,
    message_id: str | None = None,
) -> Message:
    """Create an assistant message with optional reasoning and tool calls."""
    content: list[ContentBlock] = []
    if reasoning:
        content.append(ReasoningBlock(text=reasoning))
    if text:
        content.append(TextBlock(text=text))
    content.extend(tool_calls or [])
    return Message(role="assistant", content=content, id=message_id)


def tool_message(
    tool_call_id: str,
    content: str,
    *,
    name: str | None = None,
    status: Literal["success", "error"] = "success",
) -> Message:
    """Create a tool-result message answering ``tool_call_id``."""
    return Message(
        role="tool",
        content=[ToolResultBlock(tool_call_id=tool_call_id, content=content, status=status)],
        name=name,
        tool_call_id=tool_call_id,
    )


def serialize_input(value: Any) -> str:
    """Canonical string form of a tool-call input."""
    if isinstance(value, str):
        return value
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        value = to_dict()
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def block_text(block: ContentBlock) -> str:
    """Text representation of a block used for sizing and hashing."""
    if isinstance(block, ToolCallBlock):
        return f"{block.name}{serialize_input(block.input)}"
    if isinstance(block, ToolResultBlock):
        return block.content
    return block.text


def message_text(message: Message) -> str:
    """All block content of ``message`` joined for sizing purposes."""
    return "\n".join(block_text(block) for block in message.content)
