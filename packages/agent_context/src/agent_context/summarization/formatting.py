"""Render deferred messages as compact text for a summarization prompt.

Tool-call arguments are mostly code or configuration and carry little
signal, so they get the tightest per-field cap. Tool results and
conversation text carry the substance and get more room.
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agent_context.messages.models import ToolCallBlock, message_text, serialize_input
from agent_context.messages.truncation import TruncatedInput

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.messages.models import Message


@dataclass(frozen=True)
class FieldLimits:
    """Per-field character caps."""

    tool_arg: int = 200
    tool_result: int = 800
    message_content: int = 600


DEFAULT_LIMITS = FieldLimits()
DEFAULT_BUDGET_CHARS = 20_000
MIN_MESSAGE_ALLOWANCE = 80


def truncate(text: str, max_len: int) -> str:
    """Cut ``text`` to ``max_len`` characters, noting the original length."""
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}… [truncated, {len(text)} chars total]"


def format_tool_args(args: Any, limit: int = DEFAULT_LIMITS.tool_arg) -> str:
    """Compact ``key: value`` rendering of tool-call arguments."""
    if isinstance(args, TruncatedInput):
        args = args.to_dict()
    if isinstance(args, str):
        return truncate(args, limit) if args else ""
    if not isinstance(args, dict):
        return ""
    parts = []
    for key, value in args.items():
        if value is None:
            continue
        value_text = value if isinstance(value, str) else json.dumps(value, default=str)
        parts.append(f"{key}: {truncate(value_text, limit)}")
    return ", ".join(parts)


def format_message(message: Message, limits: FieldLimits = DEFAULT_LIMITS) -> str:
    """Render one message with per-field caps applied."""
    if message.role == "tool":
        name = message.name or "unknown"
        content = "\n".join(block.content for block in message.tool_results) or message.text
        return f"[tool_result: {name}] → {truncate(content, limits.tool_result)}"

    if message.role == "assistant" and message.tool_calls:
        parts: list[str] = []
        text = message.text.strip()
        if text:
            parts.append(truncate(text, limits.message_content))
        for block in message.content:
            if isinstance(block, ToolCallBlock):
                args = format_tool_args(block.input, limits.tool_arg)
                parts.append(f"[tool_call: {block.name}({args})]")
        body = "\n".join(parts)
        return f"[assistant]: {body}"

    content = message.text or message_text(message)
    return f"[{message.role}]: {truncate(content, limits.message_content)}"


def format_messages(
    messages: Sequence[Message],
    budget_chars: int = DEFAULT_BUDGET_CHARS,
    limits: FieldLimits = DEFAULT_LIMITS,
) -> str:
    """Render messages within a total character budget.

    When over budget every message is trimmed in proportion, keeping at
    least a small allowance each, so none is dropped outright.
    """
    formatted = [format_message(message, limits) for message in messages]
    total_chars = sum(len(text) for text in formatted)
    if total_chars <= budget_chars:
        return "\n".join(formatted)

    ratio = budget_chars / total_chars
    trimmed = [
        truncate(text, max(MIN_MESSAGE_ALLOWANCE, math.floor(len(text) * ratio)))
        for text in formatted
    ]
    return "\n".join(trimmed)


def _message_weight(message: Message) -> int:
    return len(message_text(message))


def split_messages_by_char_share(messages: Sequence[Message], parts: int) -> list[list[Message]]:
    """Split into at most ``parts`` contiguous chunks of similar character weight.

    Chronological order is preserved; the last chunk takes the remainder.
    """
    if not messages or parts <= 1:
        return [list(messages)]
    parts = min(parts, len(messages))
    weights = [_message_weight(message) for message in messages]
    target = sum(weights) / parts

    chunks: list[list[Message]] = []
    current: list[Message] = []
    current_weight = 0
    for message, weight in zip(messages, weights, strict=True):
        current.append(message)
        current_weight += weight
        if current_weight >= target and len(chunks) < parts - 1:
            chunks.append(current)
            current = []
            current_weight = 0
    if current:
        chunks.append(current)
    return chunks


def compute_range_hash(messages: Sequence[Message]) -> str:
    """Short stable digest of an exact message span."""
    digest = hashlib.sha256()
    for message in messages:
        digest.update(message.role.encode("utf-8"))
        canonical = [
            {"type": block.type, "value": serialize_input(vars(block))} for block in message.content
        ]
        digest.update(json.dumps(canonical, sort_keys=True, ensure_ascii=False).encode("utf-8"))
    return digest.hexdigest()[:16]
