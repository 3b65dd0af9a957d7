"""Tool payload truncation.

All thresholds derive from ``max_tool_result_chars``: a single tool
payload may use at most 30% of the context window, at roughly four
characters per token.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agent_context.messages.models import ToolCallBlock, ToolResultBlock, serialize_input

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.messages.models import Message
    from agent_context.messages.tokens import TokenCounter, TokenIndex

logger = logging.getLogger(__name__)

HARD_MAX_TOOL_RESULT_CHARS = 400_000
MIN_TOOL_RESULT_CHARS = 4
TOOL_RESULT_CONTEXT_SHARE = 0.3
CHARS_PER_TOKEN = 4

EMERGENCY_MAX_CHARS = 150
OVERFLOW_MIN_CHARS = 1000

# Below this much room after the indicator, only the head is kept.
_HEAD_TAIL_MIN_AVAILABLE = 200
_HEAD_SHARE = 0.7
_EMERGENCY_MARKER = "[emergency truncated:"


def max_tool_result_chars(context_window_tokens: int | None = None) -> int:
    """Maximum characters allowed for a single tool payload."""
    if context_window_tokens is None or context_window_tokens <= 0:
        return HARD_MAX_TOOL_RESULT_CHARS
    chars = math.floor(context_window_tokens * TOOL_RESULT_CONTEXT_SHARE) * CHARS_PER_TOKEN
    return max(MIN_TOOL_RESULT_CHARS, min(chars, HARD_MAX_TOOL_RESULT_CHARS))


def truncation_indicator(original_chars: int, max_chars: int) -> str:
    return f"\n\n… [truncated: {original_chars} → {max_chars} chars] …\n\n"


def truncate_tool_result(content: str, max_chars: int) -> str:
    """Truncate ``content`` to at most ``max_chars`` characters.

    Keeps head and tail around an indicator when there is room for both,
    otherwise the head followed by the indicator, otherwise a bare slice.
    """
    if len(content) <= max_chars:
        return content

    indicator = truncation_indicator(len(content), max_chars)
    available = max_chars - len(indicator)
    if available <= 0:
        return content[:max_chars]
    if available < _HEAD_TAIL_MIN_AVAILABLE:
        return content[:available] + indicator

    head_chars = math.floor(available * _HEAD_SHARE)
    tail_chars = available - head_chars
    return content[:head_chars] + indicator + content[len(content) - tail_chars :]


@dataclass(frozen=True)
class TruncatedInput:
    """Marker replacing an oversized tool-call input."""

    text: str
    original_chars: int

    def to_dict(self) -> dict[str, Any]:
        return {"_truncated": self.text, "_originalChars": self.original_chars}


def truncate_input(value: Any, max_chars: int) -> TruncatedInput:
    """Serialize ``value`` and truncate it into a ``TruncatedInput`` marker."""
    if isinstance(value, TruncatedInput):
        return TruncatedInput(
            text=truncate_tool_result(value.text, max_chars),
            original_chars=value.original_chars,
        )
    serialized = serialize_input(value)
    return TruncatedInput(
        text=truncate_tool_result(serialized, max_chars),
        original_chars=len(serialized),
    )


def truncate_message_payloads(message: Message, max_chars: int) -> bool:
    """Truncate tool results and tool-call inputs of ``message`` in place.

    Returns whether anything was changed.
    """
    changed = False
    for block in message.content:
        if isinstance(block, ToolResultBlock) and len(block.content) > max_chars:
            block.content = truncate_tool_result(block.content, max_chars)
            changed = True
        elif isinstance(block, ToolCallBlock):
            if isinstance(block.input, TruncatedInput):
                if len(block.input.text) > max_chars:
                    block.input = truncate_input(block.input, max_chars)
                    changed = True
            elif len(serialize_input(block.input)) > max_chars:
                block.input = truncate_input(block.input, max_chars)
                changed = True
    return changed


def _truncate_all(
    messages: Sequence[Message],
    max_chars: int,
    token_index: TokenIndex | None,
    counter: TokenCounter | None,
) -> int:
    truncated = 0
    for idx, message in enumerate(messages):
        if message.role not in ("assistant", "tool"):
            continue
        if not truncate_message_payloads(message, max_chars):
            continue
        truncated += 1
        if token_index is not None and counter is not None:
            token_index.recount(idx, message, counter)
    return truncated


def preflight_truncate(
    messages: Sequence[Message],
    max_context_tokens: int | None,
    token_index: TokenIndex | None = None,
    counter: TokenCounter | None = None,
) -> int:
    """Truncate oversized tool payloads before a model call.

    The threshold uses the raw configured context budget, not one already
    reduced by instruction or reserve overhead. Returns the number of
    messages changed; their token counts are recomputed in ``token_index``.
    """
    max_chars = max_tool_result_chars(max_context_tokens)
    truncated = _truncate_all(messages, max_chars, token_index, counter)
    if truncated:
        logger.info(
            "Pre-flight truncated %d message(s) to %d chars per tool payload",
            truncated,
            max_chars,
        )
    return truncated


def emergency_truncate(
    messages: Sequence[Message],
    token_index: TokenIndex | None = None,
    counter: TokenCounter | None = None,
    max_chars: int = EMERGENCY_MAX_CHARS,
) -> int:
    """Reduce every tool payload in ``messages`` to a minimal stub.

    Used when a single message exceeds the whole budget. The stub keeps the
    head of each payload so the model still sees what was called.
    """
    truncated = 0
    for idx, message in enumerate(messages):
        changed = False
        for block in message.content:
            if (
                isinstance(block, ToolResultBlock)
                and len(block.content) > max_chars
                and _EMERGENCY_MARKER not in block.content
            ):
                original = len(block.content)
                stub = block.content[:max_chars]
                block.content = f"{stub}\n… {_EMERGENCY_MARKER} {original} → {max_chars} chars]"
                changed = True
            elif isinstance(block, ToolCallBlock):
                size = (
                    len(block.input.text)
                    if isinstance(block.input, TruncatedInput)
                    else len(serialize_input(block.input))
                )
                if size > max_chars:
                    block.input = truncate_input(block.input, max_chars)
                    changed = True
        if changed:
            truncated += 1
            if token_index is not None and counter is not None:
                token_index.recount(idx, message, counter)
    if truncated:
        logger.warning("Emergency truncated %d message(s) to %d chars", truncated, max_chars)
    return truncated


def overflow_truncation_chars(max_context_tokens: int | None, attempt: int) -> int:
    """Per-payload character cap for overflow recovery ``attempt`` (1-based)."""
    aggressiveness = 0.5**attempt
    return max(
        OVERFLOW_MIN_CHARS,
        math.floor(max_tool_result_chars(max_context_tokens) * aggressiveness),
    )


def truncate_for_overflow(
    messages: Sequence[Message],
    max_context_tokens: int | None,
    attempt: int,
    token_index: TokenIndex | None = None,
    counter: TokenCounter | None = None,
) -> int:
    """Shrink tool payloads after a provider rejected the prompt as too large."""
    max_chars = overflow_truncation_chars(max_context_tokens, attempt)
    truncated = _truncate_all(messages, max_chars, token_index, counter)
    logger.warning(
        "Overflow recovery attempt %d: truncated %d message(s) to %d chars",
        attempt,
        truncated,
        max_chars,
    )
    return truncated
