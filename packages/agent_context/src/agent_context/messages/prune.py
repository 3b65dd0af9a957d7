"""Token-budget pruning of conversation history.

``prune_messages`` splits a message list into the suffix that fits the
next model call (``context``) and the older backlog (``to_refine``) that
becomes a candidate for summarization. Assistant tool calls and their
tool results always move between partitions as one group.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_context.errors import EmptyContextError
from agent_context.messages.models import Message, ReasoningBlock
from agent_context.messages.tokens import (
    TokenIndex,
    calibrate_token_index,
    estimate_message_tokens,
    total_usage_tokens,
)
from agent_context.messages.truncation import emergency_truncate, preflight_truncate

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.messages.tokens import TokenCounter

logger = logging.getLogger(__name__)

# Every reply is primed with a few tokens of assistant-turn framing.
REPLY_PRIMING_TOKENS = 3


@dataclass
class PruneResult:
    """Partition of a message list against a token budget.

    ``context`` holds pinned messages followed by the newest messages that
    fit; ``to_refine`` holds everything older, in original order.
    """

    context: list[Message]
    to_refine: list[Message]
    token_index: TokenIndex
    pre_prune_total_tokens: int
    remaining_context_tokens: int
    kept_from: int = 0
    calibrated: bool = False
    emergency_truncated: bool = False
    reasoning_reattached: bool = False
    dropped_indices: list[int] = field(default_factory=list)


def effective_budget(
    max_tokens: int,
    reserve_ratio: float = 0.0,
    instruction_tokens: int = 0,
) -> int:
    """Tokens available for messages after reserving output space and instructions."""
    return max(0, math.floor(max_tokens * (1 - reserve_ratio)) - instruction_tokens)


def group_messages(messages: Sequence[Message], start_index: int = 0) -> list[tuple[int, int]]:
    """Contiguous ``[start, end)`` groups over ``messages[start_index:]``.

    An assistant message with tool calls is grouped with every later tool
    message answering one of its calls, along with anything in between.
    Tool messages whose call is unknown form their own group.
    """
    call_owner: dict[str, int] = {}
    spans: list[list[int]] = []
    for idx in range(start_index, len(messages)):
        message = messages[idx]
        spans.append([idx, idx + 1])
        if message.role == "assistant":
            for call in message.tool_calls:
                call_owner[call.id] = idx
        elif message.role == "tool":
            owners = [call_owner[cid] for cid in message.result_call_ids() if cid in call_owner]
            if owners:
                spans.append([min(owners), idx + 1])

    spans.sort()
    groups: list[list[int]] = []
    for start, end in spans:
        if groups and start < groups[-1][1]:
            groups[-1][1] = max(groups[-1][1], end)
        else:
            groups.append([start, end])
    return [(start, end) for start, end in groups]


def format_token_budget_breakdown(
    messages: Sequence[Message],
    token_counts: Sequence[int],
    budget: int,
) -> str:
    """Human readable per-message token usage against ``budget``."""
    total = sum(token_counts)
    lines = [f"Token budget breakdown (budget: {budget} tokens, messages: {total} tokens):"]
    for idx, (message, tokens) in enumerate(zip(messages, token_counts, strict=True)):
        marker = "  <-- exceeds budget" if tokens > budget else ""
        lines.append(f"  [{idx}] {message.role}: {tokens} tokens{marker}")
    lines.append(f"  Reply priming: {REPLY_PRIMING_TOKENS} tokens")
    return "\n".join(lines)


def _latest_turn_start(messages: Sequence[Message], start_index: int) -> int:
    for idx in range(len(messages) - 1, start_index - 1, -1):
        if messages[idx].role == "user":
            return idx + 1
    return start_index


def _cut(
    groups: list[tuple[int, int]],
    counts: Sequence[int],
    available: int,
    total: int,
) -> tuple[int, int]:
    """Walk groups from newest to oldest; return (first kept index, remaining tokens)."""
    kept_from = total
    remaining = available
    for start, end in reversed(groups):
        cost = sum(counts[start:end])
        if cost > remaining:
            break
        remaining -= cost
        kept_from = start
    return kept_from, remaining


def _calibrate(
    token_index: TokenIndex,
    usage: dict[str, Any],
    counts: Sequence[int],
    start_index: int,
    instruction_tokens: int,
    prompt_range: tuple[int, int] | None,
) -> bool:
    """Scale the counts of the previous call's messages to the provider-reported total.

    The reported prompt also covered the pinned messages and the
    instructions; those are taken off before the ratio is computed.
    """
    reported = total_usage_tokens(usage)
    if reported is None:
        return False
    start, end = prompt_range if prompt_range is not None else (start_index, len(counts))
    start = max(start, start_index)
    end = min(end, len(counts))
    if start >= end:
        return False
    reported -= instruction_tokens + sum(counts[:start_index])
    return calibrate_token_index(token_index, reported, start=start, end=end)


def _reattach_reasoning(
    messages: Sequence[Message],
    groups: list[tuple[int, int]],
    counts: Sequence[int],
    kept_from: int,
    remaining: int,
    start_index: int,
    counter: TokenCounter,
) -> tuple[int, int, dict[int, Message]]:
    """Keep the latest turn's reasoning attached to its earliest kept assistant message.

    Returns the possibly advanced cut, the remaining budget and replacement
    messages keyed by original position.
    """
    turn_start = _latest_turn_start(messages, start_index)
    if kept_from <= turn_start or kept_from >= len(messages):
        return kept_from, remaining, {}

    reasoning: list[ReasoningBlock] = []
    for idx in range(turn_start, kept_from):
        if messages[idx].role == "assistant":
            reasoning = messages[idx].reasoning
            if reasoning:
                break
    if not reasoning:
        return kept_from, remaining, {}

    group_starts = [start for start, _ in groups if start >= kept_from]
    while group_starts:
        first_assistant = next(
            (idx for idx in range(kept_from, len(messages)) if messages[idx].role == "assistant"),
            None,
        )
        if first_assistant is None or messages[first_assistant].reasoning:
            return kept_from, remaining, {}
        original = messages[first_assistant]
        replacement = Message(
            role=original.role,
            content=[*reasoning, *original.content],
            id=original.id,
            name=original.name,
            tool_call_id=original.tool_call_id,
        )
        extra = counter(replacement) - counts[first_assistant]
        if extra <= remaining:
            return kept_from, remaining - extra, {first_assistant: replacement}
        if len(group_starts) == 1:
            logger.warning("No room to reattach reasoning to the newest assistant message")
            return kept_from, remaining, {}
        # Give up the oldest kept group and try again.
        group_starts.pop(0)
        next_from = group_starts[0] if group_starts else len(messages)
        remaining += sum(counts[kept_from:next_from])
        kept_from = next_from
    return kept_from, remaining, {}


def prune_messages(
    messages: list[Message],
    *,
    max_tokens: int,
    token_index: TokenIndex | None = None,
    token_counter: TokenCounter = estimate_message_tokens,
    start_index: int = 0,
    reserve_ratio: float = 0.0,
    instruction_tokens: int = 0,
    thinking_enabled: bool = False,
    preflight: bool = True,
    usage: dict[str, Any] | None = None,
    prompt_range: tuple[int, int] | None = None,
) -> PruneResult:
    """Partition ``messages`` into what fits in the next call and the backlog.

    Args:
        messages: Full ordered history. Tool payloads may be truncated in place.
        max_tokens: Raw configured context window for the model.
        token_index: Cached counts by position; created when omitted.
        token_counter: Counts a single message.
        start_index: Messages before this position are pinned and never pruned.
        reserve_ratio: Share of ``max_tokens`` held back for the model's output.
        instruction_tokens: Tokens used by instructions prepended after pruning.
        thinking_enabled: Keep reasoning attached to the assistant message it belongs to.
        preflight: Truncate oversized tool payloads before measuring.
        usage: Provider usage reported for the previous call; cached counts
            for that call's messages are calibrated against it.
        prompt_range: ``[start, end)`` positions sent in the previous call.
            Defaults to every unpinned message.

    Returns:
        PruneResult whose partitions together contain every input message once.

    Raises:
        EmptyContextError: The pinned messages alone exceed the budget, or
            no unpinned message fits even after emergency truncation.
    """
    token_index = token_index if token_index is not None else TokenIndex()
    start_index = max(0, min(start_index, len(messages)))

    if preflight:
        preflight_truncate(messages, max_tokens, token_index, token_counter)

    counts = token_index.fill(messages, token_counter)
    calibrated = False
    if usage:
        calibrated = _calibrate(
            token_index, usage, counts, start_index, instruction_tokens, prompt_range
        )
        counts = token_index.fill(messages, token_counter)
    pre_prune_total = sum(counts)
    budget = effective_budget(max_tokens, reserve_ratio, instruction_tokens)
    available = budget - REPLY_PRIMING_TOKENS - sum(counts[:start_index])

    if messages and available < 0:
        breakdown = format_token_budget_breakdown(messages, counts, budget)
        logger.error("Pinned messages and instructions exceed the budget.\n%s", breakdown)
        raise EmptyContextError(breakdown, len(messages))

    groups = group_messages(messages, start_index)
    kept_from, remaining = _cut(groups, counts, available, len(messages))
    has_unpinned = len(messages) > start_index

    emergency = False
    if has_unpinned and kept_from == len(messages) and budget > 0:
        logger.warning(
            "No message fits in %d tokens; applying emergency truncation to %d message(s)",
            budget,
            len(messages) - start_index,
        )
        emergency = emergency_truncate(messages, token_index, token_counter) > 0
        counts = token_index.fill(messages, token_counter)
        available = budget - REPLY_PRIMING_TOKENS - sum(counts[:start_index])
        kept_from, remaining = _cut(groups, counts, available, len(messages))

    if has_unpinned and kept_from == len(messages):
        breakdown = format_token_budget_breakdown(messages, counts, budget)
        logger.error("Empty context after pruning.\n%s", breakdown)
        raise EmptyContextError(breakdown, len(messages))

    replacements: dict[int, Message] = {}
    if thinking_enabled:
        kept_from, remaining, replacements = _reattach_reasoning(
            messages, groups, counts, kept_from, remaining, start_index, token_counter
        )

    context = list(messages[:start_index])
    context.extend(replacements.get(idx, messages[idx]) for idx in range(kept_from, len(messages)))
    to_refine = list(messages[start_index:kept_from])

    if to_refine:
        logger.info(
            "Pruned %d message(s) to backlog; kept %d (budget %d, total %d tokens)",
            len(to_refine),
            len(context),
            budget,
            pre_prune_total,
        )

    return PruneResult(
        context=context,
        to_refine=to_refine,
        token_index=token_index,
        pre_prune_total_tokens=pre_prune_total,
        remaining_context_tokens=max(0, remaining),
        kept_from=kept_from,
        calibrated=calibrated,
        emergency_truncated=emergency,
        reasoning_reattached=bool(replacements),
        dropped_indices=list(range(start_index, kept_from)),
    )
