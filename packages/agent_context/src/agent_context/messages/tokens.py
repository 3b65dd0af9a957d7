"""Token accounting for messages."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_context.messages.models import message_text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.messages.models import Message

logger = logging.getLogger(__name__)

TokenCounter = Callable[["Message"], int]

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 3

# Provider-reported totals are only trusted within these bounds of our estimate.
_CALIBRATION_MIN_RATIO = 1 / 3
_CALIBRATION_MAX_RATIO = 2.5
_CALIBRATION_SANITY_MIN = 0.25
_CALIBRATION_SANITY_MAX = 3.0


def estimate_tokens(text: str) -> int:
    """Rough token estimate using 4 chars per token heuristic."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def estimate_message_tokens(message: Message) -> int:
    """Estimate token usage for a single message, including role overhead."""
    if not message.content:
        return 0
    return estimate_tokens(message_text(message)) + MESSAGE_OVERHEAD_TOKENS


@dataclass
class TokenIndex:
    """Cached token counts keyed by message position.

    Entries are ``None`` until computed. The index belongs to the caller's
    session; pruning and truncation read it and update mutated positions.
    """

    counts: dict[int, int | None] = field(default_factory=dict)

    def get(self, index: int) -> int | None:
        return self.counts.get(index)

    def set(self, index: int, value: int) -> None:
        self.counts[index] = value

    def invalidate(self, index: int) -> None:
        self.counts[index] = None

    def resolve(self, index: int, message: Message, counter: TokenCounter) -> int:
        """Return the cached count for ``index``, computing it if missing."""
        value = self.counts.get(index)
        if value is None:
            value = counter(message)
            self.counts[index] = value
        return value

    def fill(self, messages: Sequence[Message], counter: TokenCounter) -> list[int]:
        """Ensure every position in ``messages`` has a count and return them in order."""
        return [self.resolve(idx, message, counter) for idx, message in enumerate(messages)]

    def recount(self, index: int, message: Message, counter: TokenCounter) -> int:
        """Recompute the count of a message whose content changed."""
        value = counter(message)
        self.counts[index] = value
        return value

    def total(self, start: int = 0, end: int | None = None) -> int:
        """Sum of known counts over ``[start, end)``."""
        return sum(
            value
            for idx, value in self.counts.items()
            if value is not None and idx >= start and (end is None or idx < end)
        )

    def copy(self) -> TokenIndex:
        return TokenIndex(counts=dict(self.counts))


def total_usage_tokens(usage: dict[str, Any] | None) -> int | None:
    """Prompt-side token total from a provider usage payload.

    Cache reads and cache writes count toward the prompt even though some
    providers report them separately from ``input_tokens``.
    """
    if not usage:
        return None
    input_tokens = usage.get("input_tokens", usage.get("inputTokens"))
    if not isinstance(input_tokens, int | float):
        return None
    cache_read = usage.get("cache_read_input_tokens", usage.get("cacheReadInputTokens", 0)) or 0
    cache_write = (
        usage.get("cache_creation_input_tokens", usage.get("cacheWriteInputTokens", 0)) or 0
    )
    return int(input_tokens + cache_read + cache_write)


def calibrate_token_index(
    token_index: TokenIndex,
    reported_total: int,
    *,
    start: int = 0,
    end: int | None = None,
) -> bool:
    """Scale cached counts so their sum matches a provider-reported total.

    Only positions in ``[start, end)`` are scaled. Calibration is skipped
    when the ratio falls outside the trusted range and reverted when the
    scaled sum drifts too far from the raw sum. Returns whether the index
    was changed.
    """
    raw_total = token_index.total(start, end)
    if raw_total <= 0 or reported_total <= 0:
        return False

    ratio = reported_total / raw_total
    if not _CALIBRATION_MIN_RATIO <= ratio <= _CALIBRATION_MAX_RATIO:
        logger.debug("Skipping token calibration, ratio %.2f out of range", ratio)
        return False

    snapshot = dict(token_index.counts)
    for idx, value in snapshot.items():
        if value is None or idx < start or (end is not None and idx >= end):
            continue
        token_index.counts[idx] = round(value * ratio)

    calibrated_total = token_index.total(start, end)
    sanity = calibrated_total / raw_total
    if not _CALIBRATION_SANITY_MIN <= sanity <= _CALIBRATION_SANITY_MAX:
        token_index.counts = snapshot
        logger.warning("Reverted token calibration, calibrated/raw ratio %.2f", sanity)
        return False
    return True
