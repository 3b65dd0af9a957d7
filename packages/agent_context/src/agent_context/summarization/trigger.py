"""Decide whether the deferred backlog should be summarized now."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_context.models.config import TriggerConfig

logger = logging.getLogger(__name__)


def _finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


def _pre_prune_remaining(
    max_context_tokens: int | None,
    pre_prune_total_tokens: int | None,
    remaining_context_tokens: int | None,
) -> float | None:
    if (
        _finite(max_context_tokens)
        and max_context_tokens > 0  # type: ignore[operator]
        and _finite(pre_prune_total_tokens)
    ):
        return max_context_tokens - pre_prune_total_tokens  # type: ignore[operator]
    if _finite(remaining_context_tokens):
        return remaining_context_tokens
    return None


def should_summarize(
    trigger: TriggerConfig | None,
    *,
    messages_to_refine: int,
    max_context_tokens: int | None = None,
    pre_prune_total_tokens: int | None = None,
    remaining_context_tokens: int | None = None,
) -> bool:
    """Whether summarization should run for the current backlog.

    Never fires on an empty backlog. Without a trigger any backlog fires.
    Unknown kinds, non-finite thresholds and missing measurements never fire.
    """
    if messages_to_refine <= 0:
        return False
    if trigger is None:
        return True

    value = trigger.value
    if not _finite(value):
        logger.warning("Ignoring summarization trigger %s with non-finite value", trigger.kind)
        return False

    if trigger.kind == "token_ratio":
        if not _finite(max_context_tokens) or max_context_tokens <= 0:  # type: ignore[operator]
            return False
        remaining = _pre_prune_remaining(
            max_context_tokens, pre_prune_total_tokens, remaining_context_tokens
        )
        if remaining is None:
            return False
        used_ratio = (max_context_tokens - remaining) / max_context_tokens  # type: ignore[operator]
        return used_ratio >= value

    if trigger.kind == "remaining_tokens":
        remaining = _pre_prune_remaining(
            max_context_tokens, pre_prune_total_tokens, remaining_context_tokens
        )
        if remaining is None:
            return False
        return remaining <= value

    if trigger.kind == "messages_to_refine":
        return messages_to_refine >= value

    logger.warning("Unknown summarization trigger kind: %s", trigger.kind)
    return False
