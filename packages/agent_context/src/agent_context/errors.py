"""Error types and provider error classification."""

from __future__ import annotations

import json
import re
from typing import Any

CONTEXT_OVERFLOW_PHRASES: tuple[str, ...] = (
    "request_too_large",
    "context length exceeded",
    "maximum context length",
    "prompt is too long",
    "exceeds model context window",
    "exceeds the model",
    "too large for model",
    "context_length_exceeded",
    "max_tokens",
    "token limit",
    "input too long",
    "payload too large",
    "content_too_large",
)

_LIKELY_OVERFLOW_PATTERN = re.compile(
    r"413|too large|too long|context.*exceed|exceed.*context|token.*limit|limit.*token"
    r"|prompt.*size|size.*limit|maximum.*length|length.*maximum",
    re.IGNORECASE,
)

_FALSE_POSITIVE_PATTERN = re.compile(
    r"rate.?limit|too many requests|quota|billing|auth|permission|forbidden",
    re.IGNORECASE,
)


class ContextError(Exception):
    """Base class for context-engineering failures."""


class EmptyContextError(ContextError):
    """Raised when pruning cannot fit any message into the budget."""

    def __init__(self, breakdown: str, message_count: int) -> None:
        self.breakdown = breakdown
        self.message_count = message_count
        super().__init__(
            f"Unable to fit any of {message_count} message(s) into the context budget, "
            f"even after emergency truncation.\n{breakdown}"
        )


class ProviderOverflowError(ContextError):
    """Raised when a prompt stays too large after every recovery strategy."""

    def __init__(self, message: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


class SummarizationError(ContextError):
    """Summarization produced an error or no output."""


def extract_error_message(error: Any) -> str:
    """Best-effort human readable message from an exception, string or mapping."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str):
            return message
        nested = error.get("error")
        if isinstance(nested, str):
            return nested
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]
        return json.dumps(error, default=str)
    if isinstance(error, BaseException):
        text = str(error)
        return text or type(error).__name__
    return str(error)


def is_context_overflow_error(error: Any) -> bool:
    """Whether ``error`` definitely reports a prompt that is too large."""
    message = extract_error_message(error)
    if not message or _FALSE_POSITIVE_PATTERN.search(message):
        return False
    lowered = message.lower()
    return any(phrase in lowered for phrase in CONTEXT_OVERFLOW_PHRASES)


def is_likely_context_overflow_error(error: Any) -> bool:
    """Broader check that also accepts size hints such as HTTP 413."""
    message = extract_error_message(error)
    if not message or _FALSE_POSITIVE_PATTERN.search(message):
        return False
    if is_context_overflow_error(message):
        return True
    return bool(_LIKELY_OVERFLOW_PATTERN.search(message))
