"""Logging helpers for run and trace correlation."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING

from opentelemetry import trace as otel_trace

if TYPE_CHECKING:
    from collections.abc import Iterable

_run_id: ContextVar[str | None] = ContextVar("agent_context_run_id", default=None)
_agent_id: ContextVar[str | None] = ContextVar("agent_context_agent_id", default=None)


def get_current_trace_id() -> str | None:
    """Get the current OpenTelemetry trace ID if available."""
    span = otel_trace.get_current_span()
    ctx = span.get_span_context()
    if not ctx.is_valid:
        return None
    return otel_trace.format_trace_id(ctx.trace_id)


def bind_run_context(*, run_id: str | None = None, agent_id: str | None = None) -> None:
    """Bind run/agent identifiers for log records emitted in this context."""
    if run_id is not None:
        _run_id.set(run_id)
    if agent_id is not None:
        _agent_id.set(agent_id)


class RunContextFilter(logging.Filter):
    """Attach run, agent and trace identifiers to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject run_id, agent_id and trace_id into the log record."""
        record.run_id = _run_id.get() or "-"
        record.agent_id = _agent_id.get() or "-"
        record.trace_id = get_current_trace_id() or "-"
        return True


def install_run_context_filter(loggers: Iterable[logging.Logger] | None = None) -> None:
    """Install run context filters for structured logging.

    Args:
        loggers: Optional iterable of loggers to attach the filter to. Defaults to root logger.
    """
    targets = list(loggers) if loggers is not None else [logging.getLogger()]
    for logger in targets:
        if any(isinstance(flt, RunContextFilter) for flt in logger.filters):
            continue
        logger.addFilter(RunContextFilter())
