"""Telemetry helpers."""

from agent_context.telemetry.logging_utils import (
    RunContextFilter,
    bind_run_context,
    get_current_trace_id,
    install_run_context_filter,
)

__all__ = [
    "RunContextFilter",
    "bind_run_context",
    "get_current_trace_id",
    "install_run_context_filter",
]
