"""Event schema for streamed run output.

Producers (the stream handler, the summarization engine) emit
``StreamEvent`` envelopes to an ``EventSink``. Sinks are fire-and-forget:
a failing sink is logged and never interrupts the producer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from agent_context.summarization.models import SummaryBlock

logger = logging.getLogger(__name__)

EventKind = Literal[
    "step_created",
    "message_delta",
    "reasoning_delta",
    "tool_call_delta",
    "step_completed",
    "agent_update",
    "summarize_start",
    "summarize_delta",
    "summarize_complete",
]

StepKind = Literal["message", "tool_calls", "summary"]

SummaryStage = Literal["chunk", "final"]


@dataclass
class RunStep:
    """One logical unit of output with a stable id and content index.

    Attributes:
        id: Unique step id.
        index: Position of the step's content part in the output array.
        step_kind: What the step produces.
        step_index: Position of this id among ids generated for its step key.
        run_id: Owning run, when known.
        agent_id: Producing agent, when the run has several.
        tool_call_ids: Tool calls carried by a ``tool_calls`` step.
        summary: Summary block carried by a ``summary`` step.
    """

    id: str
    index: int
    step_kind: StepKind = "message"
    step_index: int = 0
    run_id: str | None = None
    agent_id: str | None = None
    tool_call_ids: list[str] = field(default_factory=list)
    summary: SummaryBlock | None = None


@dataclass(frozen=True)
class StreamEvent:
    """Event envelope.

    Attributes:
        kind: Event classification.
        payload: Kind-specific data.
        step_id: Step the event applies to, when any.
    """

    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    step_id: str | None = None


class EventSink(Protocol):
    """Receives stream events."""

    def dispatch(self, event: StreamEvent) -> None:
        """Handle one event without blocking the producer."""
        ...


class CollectingSink:
    """Sink that records every event, mainly for tests and replay."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    def dispatch(self, event: StreamEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[StreamEvent]:
        return [event for event in self.events if event.kind == kind]


class CallbackSink:
    """Sink that forwards each event to a callable."""

    def __init__(self, callback: Callable[[StreamEvent], None]) -> None:
        self._callback = callback

    def dispatch(self, event: StreamEvent) -> None:
        self._callback(event)


class FanoutSink:
    """Sink that forwards each event to several sinks in order."""

    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks = list(sinks)

    def dispatch(self, event: StreamEvent) -> None:
        for sink in self.sinks:
            safe_dispatch(sink, event)


def safe_dispatch(sink: EventSink | None, event: StreamEvent) -> None:
    """Deliver ``event`` to ``sink``, logging instead of raising on sink failure."""
    if sink is None:
        return
    try:
        sink.dispatch(event)
    except Exception:
        logger.exception("Event sink failed on %s event (step %s)", event.kind, event.step_id)
