"""Per-run session state.

A ``RunSession`` owns every registry keyed by step key for one run: the
ordered run steps, step ids per key, the tool-call to step map and the
agent contexts taking part. Components receive the session explicitly;
nothing here is process-wide.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_context.stream.events import RunStep, StreamEvent, safe_dispatch
from agent_context.telemetry.logging_utils import bind_run_context

if TYPE_CHECKING:
    from agent_context.agents.context import AgentContext
    from agent_context.stream.events import EventKind, EventSink, StepKind, SummaryStage
    from agent_context.summarization.models import SummaryBlock

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    """Create a new random run id."""
    return f"run_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class StepKey:
    """Coordinates of one logical emission point.

    ``phase`` separates segments that share every other coordinate, such as
    the reasoning and answer segments of one model call.
    """

    run_id: str
    thread_id: str
    node: str
    execution_step: int
    checkpoint_ns: str = ""
    phase: str = "0"

    def __str__(self) -> str:
        return ":".join(
            [
                self.run_id,
                self.thread_id,
                self.node,
                str(self.execution_step),
                self.checkpoint_ns,
                self.phase,
            ]
        )


@dataclass
class RunSession:
    """Registries and event emission for a single run."""

    run_id: str = field(default_factory=new_run_id)
    thread_id: str = ""
    sink: EventSink | None = None
    content_data: list[RunStep] = field(default_factory=list)
    content_index_map: dict[str, int] = field(default_factory=dict)
    step_key_ids: dict[str, list[str]] = field(default_factory=dict)
    tool_call_step_ids: dict[str, str] = field(default_factory=dict)
    agent_contexts: dict[str, AgentContext] = field(default_factory=dict)

    def __post_init__(self) -> None:
        bind_run_context(run_id=self.run_id)

    @property
    def is_multi_agent(self) -> bool:
        return len(self.agent_contexts) > 1

    # Agent contexts

    def add_agent_context(self, context: AgentContext) -> AgentContext:
        self.agent_contexts[context.agent_id] = context
        return context

    def get_agent_context(self, agent_id: str) -> AgentContext:
        """Look up an agent context by id.

        Raises:
            KeyError: If no context is registered for ``agent_id``.
        """
        try:
            return self.agent_contexts[agent_id]
        except KeyError:
            msg = f"No agent context registered for '{agent_id}'"
            raise KeyError(msg) from None

    # Step ids

    def step_key(
        self,
        node: str,
        execution_step: int = 0,
        *,
        checkpoint_ns: str = "",
        phase: str = "0",
    ) -> StepKey:
        return StepKey(
            run_id=self.run_id,
            thread_id=self.thread_id,
            node=node,
            execution_step=execution_step,
            checkpoint_ns=checkpoint_ns,
            phase=phase,
        )

    def generate_step_id(self, step_key: str | StepKey) -> tuple[str, int]:
        """Allocate a new step id for ``step_key``.

        Returns:
            The id and its position among ids generated for the same key.
        """
        key = str(step_key)
        step_id = f"step_{uuid.uuid4().hex}"
        ids = self.step_key_ids.setdefault(key, [])
        ids.append(step_id)
        return step_id, len(ids) - 1

    def get_step_id_by_key(self, step_key: str | StepKey, index: int | None = None) -> str:
        """Latest (or ``index``-th) step id generated for ``step_key``.

        Raises:
            KeyError: If no step exists for the key.
        """
        ids = self.step_key_ids.get(str(step_key))
        if not ids:
            msg = f"No step id found for key '{step_key}'"
            raise KeyError(msg)
        if index is None:
            return ids[-1]
        return ids[index]

    def has_step(self, step_key: str | StepKey) -> bool:
        return bool(self.step_key_ids.get(str(step_key)))

    def get_run_step(self, step_id: str) -> RunStep | None:
        index = self.content_index_map.get(step_id)
        if index is None:
            return None
        return self.content_data[index]

    # Dispatch

    def emit(self, kind: EventKind, payload: dict[str, Any], step_id: str | None = None) -> None:
        safe_dispatch(self.sink, StreamEvent(kind=kind, payload=payload, step_id=step_id))

    def dispatch_run_step(
        self,
        step_key: str | StepKey,
        step_kind: StepKind = "message",
        *,
        agent_id: str | None = None,
        tool_call_ids: list[str] | None = None,
        summary: SummaryBlock | None = None,
        new: bool = False,
    ) -> RunStep:
        """Return the step for ``step_key``, creating and announcing it if needed."""
        if not new and self.has_step(step_key):
            existing = self.get_run_step(self.get_step_id_by_key(step_key))
            if existing is not None:
                return existing

        step_id, step_index = self.generate_step_id(step_key)
        run_step = RunStep(
            id=step_id,
            index=len(self.content_data),
            step_kind=step_kind,
            step_index=step_index,
            run_id=self.run_id,
            agent_id=agent_id if self.is_multi_agent else None,
            tool_call_ids=list(tool_call_ids or []),
            summary=summary,
        )
        self.content_data.append(run_step)
        self.content_index_map[step_id] = run_step.index
        for tool_call_id in run_step.tool_call_ids:
            self.tool_call_step_ids[tool_call_id] = step_id
        logger.debug("Created %s step %s at index %d", step_kind, step_id, run_step.index)
        self.emit("step_created", {"step": run_step}, step_id)
        return run_step

    def dispatch_message_delta(
        self,
        step_id: str,
        text: str,
        *,
        tool_call_ids: list[str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"text": text}
        if tool_call_ids:
            payload["tool_call_ids"] = list(tool_call_ids)
        self.emit("message_delta", payload, step_id)

    def dispatch_reasoning_delta(self, step_id: str, text: str) -> None:
        self.emit("reasoning_delta", {"text": text}, step_id)

    def dispatch_tool_call_delta(
        self,
        step_id: str,
        *,
        tool_call_id: str | None = None,
        name: str | None = None,
        args: str | dict[str, Any] = "",
        index: int = 0,
    ) -> None:
        if tool_call_id:
            self.tool_call_step_ids.setdefault(tool_call_id, step_id)
            run_step = self.get_run_step(step_id)
            if run_step is not None and tool_call_id not in run_step.tool_call_ids:
                run_step.tool_call_ids.append(tool_call_id)
        self.emit(
            "tool_call_delta",
            {"id": tool_call_id or "", "name": name or "", "args": args, "index": index},
            step_id,
        )

    def dispatch_step_completed(
        self,
        tool_call_id: str,
        *,
        name: str = "",
        args: str | dict[str, Any] = "",
        output: str = "",
    ) -> None:
        """Report a finished tool call; its output completes the tool-call part."""
        step_id = self.tool_call_step_ids.get(tool_call_id)
        if step_id is None:
            logger.warning("No step recorded for completed tool call %s", tool_call_id)
            return
        self.emit(
            "step_completed",
            {"tool_call": {"id": tool_call_id, "name": name, "args": args, "output": output}},
            step_id,
        )

    def dispatch_agent_update(self, agent_id: str, update: dict[str, Any]) -> RunStep:
        run_step = self.dispatch_run_step(f"agent-update-{agent_id}", agent_id=agent_id, new=True)
        self.emit("agent_update", {"agent_id": agent_id, "update": update}, run_step.id)
        return run_step

    def dispatch_summarize_start(self, payload: dict[str, Any], step_id: str) -> None:
        self.emit("summarize_start", payload, step_id)

    def dispatch_summarize_delta(
        self,
        step_id: str,
        text: str,
        *,
        stage: SummaryStage = "final",
        part: int | None = None,
    ) -> None:
        self.emit("summarize_delta", {"text": text, "stage": stage, "part": part}, step_id)

    def dispatch_summarize_complete(
        self,
        step_id: str,
        agent_id: str,
        summary: SummaryBlock,
        error: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"agent_id": agent_id, "summary": summary}
        if error:
            payload["error"] = error
        self.emit("summarize_complete", payload, step_id)

    def reset(self) -> None:
        """Clear per-run registries and agent streaming state."""
        self.content_data.clear()
        self.content_index_map.clear()
        self.step_key_ids.clear()
        self.tool_call_step_ids.clear()
        for context in self.agent_contexts.values():
            context.reset()
