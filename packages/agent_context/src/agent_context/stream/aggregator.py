"""Fold a stream of run events into ordered, typed content parts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

from agent_context.summarization.models import SummaryBlock

if TYPE_CHECKING:
    from agent_context.stream.events import RunStep, StreamEvent

logger = logging.getLogger(__name__)


@dataclass
class TextPart:
    text: str = ""
    tool_call_ids: list[str] | None = None
    type: Literal["text"] = "text"


@dataclass
class ThinkPart:
    think: str = ""
    type: Literal["think"] = "think"


@dataclass
class ToolCallPart:
    """A tool call whose arguments may still be streaming."""

    id: str = ""
    name: str = ""
    args: str | dict[str, Any] = ""
    output: str | None = None
    progress: float | None = None
    type: Literal["tool_call"] = "tool_call"


@dataclass
class AgentUpdatePart:
    agent_id: str = ""
    update: dict[str, Any] = field(default_factory=dict)
    type: Literal["agent_update"] = "agent_update"


@dataclass
class SummaryPart:
    summary: SummaryBlock = field(default_factory=SummaryBlock)
    type: Literal["summary"] = "summary"


ContentPart = TextPart | ThinkPart | ToolCallPart | AgentUpdatePart | SummaryPart


class ContentAggregator:
    """Event sink that keeps one content part per run step index.

    Once a part's type is set at an index, updates of another type are
    dropped with a warning. Events for unknown steps are dropped the same way.
    """

    def __init__(self) -> None:
        self.content_parts: list[ContentPart | None] = []
        self.step_map: dict[str, RunStep] = {}
        self.tool_call_id_map: dict[str, str] = {}
        self.summary_errors: dict[str, str] = {}

    def dispatch(self, event: StreamEvent) -> None:
        """Apply one event."""
        if event.kind == "step_created":
            self._on_step_created(event.payload["step"])
            return

        step = self.step_map.get(event.step_id or "")
        if step is None:
            logger.warning(
                "Dropping %s event for unknown step %s", event.kind, event.step_id or "<none>"
            )
            return

        payload = event.payload
        if event.kind == "message_delta":
            self.update_content(
                step.index,
                TextPart(text=payload.get("text", ""), tool_call_ids=payload.get("tool_call_ids")),
            )
        elif event.kind == "reasoning_delta":
            self.update_content(step.index, ThinkPart(think=payload.get("text", "")))
        elif event.kind == "tool_call_delta":
            tool_call_id = payload.get("id") or ""
            if tool_call_id:
                self.tool_call_id_map[tool_call_id] = step.id
            self.update_content(
                step.index,
                ToolCallPart(
                    id=tool_call_id,
                    name=payload.get("name") or "",
                    args=payload.get("args", ""),
                ),
            )
        elif event.kind == "step_completed":
            tool_call = payload.get("tool_call") or {}
            self.update_content(
                step.index,
                ToolCallPart(
                    id=tool_call.get("id", ""),
                    name=tool_call.get("name", ""),
                    args=tool_call.get("args", ""),
                    output=tool_call.get("output"),
                ),
                final_update=True,
            )
        elif event.kind == "agent_update":
            self.update_content(
                step.index,
                AgentUpdatePart(
                    agent_id=payload.get("agent_id", ""),
                    update=payload.get("update", {}),
                ),
            )
        elif event.kind == "summarize_delta":
            if payload.get("stage", "final") != "final":
                return
            self.update_content(
                step.index,
                SummaryPart(summary=SummaryBlock(text=payload.get("text", ""))),
            )
        elif event.kind == "summarize_complete":
            error = payload.get("error")
            if error:
                self.summary_errors[step.id] = error
            summary = payload.get("summary")
            if isinstance(summary, SummaryBlock):
                self.update_content(step.index, SummaryPart(summary=summary), final_update=True)
        # summarize_start carries no content.

    def _on_step_created(self, step: RunStep) -> None:
        self.step_map[step.id] = step
        for tool_call_id in step.tool_call_ids:
            self.tool_call_id_map[tool_call_id] = step.id
        if step.step_kind == "summary" and step.summary is not None:
            self.update_content(step.index, SummaryPart(summary=step.summary), final_update=True)

    def update_content(self, index: int, part: ContentPart, *, final_update: bool = False) -> None:
        """Merge ``part`` into the content part at ``index``."""
        if index >= len(self.content_parts):
            self.content_parts.extend([None] * (index + 1 - len(self.content_parts)))

        current = self.content_parts[index]
        if current is None:
            if isinstance(part, ToolCallPart) and final_update:
                part.progress = 1.0
            self.content_parts[index] = part
            return

        if current.type != part.type:
            logger.warning(
                "Content type mismatch at index %d: have %s, dropping %s update",
                index,
                current.type,
                part.type,
            )
            return

        if isinstance(current, TextPart) and isinstance(part, TextPart):
            current.text += part.text
            if part.tool_call_ids:
                merged = list(current.tool_call_ids or [])
                merged.extend(cid for cid in part.tool_call_ids if cid not in merged)
                current.tool_call_ids = merged
        elif isinstance(current, ThinkPart) and isinstance(part, ThinkPart):
            current.think += part.think
        elif isinstance(current, ToolCallPart) and isinstance(part, ToolCallPart):
            self._merge_tool_call(current, part, final_update=final_update)
        elif isinstance(current, AgentUpdatePart) and isinstance(part, AgentUpdatePart):
            self.content_parts[index] = part
        elif isinstance(current, SummaryPart) and isinstance(part, SummaryPart):
            if final_update:
                self.content_parts[index] = part
            else:
                text = current.summary.text + part.summary.text
                current.summary = replace(current.summary, text=text)

    @staticmethod
    def _merge_tool_call(current: ToolCallPart, part: ToolCallPart, *, final_update: bool) -> None:
        current.id = current.id or part.id
        current.name = current.name or part.name
        if final_update:
            if part.args not in ("", None):
                current.args = part.args
            current.output = part.output
            current.progress = 1.0
        elif isinstance(current.args, str) and isinstance(part.args, str):
            current.args += part.args
        elif part.args not in ("", None):
            current.args = part.args

    def get_content(self) -> list[ContentPart]:
        """Established content parts in index order."""
        return [part for part in self.content_parts if part is not None]

    def get_part(self, step_id: str) -> ContentPart | None:
        step = self.step_map.get(step_id)
        if step is None or step.index >= len(self.content_parts):
            return None
        return self.content_parts[step.index]

    def get_tool_call(self, tool_call_id: str) -> ToolCallPart | None:
        step_id = self.tool_call_id_map.get(tool_call_id)
        part = self.get_part(step_id) if step_id else None
        return part if isinstance(part, ToolCallPart) else None
