"""Streaming detection of inline reasoning markers.

Models without a native reasoning channel wrap their thinking in
``<think>...</think>`` (or ``<thinking>...</thinking>``) inside ordinary
text. Markers may arrive whole inside one chunk or split across chunk
boundaries, so the parser holds back any trailing text that could still
turn into a marker and resolves it on the next chunk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

OPEN_MARKERS: tuple[str, ...] = ("<think>", "<thinking>")
CLOSE_MARKERS: tuple[str, ...] = ("</think>", "</thinking>")

TokenType = Literal["text", "think"]
TokenTypeSwitch = Literal["content", "reasoning"]
ChunkKind = Literal["text", "reasoning", "mixed", "transition"]


@dataclass(frozen=True)
class Segment:
    """A run of chunk content of a single type."""

    type: TokenType
    text: str


@dataclass(frozen=True)
class ParsedChunk:
    """Classification of one chunk and the segments it produced."""

    kind: ChunkKind
    segments: tuple[Segment, ...] = ()

    @property
    def text(self) -> str:
        return "".join(s.text for s in self.segments if s.type == "text")

    @property
    def think(self) -> str:
        return "".join(s.text for s in self.segments if s.type == "think")


def _find_marker(buffer: str, markers: tuple[str, ...], start: int) -> tuple[int, str] | None:
    best: tuple[int, str] | None = None
    for marker in markers:
        idx = buffer.find(marker, start)
        if idx != -1 and (best is None or idx < best[0]):
            best = (idx, marker)
    return best


def _partial_marker_length(text: str, markers: tuple[str, ...]) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of a marker."""
    longest = 0
    for marker in markers:
        for size in range(min(len(marker) - 1, len(text)), longest, -1):
            if text.endswith(marker[:size]):
                longest = size
                break
    return longest


@dataclass
class ThinkingTagParser:
    """Per-stream state machine splitting chunks into text and reasoning.

    Attributes:
        current_token_type: Type of content currently being emitted.
        token_type_switch: ``reasoning`` while a provider-native reasoning
            field is streaming, ``content`` otherwise.
        last_token: Raw content of the previous chunk.
    """

    current_token_type: TokenType = "text"
    token_type_switch: TokenTypeSwitch = "content"
    last_token: str = ""
    _pending: str = field(default="", repr=False)
    _strip_leading: bool = field(default=False, repr=False)

    def feed_reasoning(self, text: str) -> ParsedChunk:
        """Accept reasoning delivered through a provider-native field."""
        changed = self.current_token_type != "think"
        self.current_token_type = "think"
        self.token_type_switch = "reasoning"
        segments = (Segment("think", text),) if text else ()
        kind: ChunkKind = "transition" if changed and not segments else "reasoning"
        return ParsedChunk(kind=kind, segments=segments)

    def feed(self, chunk: str) -> ParsedChunk:
        """Split a content chunk into typed segments."""
        start_type = self.current_token_type
        switched = False
        if self.token_type_switch == "reasoning":
            # Content after native reasoning ends the reasoning run.
            self.token_type_switch = "content"
            if self.current_token_type == "think":
                self.current_token_type = "text"
                self._strip_leading = True
                switched = True

        buffer = self._pending + chunk
        self._pending = ""
        segments: list[Segment] = []
        pos = 0
        while pos < len(buffer):
            markers = CLOSE_MARKERS if self.current_token_type == "think" else OPEN_MARKERS
            found = _find_marker(buffer, markers, pos)
            if found is not None:
                idx, marker = found
                self._emit(segments, buffer[pos:idx])
                self._toggle()
                switched = True
                pos = idx + len(marker)
                continue
            rest = buffer[pos:]
            hold = _partial_marker_length(rest, markers)
            self._emit(segments, rest[: len(rest) - hold])
            self._pending = rest[len(rest) - hold :]
            break

        self.last_token = chunk
        return ParsedChunk(
            kind=self._classify(segments, start_type, switched=switched),
            segments=tuple(segments),
        )

    def flush(self) -> ParsedChunk:
        """Release held-back text at end of stream as literal content."""
        segments: list[Segment] = []
        if self._pending:
            self._emit(segments, self._pending)
            self._pending = ""
        kind: ChunkKind = "reasoning" if self.current_token_type == "think" else "text"
        return ParsedChunk(kind=kind, segments=tuple(segments))

    def reset(self) -> None:
        self.current_token_type = "text"
        self.token_type_switch = "content"
        self.last_token = ""
        self._pending = ""
        self._strip_leading = False

    def _toggle(self) -> None:
        if self.current_token_type == "think":
            self.current_token_type = "text"
            self._strip_leading = True
        else:
            self.current_token_type = "think"

    def _emit(self, segments: list[Segment], text: str) -> None:
        token_type = self.current_token_type
        if token_type == "text" and self._strip_leading:
            text = text.lstrip()
            if text:
                self._strip_leading = False
        if not text:
            return
        if segments and segments[-1].type == token_type:
            segments[-1] = Segment(token_type, segments[-1].text + text)
        else:
            segments.append(Segment(token_type, text))

    def _classify(
        self,
        segments: list[Segment],
        start_type: TokenType,
        *,
        switched: bool,
    ) -> ChunkKind:
        types = {segment.type for segment in segments}
        if len(types) > 1:
            return "mixed"
        if switched:
            return "transition"
        if types:
            return "reasoning" if types == {"think"} else "text"
        return "reasoning" if start_type == "think" else "text"
