from __future__ import annotations

import os
from typing import Any

import pytest
from agent_context.messages.models import Message, MessageChunk, assistant_message
from agent_context.providers.registry import reset_default_registry


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("AGENT_CONTEXT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AGENT_CONTEXT_CONFIG_DIR", str(tmp_path))
    reset_default_registry()


class FakeModelClient:
    """Scripted model client.

    Each call consumes the next scripted response: a string (streamed in
    ``chunk_size`` pieces), a list of ``MessageChunk``s, or an exception to raise.
    """

    def __init__(
        self,
        responses: list[Any] | None = None,
        *,
        provider: str = "fake",
        model: str | None = "fake-model",
        chunk_size: int = 4,
    ) -> None:
        self.provider = provider
        self.model = model
        self.responses = list(responses or [])
        self.chunk_size = chunk_size
        self.calls: list[list[Message]] = []
        self.options: list[dict[str, Any]] = []
        self.tools: list[dict[str, Any]] | None = None

    def _next(self, messages: list[Message], options: dict[str, Any]) -> Any:
        self.calls.append(list(messages))
        self.options.append(options)
        if not self.responses:
            return ""
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def invoke(self, messages: list[Message], **options: Any) -> Message:
        response = self._next(messages, options)
        if isinstance(response, list):
            return assistant_message("".join(chunk.content for chunk in response))
        return assistant_message(response)

    async def stream(self, messages: list[Message], **options: Any):
        response = self._next(messages, options)
        if isinstance(response, list):
            for chunk in response:
                yield chunk
            return
        for start in range(0, len(response), self.chunk_size):
            yield MessageChunk(content=response[start : start + self.chunk_size])

    def bind_tools(self, tools: list[dict[str, Any]]) -> FakeModelClient:
        self.tools = tools
        return self


@pytest.fixture
def make_client() -> type[FakeModelClient]:
    return FakeModelClient
