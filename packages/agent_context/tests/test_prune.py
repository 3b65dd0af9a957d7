from __future__ import annotations

import pytest
from agent_context.errors import EmptyContextError
from agent_context.messages import (
    Message,
    ReasoningBlock,
    TokenIndex,
    ToolCallBlock,
    assistant_message,
    effective_budget,
    estimate_message_tokens,
    group_messages,
    prune_messages,
    system_message,
    tool_message,
    user_message,
)


def _fixed(tokens: int):
    return lambda message: tokens


def _tool_turn() -> list[Message]:
    return [
        user_message("find the files"),
        assistant_message(
            tool_calls=[
                ToolCallBlock(id="c1", name="glob", input={"pattern": "*.py"}),
                ToolCallBlock(id="c2", name="glob", input={"pattern": "*.md"}),
            ]
        ),
        tool_message("c1", "a.py", name="glob"),
        tool_message("c2", "README.md", name="glob"),
        assistant_message("Found two files."),
        user_message("thanks"),
    ]


def _assert_partition(original: list[Message], context: list[Message], to_refine: list[Message]):
    assert len(context) + len(to_refine) == len(original)
    assert {id(m) for m in context} | {id(m) for m in to_refine} == {id(m) for m in original}


def _assert_no_split_pairs(context: list[Message]) -> None:
    call_ids = {call.id for m in context for call in m.tool_calls}
    result_ids = {cid for m in context for cid in m.result_call_ids()}
    assert call_ids == result_ids


def test_twenty_messages_keep_newest() -> None:
    messages = [
        user_message(f"question {i}") if i % 2 == 0 else assistant_message(f"answer {i}")
        for i in range(20)
    ]

    result = prune_messages(messages, max_tokens=200, token_counter=_fixed(140))

    assert len(result.context) + len(result.to_refine) == 20
    assert result.context == [messages[19]]
    assert result.to_refine == messages[:19]
    assert result.pre_prune_total_tokens == 20 * 140
    assert result.remaining_context_tokens == 200 - 3 - 140


@pytest.mark.parametrize(("max_tokens", "kept"), [(38, 2), (58, 5)])
def test_tool_groups_move_together(max_tokens: int, kept: int) -> None:
    messages = _tool_turn()

    result = prune_messages(messages, max_tokens=max_tokens, token_counter=_fixed(10))

    assert len(result.context) == kept
    _assert_partition(messages, result.context, result.to_refine)
    _assert_no_split_pairs(result.context)


def test_pinned_messages_are_never_pruned() -> None:
    messages = [system_message("You are helpful."), *_tool_turn()]

    result = prune_messages(messages, max_tokens=48, token_counter=_fixed(10), start_index=1)

    assert result.context[0] is messages[0]
    assert messages[0] not in result.to_refine
    assert result.context[1:] == messages[-2:]
    _assert_partition(messages, result.context, result.to_refine)


def test_reserve_and_instructions_reduce_budget() -> None:
    assert effective_budget(1000, 0.2, 100) == 700
    assert effective_budget(100, 0.5, 80) == 0

    messages = [user_message("a"), user_message("b"), user_message("c")]
    result = prune_messages(
        messages, max_tokens=100, token_counter=_fixed(20), reserve_ratio=0.5, instruction_tokens=10
    )
    assert result.context == messages[-1:]


def test_remaining_tokens_reported() -> None:
    messages = [user_message("a"), assistant_message("b"), user_message("c")]

    result = prune_messages(messages, max_tokens=100, token_counter=_fixed(10))

    assert result.to_refine == []
    assert result.pre_prune_total_tokens == 30
    assert result.remaining_context_tokens == 100 - 3 - 30


class TestGrouping:
    def test_orphan_tool_result_is_own_group(self) -> None:
        messages = [tool_message("missing", "x"), user_message("hi")]
        assert group_messages(messages) == [(0, 1), (1, 2)]

    def test_group_spans_interleaved_messages(self) -> None:
        messages = [
            assistant_message(tool_calls=[ToolCallBlock(id="c1", name="run")]),
            user_message("still there?"),
            tool_message("c1", "done"),
            assistant_message("ok"),
        ]
        assert group_messages(messages) == [(0, 3), (3, 4)]

    def test_start_index_excludes_pinned(self) -> None:
        messages = [system_message("sys"), user_message("a"), user_message("b")]
        assert group_messages(messages, start_index=1) == [(1, 2), (2, 3)]


class TestEmptyContext:
    def test_raises_with_breakdown(self) -> None:
        messages = [user_message("x" * 4000)]

        with pytest.raises(EmptyContextError) as excinfo:
            prune_messages(messages, max_tokens=10)

        assert excinfo.value.message_count == 1
        assert "[0] user" in excinfo.value.breakdown
        assert "exceeds budget" in str(excinfo.value)

    def test_emergency_truncation_recovers(self) -> None:
        messages = [
            assistant_message(tool_calls=[ToolCallBlock(id="c1", name="search", input={"q": "x"})]),
            tool_message("c1", "r" * 5000, name="search"),
        ]

        result = prune_messages(
            messages,
            max_tokens=100,
            token_counter=estimate_message_tokens,
            preflight=False,
        )

        assert result.emergency_truncated is True
        assert len(result.context) == 2
        assert "[emergency truncated:" in messages[1].tool_results[0].content

    def test_emergency_truncation_with_pinned_prefix(self) -> None:
        messages = [
            system_message("You are helpful."),
            user_message("read the file"),
            assistant_message(tool_calls=[ToolCallBlock(id="c1", name="cat", input={"p": "f"})]),
            tool_message("c1", "r" * 2000, name="cat"),
        ]

        result = prune_messages(messages, max_tokens=400, start_index=1, preflight=False)

        assert result.emergency_truncated is True
        assert result.context == messages
        assert result.to_refine == []
        assert "[emergency truncated:" in messages[3].tool_results[0].content

    def test_pinned_prefix_does_not_hide_empty_context(self) -> None:
        messages = [system_message("sys"), user_message("x" * 4000)]

        with pytest.raises(EmptyContextError) as excinfo:
            prune_messages(messages, max_tokens=100, start_index=1)

        assert excinfo.value.message_count == 2
        assert "[1] user" in excinfo.value.breakdown

    def test_pinned_messages_over_budget_raise(self) -> None:
        messages = [system_message("x" * 4000), user_message("hi")]

        with pytest.raises(EmptyContextError) as excinfo:
            prune_messages(messages, max_tokens=100, start_index=1)

        assert "[0] system" in excinfo.value.breakdown


class TestReasoningReattach:
    @staticmethod
    def _messages() -> list[Message]:
        return [
            user_message("do the task"),
            assistant_message(
                reasoning="plan the steps",
                tool_calls=[ToolCallBlock(id="c1", name="step_one")],
            ),
            tool_message("c1", "one done"),
            assistant_message(tool_calls=[ToolCallBlock(id="c2", name="step_two")]),
            tool_message("c2", "two done"),
            assistant_message("all done"),
        ]

    @staticmethod
    def _counter(message: Message) -> int:
        return 10 + (5 if message.reasoning else 0)

    def test_reasoning_moves_to_earliest_kept_assistant(self) -> None:
        messages = self._messages()

        result = prune_messages(
            messages, max_tokens=38, token_counter=self._counter, thinking_enabled=True
        )

        assert result.reasoning_reattached is True
        assert result.to_refine == messages[:3]
        first = result.context[0]
        assert first is not messages[3]
        assert isinstance(first.content[0], ReasoningBlock)
        assert first.content[0].text == "plan the steps"
        assert first.tool_calls == messages[3].tool_calls
        assert messages[3].reasoning == []

    def test_no_reattach_without_thinking_mode(self) -> None:
        messages = self._messages()

        result = prune_messages(messages, max_tokens=38, token_counter=self._counter)

        assert result.reasoning_reattached is False
        assert result.context[0] is messages[3]


class TestCalibration:
    @staticmethod
    def _messages() -> list[Message]:
        return [user_message(f"question {i}") for i in range(10)]

    def test_reported_usage_moves_the_cut(self) -> None:
        messages = self._messages()

        plain = prune_messages(messages, max_tokens=60, token_counter=_fixed(10))
        calibrated = prune_messages(
            messages,
            max_tokens=60,
            token_counter=_fixed(10),
            usage={"input_tokens": 150, "cache_read_input_tokens": 50},
        )

        assert len(plain.context) == 5
        assert calibrated.calibrated is True
        assert calibrated.context == messages[8:]
        assert calibrated.pre_prune_total_tokens == 200

    def test_only_previous_prompt_range_is_scaled(self) -> None:
        messages = self._messages()
        index = TokenIndex()

        result = prune_messages(
            messages,
            max_tokens=60,
            token_index=index,
            token_counter=_fixed(10),
            usage={"input_tokens": 100},
            prompt_range=(5, 10),
        )

        assert index.get(4) == 10
        assert index.get(5) == 20
        assert result.context == messages[8:]

    def test_pinned_and_instruction_tokens_are_excluded(self) -> None:
        messages = [system_message("sys"), *self._messages()]
        index = TokenIndex()

        prune_messages(
            messages,
            max_tokens=200,
            token_index=index,
            token_counter=_fixed(10),
            start_index=1,
            instruction_tokens=20,
            usage={"input_tokens": 230},
        )

        assert index.get(0) == 10
        assert index.get(1) == 20

    def test_implausible_usage_is_ignored(self) -> None:
        messages = self._messages()

        result = prune_messages(
            messages, max_tokens=60, token_counter=_fixed(10), usage={"input_tokens": 5000}
        )

        assert result.calibrated is False
        assert len(result.context) == 5
