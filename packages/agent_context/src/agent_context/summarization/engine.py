"""Summarize deferred messages into a versioned summary block.

The summarization call is isolated from the agent: no tools and no
persona, only a summarization system prompt and the formatted backlog.
Large backlogs can be summarized in contiguous chunks whose partial
summaries are merged by a final call. Chunk calls run one after another
so the merge input order is deterministic.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from agent_context.errors import SummarizationError, extract_error_message
from agent_context.messages.models import summary_message, system_message, user_message
from agent_context.models.config import SummarizationConfig
from agent_context.stream.thinking import ThinkingTagParser
from agent_context.summarization.formatting import (
    compute_range_hash,
    format_messages,
    split_messages_by_char_share,
)
from agent_context.summarization.models import SummaryBlock, SummaryBoundary
from agent_context.utils import utc_timestamp

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.agents.context import AgentContext
    from agent_context.messages.models import Message
    from agent_context.providers.base import ModelClient
    from agent_context.session import RunSession
    from agent_context.stream.events import SummaryStage
    from agent_context.summarization.models import SummarizeRequest

logger = logging.getLogger(__name__)

DEFAULT_SUMMARIZATION_PROMPT = (
    "You are summarizing the earlier part of a conversation between a user and an AI "
    "assistant so the assistant can continue the work without the original messages.\n\n"
    "Preserve:\n"
    "- Key facts, decisions and the reasoning behind them\n"
    "- Identifiers, names, file paths, URLs and exact values\n"
    "- Tool calls that mattered and their results\n"
    "- Open questions, pending tasks and constraints\n\n"
    "If a prior summary is provided, integrate it with the new messages into one "
    "updated summary instead of repeating it.\n\n"
    "Do not include preamble -- output only the summary."
)

MERGE_PROMPT = (
    "Merge these partial summaries into a single cohesive summary. Preserve key facts, "
    "decisions, tool results, open questions, and any constraints. Remove duplication and "
    "keep the chronological order of events. "
    "Do not include preamble -- output only the merged summary."
)

EMPTY_OUTPUT_ERROR = "Summarization produced empty output"

DeltaCallback = Callable[[str, str, int | None], None]


def _with_prior(prior_summary: str | None, formatted: str, heading: str) -> str:
    if not prior_summary:
        return f"{heading}\n\n{formatted}" if heading else formatted
    return f"## Prior Summary\n\n{prior_summary}\n\n{heading}\n\n{formatted}"


async def _call(
    client: ModelClient,
    prompt: str,
    human_text: str,
    *,
    stream: bool = True,
    on_delta: DeltaCallback | None = None,
    stage: SummaryStage = "final",
    part: int | None = None,
    parameters: dict[str, Any] | None = None,
) -> str:
    """Run one summarization call and return the stripped answer text.

    Reasoning emitted by the model, native or tagged, is not part of the
    summary.
    """
    messages = [system_message(prompt), user_message(human_text)]
    options = dict(parameters or {})
    if not stream:
        response = await client.invoke(messages, **options)
        parser = ThinkingTagParser()
        text = parser.feed(response.text).text + parser.flush().text
        return text.strip()

    parser = ThinkingTagParser()
    collected: list[str] = []
    async for chunk in client.stream(messages, **options):
        if not chunk.content:
            continue
        text = parser.feed(chunk.content).text
        if text:
            collected.append(text)
            if on_delta is not None:
                on_delta(text, stage, part)
    tail = parser.flush().text
    if tail:
        collected.append(tail)
        if on_delta is not None:
            on_delta(tail, stage, part)
    return "".join(collected).strip()


async def summarize_single_pass(
    client: ModelClient,
    messages: Sequence[Message],
    config: SummarizationConfig,
    *,
    prior_summary: str | None = None,
    on_delta: DeltaCallback | None = None,
) -> str:
    """Summarize all messages in one call."""
    formatted = format_messages(messages, config.max_input_chars)
    human_text = (
        _with_prior(prior_summary, formatted, "## New Messages to Incorporate")
        if prior_summary
        else formatted
    )
    return await _call(
        client,
        config.prompt or DEFAULT_SUMMARIZATION_PROMPT,
        human_text,
        stream=config.stream,
        on_delta=on_delta,
        stage="final",
        parameters=config.model_parameters(),
    )


async def summarize_in_stages(
    client: ModelClient,
    messages: Sequence[Message],
    config: SummarizationConfig,
    *,
    prior_summary: str | None = None,
    on_delta: DeltaCallback | None = None,
) -> str:
    """Summarize contiguous chunks sequentially, then merge the partial summaries.

    Falls back to a single pass when splitting yields a single chunk.
    """
    chunks = split_messages_by_char_share(messages, config.resolved_parts())
    if len(chunks) <= 1:
        return await summarize_single_pass(
            client, messages, config, prior_summary=prior_summary, on_delta=on_delta
        )

    prompt = config.prompt or DEFAULT_SUMMARIZATION_PROMPT
    parameters = config.model_parameters()
    partials: list[str] = []
    for index, chunk in enumerate(chunks):
        heading = f"## Messages (Part {index + 1} of {len(chunks)})"
        formatted = format_messages(chunk, config.max_input_chars)
        human_text = _with_prior(prior_summary if index == 0 else None, formatted, heading)
        partial = await _call(
            client,
            prompt,
            human_text,
            stream=config.stream,
            on_delta=on_delta,
            stage="chunk",
            part=index,
            parameters=parameters,
        )
        if partial:
            partials.append(partial)
        else:
            logger.warning("Summary chunk %d of %d produced no text", index + 1, len(chunks))

    if len(partials) <= 1:
        return partials[0] if partials else ""

    merge_input = "\n\n".join(
        f"## Part {index + 1}\n\n{partial}" for index, partial in enumerate(partials)
    )
    return await _call(
        client,
        MERGE_PROMPT,
        merge_input,
        stream=config.stream,
        on_delta=on_delta,
        stage="final",
        parameters=parameters,
    )


async def summarize_messages(
    client: ModelClient,
    messages: Sequence[Message],
    config: SummarizationConfig | None = None,
    *,
    prior_summary: str | None = None,
    on_delta: DeltaCallback | None = None,
) -> str:
    """Summarize ``messages``, choosing single-pass or multi-stage from ``config``."""
    config = config or SummarizationConfig()
    parts = config.resolved_parts()
    min_messages = max(2, config.resolved_min_messages_for_split())
    if parts > 1 and len(messages) >= min_messages:
        logger.debug("Summarizing %d messages in up to %d parts", len(messages), parts)
        return await summarize_in_stages(
            client, messages, config, prior_summary=prior_summary, on_delta=on_delta
        )
    return await summarize_single_pass(
        client, messages, config, prior_summary=prior_summary, on_delta=on_delta
    )


async def run_summarization(
    session: RunSession,
    agent_context: AgentContext,
    request: SummarizeRequest,
    client: ModelClient,
) -> SummaryBlock:
    """Summarize an agent's backlog and report progress as summary events.

    A summary step is created with an empty placeholder block before the
    model is called. Model errors and empty output are not raised: the
    returned block keeps empty text and carries ``error`` so the caller can
    continue the turn without the summary.
    """
    agent_id = agent_context.agent_id
    config = agent_context.summarization or SummarizationConfig()
    range_hash = compute_range_hash(request.messages_to_refine)
    if range_hash == agent_context.last_summary_range_hash:
        logger.warning("Agent %s is re-summarizing an identical span (%s)", agent_id, range_hash)

    placeholder = SummaryBlock(
        version=agent_context.summary_version,
        range_hash=range_hash,
        model=client.model,
        provider=client.provider,
    )
    step = session.dispatch_run_step(
        f"summarize-{agent_id}",
        "summary",
        agent_id=agent_id,
        summary=placeholder,
        new=True,
    )
    session.dispatch_summarize_start(
        {
            "agent_id": agent_id,
            "provider": client.provider,
            "model": client.model,
            "messages_to_refine_count": len(request.messages_to_refine),
            "summary_version": agent_context.summary_version + 1,
        },
        step.id,
    )

    def on_delta(text: str, stage: SummaryStage, part: int | None) -> None:
        session.dispatch_summarize_delta(step.id, text, stage=stage, part=part)

    try:
        text = await summarize_messages(
            client,
            request.messages_to_refine,
            config,
            prior_summary=agent_context.get_summary_text(),
            on_delta=on_delta,
        )
        if not text:
            raise SummarizationError(EMPTY_OUTPUT_ERROR)
    except Exception as exc:
        logger.exception("Summarization failed for agent %s", agent_id)
        failed = placeholder.with_error(extract_error_message(exc))
        step.summary = failed
        session.dispatch_summarize_complete(step.id, agent_id, failed, failed.error)
        return failed

    token_count = agent_context.token_counter(summary_message(text))
    version = agent_context.set_summary(text, token_count)
    agent_context.last_summary_range_hash = range_hash
    block = SummaryBlock(
        text=text,
        token_count=token_count,
        version=version,
        range_hash=range_hash,
        boundary=SummaryBoundary(step_id=step.id, content_index=step.index),
        model=client.model,
        provider=client.provider,
        created_at=utc_timestamp(),
    )
    step.summary = block
    session.dispatch_summarize_complete(step.id, agent_id, block)
    return block
