"""Turn preparation and the model-invocation boundary.

``prepare_context`` prunes an agent's history against its budget,
summarizes the backlog when the trigger fires and returns the messages
for the next model call. ``invoke_with_overflow_recovery`` makes that
call, shrinking tool payloads and retrying when the provider rejects the
prompt as too large, then falling back to alternate models.

Only ``EmptyContextError`` and ``ProviderOverflowError`` (or the last
provider error when it was not an overflow) leave this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from strands.types.exceptions import ContextWindowOverflowException

from agent_context.errors import (
    ProviderOverflowError,
    extract_error_message,
    is_likely_context_overflow_error,
)
from agent_context.messages.prune import PruneResult, prune_messages
from agent_context.messages.tokens import TokenIndex
from agent_context.messages.truncation import truncate_for_overflow
from agent_context.stream.handler import StreamHandler
from agent_context.summarization.engine import run_summarization
from agent_context.summarization.models import SummarizeRequest
from agent_context.summarization.trigger import should_summarize

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_context.agents.context import AgentContext
    from agent_context.messages.models import Message
    from agent_context.providers.base import ModelClient, ToolSpec
    from agent_context.providers.registry import ModelProviderRegistry
    from agent_context.session import RunSession
    from agent_context.summarization.models import SummaryBlock

logger = logging.getLogger(__name__)


@dataclass
class PreparedContext:
    """Messages for the next model call and how they were produced."""

    messages: list[Message]
    prune: PruneResult
    summary: SummaryBlock | None = None

    @property
    def summarized(self) -> bool:
        return self.summary is not None and not self.summary.error


def is_overflow(error: BaseException) -> bool:
    """Whether a model-call error means the prompt did not fit."""
    return isinstance(error, ContextWindowOverflowException) or is_likely_context_overflow_error(
        error
    )


def summarization_client_for(
    agent_context: AgentContext,
    registry: ModelProviderRegistry,
) -> ModelClient | None:
    """Build the summarization client configured for an agent, if any."""
    config = agent_context.summarization
    if config is None or not config.enabled:
        return None
    reference = config.model_reference() or agent_context.model
    if not reference:
        logger.warning("No summarization model configured for agent %s", agent_context.agent_id)
        return None
    return registry.create_client(reference, overrides=config.model_parameters())


def fallback_clients_for(
    agent_context: AgentContext,
    registry: ModelProviderRegistry,
) -> list[ModelClient]:
    """Clients for the agent's configured fallback model references."""
    return [registry.create_client(reference) for reference in agent_context.fallback_models]


def _unpruned(messages: Sequence[Message], agent_context: AgentContext) -> PruneResult:
    counts = agent_context.token_index.fill(messages, agent_context.token_counter)
    return PruneResult(
        context=list(messages),
        to_refine=[],
        token_index=agent_context.token_index,
        pre_prune_total_tokens=sum(counts),
        remaining_context_tokens=0,
    )


def _prune(
    agent_context: AgentContext,
    messages: list[Message],
    start_index: int,
    usage: dict[str, Any] | None = None,
) -> PruneResult:
    if not agent_context.max_context_tokens:
        return _unpruned(messages, agent_context)
    return prune_messages(
        messages,
        max_tokens=agent_context.max_context_tokens,
        token_index=agent_context.token_index,
        token_counter=agent_context.token_counter,
        start_index=start_index,
        reserve_ratio=agent_context.reserve_ratio,
        instruction_tokens=agent_context.total_instruction_tokens(),
        thinking_enabled=agent_context.thinking_enabled,
        usage=usage,
        prompt_range=agent_context.last_prompt_range,
    )


async def prepare_context(
    session: RunSession,
    agent_context: AgentContext,
    messages: list[Message],
    *,
    start_index: int = 0,
    summarization_client: ModelClient | None = None,
    usage: dict[str, Any] | None = None,
) -> PreparedContext:
    """Prune, summarize when triggered, and assemble the next call's messages.

    The current summary, if any, is inserted after the pinned messages.
    A summary produced here takes budget from the kept messages, so the
    history is pruned again against the reduced budget before assembly.

    ``usage`` is the provider usage of the previous call; it defaults to
    the usage the agent's last streamed response reported and is consumed
    by this call.

    Raises:
        EmptyContextError: Nothing fits in the budget even after emergency truncation.
    """
    usage = usage if usage is not None else agent_context.last_usage
    agent_context.last_usage = None
    prune = _prune(agent_context, messages, start_index, usage)

    summary: SummaryBlock | None = None
    config = agent_context.summarization
    if (
        prune.to_refine
        and config is not None
        and config.enabled
        and summarization_client is not None
        and should_summarize(
            config.trigger,
            messages_to_refine=len(prune.to_refine),
            max_context_tokens=agent_context.max_context_tokens,
            pre_prune_total_tokens=prune.pre_prune_total_tokens,
            remaining_context_tokens=prune.remaining_context_tokens,
        )
    ):
        request = SummarizeRequest(
            agent_id=agent_context.agent_id,
            messages_to_refine=list(prune.to_refine),
        )
        summary = await run_summarization(session, agent_context, request, summarization_client)
        if not summary.error:
            prune = _prune(agent_context, messages, start_index)
            if len(prune.to_refine) > len(request.messages_to_refine):
                logger.info(
                    "Deferred %d more message(s) to fit summary v%d",
                    len(prune.to_refine) - len(request.messages_to_refine),
                    agent_context.summary_version,
                )

    if agent_context.max_context_tokens:
        agent_context.last_prompt_range = (prune.kept_from, len(messages))
    context = list(prune.context)
    summary_message = agent_context.summary_message()
    if summary_message is not None:
        context.insert(min(start_index, len(messages)), summary_message)
    return PreparedContext(messages=context, prune=prune, summary=summary)


async def stream_model_response(
    session: RunSession,
    agent_context: AgentContext,
    client: ModelClient,
    messages: list[Message],
    *,
    node: str = "agent",
    execution_step: int = 0,
    checkpoint_ns: str = "",
    **options: Any,
) -> Message:
    """Stream one model call into the session and return the assembled message."""
    handler = StreamHandler(
        session,
        agent_context,
        node=node,
        execution_step=execution_step,
        checkpoint_ns=checkpoint_ns,
    )
    return await handler.consume(client.stream(messages, **options))


async def _call_model(
    client: ModelClient,
    messages: list[Message],
    agent_context: AgentContext,
    session: RunSession | None,
    attempt: int,
    options: dict[str, Any],
) -> Message:
    if session is None:
        return await client.invoke(messages, **options)
    # Retries get their own step keys so partial output is not appended to.
    checkpoint_ns = f"attempt-{attempt}" if attempt else ""
    return await stream_model_response(
        session, agent_context, client, messages, checkpoint_ns=checkpoint_ns, **options
    )


async def invoke_with_overflow_recovery(
    client: ModelClient,
    messages: list[Message],
    agent_context: AgentContext,
    *,
    session: RunSession | None = None,
    fallback_clients: Sequence[ModelClient] | None = None,
    tools: list[ToolSpec] | None = None,
    **options: Any,
) -> Message:
    """Call the model, recovering from prompt-size rejections.

    On an overflow error tool payloads in ``messages`` are truncated in
    place, more aggressively on each attempt, and the call is retried up to
    the agent's attempt limit. Once truncation stops making progress, or
    for any other error, each fallback client is tried in order.

    Raises:
        ProviderOverflowError: The prompt never fit and every fallback failed.
        Exception: The last provider error, when the first failure was not an overflow.
    """
    if tools is not None:
        client = client.bind_tools(tools)
        fallback_clients = [fallback.bind_tools(tools) for fallback in fallback_clients or []]

    calls = 0
    while True:
        try:
            response = await _call_model(client, messages, agent_context, session, calls, options)
        except Exception as exc:
            calls += 1
            primary_error: Exception = exc
            if not is_overflow(exc) or not agent_context.can_recover_from_overflow():
                break
            attempt = agent_context.increment_overflow_attempts()
            truncated = truncate_for_overflow(messages, agent_context.max_context_tokens, attempt)
            if not truncated:
                logger.warning(
                    "Overflow recovery attempt %d truncated nothing; trying fallbacks", attempt
                )
                break
            # Truncation mutated shared messages; cached counts are stale.
            agent_context.token_index = TokenIndex()
            continue
        agent_context.reset_overflow_recovery()
        return response

    last_error: Exception = primary_error
    for fallback in fallback_clients or []:
        logger.warning(
            "Falling back to %s/%s after: %s",
            fallback.provider,
            fallback.model,
            extract_error_message(last_error),
        )
        try:
            response = await _call_model(fallback, messages, agent_context, session, calls, options)
        except Exception as exc:
            calls += 1
            last_error = exc
            continue
        agent_context.reset_overflow_recovery()
        return response

    attempts = agent_context.overflow_attempts
    agent_context.reset_overflow_recovery()
    if is_overflow(primary_error):
        msg = (
            f"Prompt exceeds the context window after {attempts} recovery attempt(s) "
            f"and {len(fallback_clients or [])} fallback(s): {extract_error_message(last_error)}"
        )
        raise ProviderOverflowError(msg, attempts) from last_error
    raise last_error
