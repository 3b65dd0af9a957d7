"""Agent-scoped context state."""

from agent_context.agents.context import AgentContext

__all__ = ["AgentContext"]
