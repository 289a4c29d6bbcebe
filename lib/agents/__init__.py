"""External agent invocations for the review side of a collaboration."""

from .codex import CodexAgent
from .protocol import AgentInvocation, AgentResult, AgentError

__all__ = ['CodexAgent', 'AgentInvocation', 'AgentResult', 'AgentError']
