"""Agent Protocol - Data structures for external agent invocations"""

import shlex
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class AgentInvocation:
    """A one-shot command line for an external agent CLI."""
    agent: str
    argv: List[str]
    instruction: str
    timeout: int
    expected_tag: Optional[str] = None
    resumes_session: bool = False

    def render(self) -> str:
        """Copy-pasteable shell form of the command."""
        return shlex.join(self.argv)


@dataclass
class AgentResult:
    """Result of running an agent invocation."""
    agent: str
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    command: List[str] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.exit_code == -1


class AgentError(Exception):
    """Base exception for agent invocation errors."""
    pass
