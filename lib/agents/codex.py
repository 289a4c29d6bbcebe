"""Reviewer agent invocations.

The reviewer is a separate CLI agent with its own conversation state.
The first review starts a fresh conversation (``exec``); later reviews
and the validation resume it (``resume --last``) so the reviewer can
compare against what it said before. Everything it needs to find and
store artifacts travels in the instruction text.
"""

import shutil
import subprocess
import time
from typing import List, Optional

from ..correlator import (
    Phase, SessionContext, artifact_tag, artifact_template, query_for
)
from ..memory.security import get_logger
from .protocol import AgentError, AgentInvocation, AgentResult

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 600


class CodexAgent:
    """Builds and runs reviewer command lines.

    Usage:
        agent = CodexAgent()
        invocation = agent.review_invocation(session_id, version=1)
        print(invocation.render())
        result = agent.run(invocation)
    """

    def __init__(
        self,
        command: str = "codex",
        name: str = "Codex",
        timeout: int = DEFAULT_TIMEOUT,
        store_name: str = "Byterover",
        retrieve_tool: str = "byterover-retrieve-knowledge",
        store_tool: str = "byterover-store-knowledge",
        result_limit: int = 5,
        task: Optional[str] = None
    ):
        self.command = command
        self.name = name
        self.timeout = timeout
        self.store_name = store_name
        self.retrieve_tool = retrieve_tool
        self.store_tool = store_tool
        self.result_limit = result_limit
        self.task = task

    def _retrieve_clause(self, context: SessionContext) -> str:
        query = query_for(context, limit=self.result_limit)
        tag = artifact_tag(context.phase, context.session_id, context.version)
        return (
            f'from {self.store_name} memory using the {self.retrieve_tool} tool '
            f'(query: {query.text}; limit: {query.limit}). '
            f'Only use a result whose Tag line reads "{tag}"'
        )

    def _store_clause(self, context: SessionContext, what: str) -> str:
        tag = artifact_tag(context.phase, context.session_id, context.version)
        return (
            f'Store {what} in {self.store_name} using {self.store_tool} with tag "{tag}", '
            f'keeping this exact header and footer:\n\n{artifact_template(context)}'
        )

    def review_instruction(self, session_id: str, version: int = 1) -> str:
        if version < 1:
            raise AgentError(f"Review version must be >= 1, got {version}")

        plan = SessionContext(session_id, Phase.PLAN, version, self.task)
        review = plan.with_phase(Phase.REVIEW, version)

        if version == 1:
            return (
                f'Retrieve the collaboration plan v{version} for session "{session_id}" '
                f'{self._retrieve_clause(plan)}. '
                f'Review the plan from an architectural and implementation perspective. '
                f'Format your review with sections: Strengths, Concerns, Recommendations, '
                f'and Verdict (iterate/proceed). '
                f'{self._store_clause(review, "your review")}'
            )

        return (
            f"I've updated the plan based on your previous feedback. "
            f'Please retrieve plan v{version} for session "{session_id}" '
            f'{self._retrieve_clause(plan)}, and review it. '
            f'Compare with the previous version and assess if concerns were addressed. '
            f'{self._store_clause(review, "your review")}'
        )

    def validation_instruction(self, session_id: str) -> str:
        summary = SessionContext(session_id, Phase.IMPLEMENTATION, None, self.task)
        validation = summary.with_phase(Phase.VALIDATION)
        return (
            f'Implementation is complete. Please retrieve the implementation summary '
            f'for session "{session_id}" {self._retrieve_clause(summary)}. '
            f'Review the actual code files listed in the summary. '
            f'Validate code quality, pattern adherence, security, and test coverage. '
            f'{self._store_clause(validation, "your validation results")}'
        )

    def _argv(self, instruction: str, resume: bool) -> List[str]:
        if resume:
            return [self.command, "resume", "--last", instruction]
        return [self.command, "exec", instruction]

    def review_invocation(self, session_id: str, version: int = 1) -> AgentInvocation:
        """Review of plan v<version>; v1 starts a new agent conversation."""
        instruction = self.review_instruction(session_id, version)
        resume = version > 1
        return AgentInvocation(
            agent=self.name,
            argv=self._argv(instruction, resume),
            instruction=instruction,
            timeout=self.timeout,
            expected_tag=artifact_tag(Phase.REVIEW, session_id, version),
            resumes_session=resume
        )

    def validation_invocation(self, session_id: str) -> AgentInvocation:
        instruction = self.validation_instruction(session_id)
        return AgentInvocation(
            agent=self.name,
            argv=self._argv(instruction, resume=True),
            instruction=instruction,
            timeout=self.timeout,
            expected_tag=artifact_tag(Phase.VALIDATION, session_id),
            resumes_session=True
        )

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def run(self, invocation: AgentInvocation) -> AgentResult:
        """Execute an invocation, bounded by its timeout.

        Exit code -1 means timeout, -2 means the executable could not be
        started. Output is returned as-is; nothing is retried.
        """
        logger.info("Running %s (%s)", invocation.agent, invocation.argv[1])
        start_time = time.time()

        try:
            result = subprocess.run(
                invocation.argv,
                capture_output=True,
                text=True,
                timeout=invocation.timeout
            )
            duration_ms = int((time.time() - start_time) * 1000)

            return AgentResult(
                agent=invocation.agent,
                success=result.returncode == 0,
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
                duration_ms=duration_ms,
                command=invocation.argv
            )

        except subprocess.TimeoutExpired:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.warning("%s timed out after %ds", invocation.agent, invocation.timeout)
            return AgentResult(
                agent=invocation.agent,
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"{invocation.agent} timed out after {invocation.timeout}s",
                duration_ms=duration_ms,
                command=invocation.argv
            )

        except OSError as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error("Could not start %s: %s", invocation.agent, str(e))
            return AgentResult(
                agent=invocation.agent,
                success=False,
                exit_code=-2,
                stdout="",
                stderr=str(e),
                duration_ms=duration_ms,
                command=invocation.argv
            )
