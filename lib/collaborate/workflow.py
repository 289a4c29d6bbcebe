"""Interactive collaboration driver.

Walks a human through plan → review (× N) → implementation → validation,
printing what the planner should do and the reviewer command to run.
There is no shared process between phases; each step is correlated
only through the session id embedded in the artifacts.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..agents import AgentInvocation, AgentResult, CodexAgent
from ..correlator import (
    Phase, SessionContext, artifact_tag, artifact_template, format_artifact,
    query_for, session_query, tag_pattern
)
from ..correlator.artifacts import template_body
from ..memory import ArtifactNotRetrievable, MemoryStoreError, SessionMemory, get_logger
from .config import CollabConfig
from .console import BLUE, GREEN, YELLOW, Console

logger = get_logger(__name__)


class WorkflowAborted(Exception):
    """The human interrupted a prompt."""
    pass


@dataclass
class WorkflowSummary:
    """Outcome of one interactive run."""
    session_id: str
    task: str
    iterations_requested: int
    iterations_run: int = 0
    final_plan_version: int = 1
    proceeded_early: bool = False
    stored_tags: List[str] = field(default_factory=list)


class CollaborationWorkflow:
    """Drives one session through the planning, implementation and validation phases."""

    def __init__(
        self,
        task_name: str,
        session_id: str,
        config: CollabConfig,
        agent: CodexAgent,
        console: Console,
        iterations: Optional[int] = None,
        ask: Callable[[str], str] = input,
        memory: Optional[SessionMemory] = None,
        execute: bool = False
    ):
        self.task = task_name
        self.session_id = session_id
        self.config = config
        self.agent = agent
        self.console = console
        self.iterations = iterations or config.session.default_iterations
        self.ask = ask
        self.memory = memory
        self.execute = execute
        self.log = logger.bind(session_id)

        if self.iterations < 1:
            raise ValueError(f"Iterations must be >= 1, got {self.iterations}")

        self.summary = WorkflowSummary(
            session_id=session_id,
            task=task_name,
            iterations_requested=self.iterations
        )

    @property
    def planner(self) -> str:
        return self.config.planner_name

    @property
    def store(self) -> str:
        return self.config.memory.store_name

    def context(self, phase: Phase, version: Optional[int] = None) -> SessionContext:
        return SessionContext(self.session_id, phase, version, self.task)

    def _prompt(self, message: str) -> str:
        try:
            return self.ask(self.console.paint(message, YELLOW))
        except (EOFError, KeyboardInterrupt):
            raise WorkflowAborted(f"Aborted during session {self.session_id}")

    def pause(self) -> None:
        self._prompt("Press Enter to continue...")
        self.console.line()

    def confirm_continue(self) -> str:
        """Ask whether to keep iterating. Returns 'y', 'n' or '' (invalid)."""
        reply = self._prompt("Continue iterating? [y/n]: ").strip().lower()
        if reply[:1] in ("y", "n"):
            return reply[:1]
        return ""

    def run(self) -> WorkflowSummary:
        self._intro()
        self._planning()
        self._iterate()
        self._implementation()
        self._validation()
        return self._complete()

    def _intro(self) -> None:
        c = self.console
        c.banner("Collaboration Workflow")
        c.label("Session ID", self.session_id)
        c.label("Task", self.task)
        c.label("Max Iterations", str(self.iterations))
        c.label("Mode", "execute" if self.execute else "print commands")
        c.line()

    def _show_template(self, heading: str, text: str) -> None:
        c = self.console
        c.line(heading)
        c.rule()
        c.lines(text)
        c.rule()
        c.line()

    def _planning(self) -> None:
        c = self.console
        plan = self.context(Phase.PLAN, 1)

        c.box("PHASE 1: Planning & Iteration")
        c.steps(f"Instructions for {self.planner}:", [
            f"Analyze the requirements for: {self.task}",
            "Create an initial plan (v1)",
            f"Store it in {self.store} with tag: '{artifact_tag(Phase.PLAN, self.session_id, 1)}'",
        ])
        self._show_template("Use this format:", artifact_template(plan))
        self.pause()

    def _iterate(self) -> None:
        c = self.console

        for i in range(1, self.iterations + 1):
            c.box(f"Iteration {i} of {self.iterations}", GREEN)
            self.summary.iterations_run = i

            self._run_or_print(
                f"Invoking {self.agent.name} for Review (v{i})",
                self.agent.review_invocation(self.session_id, i),
                awaited=(Phase.PLAN, i)
            )

            c.warn(f"Review complete. Check {self.agent.name}'s feedback above.")
            c.line()
            c.warn(f"Does {self.agent.name} recommend proceeding to implementation?")
            reply = self.confirm_continue()
            c.line()

            if reply == "n":
                c.line("✓ Ready to implement!", GREEN)
                self.summary.proceeded_early = True
                self.summary.final_plan_version = i
                break
            if reply != "y":
                c.line("Invalid input. Continuing...")

            review = self.context(Phase.REVIEW, i)
            next_plan = self.context(Phase.PLAN, i + 1)
            c.line()
            c.steps(f"Instructions for {self.planner}:", [
                f"Retrieve {self.agent.name}'s review v{i} from {self.store} (query: {query_for(review).text})",
                "Address the feedback and improve the plan",
                f"Store updated plan as v{i + 1} with tag: "
                f"'{artifact_tag(Phase.PLAN, self.session_id, i + 1)}'",
                f"Include a 'Changes from v{i}' section",
            ])
            self._show_template("Use this format:", artifact_template(next_plan))
            self.summary.final_plan_version = i + 1
            self.pause()

    def _implementation(self) -> None:
        c = self.console
        final = self.summary.final_plan_version
        summary = self.context(Phase.IMPLEMENTATION)

        c.line()
        c.box("PHASE 2: Implementation")
        c.steps(f"Instructions for {self.planner}:", [
            f"Retrieve the final validated plan (v{final}) from {self.store} "
            f"(query: {query_for(self.context(Phase.PLAN, final)).text})",
            "Implement the solution following the plan",
            f"Store implementation summary in {self.store} with tag: "
            f"'{artifact_tag(Phase.IMPLEMENTATION, self.session_id)}'",
        ])
        body = f"Based on: Plan v{final}\n\n{template_body(Phase.IMPLEMENTATION)}"
        self._show_template("Implementation summary format:", format_artifact(summary, body))
        self.pause()

    def _validation(self) -> None:
        c = self.console

        c.line()
        c.box("PHASE 3: Validation")
        self._run_or_print(
            f"Invoking {self.agent.name} for Implementation Validation",
            self.agent.validation_invocation(self.session_id),
            awaited=(Phase.IMPLEMENTATION, None)
        )

        c.warn(f"Validation complete. Check {self.agent.name}'s feedback above.")
        c.line()
        c.steps(f"Instructions for {self.planner}:", [
            f"Retrieve {self.agent.name}'s validation from {self.store} "
            f"(tag: '{artifact_tag(Phase.VALIDATION, self.session_id)}')",
            "Address any issues or recommendations",
            "If changes were made, update the implementation",
            f"Store final reusable patterns in {self.store} with tag: "
            f"'{artifact_tag(Phase.PATTERN, self.session_id)}'",
        ])
        self._show_template("Pattern format:", artifact_template(self.context(Phase.PATTERN)))
        self.pause()

    def _complete(self) -> WorkflowSummary:
        c = self.console
        s = self.summary

        c.line()
        c.box("Collaboration Complete! ✓", GREEN)
        c.label("Session ID", self.session_id, BLUE)
        c.line()
        c.line(f"All context has been preserved in {self.store} memory.")
        c.line("You can query this session anytime with:")
        c.warn(f'  - Query: "{session_query(self.session_id, self.task).text}"')
        c.warn(f'  - Tag: "{tag_pattern(self.session_id)}"')
        c.line()
        c.line("Stored artifacts:")
        c.line(f"  • Planning iterations (v1 to v{s.final_plan_version})")
        c.line(f"  • {self.agent.name} reviews (v1 to v{s.iterations_run})")
        c.line("  • Implementation summary")
        c.line("  • Validation results")
        c.line("  • Extracted patterns for reuse")
        c.line()

        if self.memory is not None:
            s.stored_tags = self.memory.stored_tags()
            if s.stored_tags:
                c.line("Written through this helper:")
                for tag in s.stored_tags:
                    c.line(f"  • {tag}")
                c.line()

        c.line("Happy coding! 🚀", GREEN)
        return s

    def _run_or_print(self, title: str, invocation: AgentInvocation, awaited=None) -> None:
        """Print the reviewer command, or run it when executing."""
        c = self.console
        c.section(title)

        if not self.execute:
            c.line(invocation.render())
            c.line()
            return

        if awaited is not None:
            self._await_artifact(*awaited)

        result = self.agent.run(invocation)
        self._show_result(invocation, result)
        c.line()

    def _await_artifact(self, phase: Phase, version: Optional[int]) -> None:
        """Wait for the planner's artifact to become searchable."""
        if self.memory is None:
            return

        settings = self.config.memory
        tag = artifact_tag(phase, self.session_id, version)
        try:
            self.memory.wait_until_retrievable(
                phase, version,
                timeout=settings.poll_timeout,
                initial_delay=settings.poll_initial_delay,
                max_delay=settings.poll_max_delay
            )
            self.console.label("Retrievable", tag)
        except ArtifactNotRetrievable as e:
            self.log.warning("%s", str(e))
            self.console.warn(f"{e}. Proceeding; check that {self.agent.name} finds the right artifact.")
        except MemoryStoreError as e:
            self.log.error("Memory store error while waiting for %s: %s", tag, str(e))
            self.console.warn(f"Could not check {tag}: {e}. Proceeding.")

    def _show_result(self, invocation: AgentInvocation, result: AgentResult) -> None:
        c = self.console
        if result.success:
            c.lines(result.stdout or "(no output)")
            return

        c.warn(f"{result.agent} exited with code {result.exit_code}: {result.stderr.strip()}")
        c.line("Re-run manually:")
        c.line(invocation.render())
