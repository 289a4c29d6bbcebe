"""Command-line entry points.

Helper (one-shot commands):
    collab session [label]
    collab codex-review <session-id> [--version N]
    collab codex-validate <session-id>
    collab template <session-id> <phase> [--version N] [--task T]
    collab query <session-id> <phase> [keywords ...] [--version N] [--task T]
    collab store <session-id> <phase> [--version N] [--task T] [--file PATH]
    collab find <session-id> <phase> [--version N] [--wait]
    collab help

Interactive driver:
    collaborate <task-name> [iterations] [--session-id ID] [--execute]

Exit codes: 0 success, 1 artifact not found, 2 usage or configuration
error, 130 aborted at a prompt.
"""

import argparse
import logging
import sys
from typing import List, Optional

from ..agents import CodexAgent
from ..correlator import (
    ArtifactFormatError, Phase, SessionContext, artifact_template,
    generate_session_id, is_session_id, query_for
)
from ..memory import (
    ArtifactNotRetrievable, MemoryStoreError, SessionMemory, connect_mirror
)
from .config import CollabConfig, ConfigError
from .console import Console
from .workflow import CollaborationWorkflow, WorkflowAborted

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_USAGE = 2
EXIT_ABORTED = 130


class HelpOnErrorParser(argparse.ArgumentParser):
    """Prints the full help text, not just usage, on argument errors."""

    def error(self, message):
        self.print_help(sys.stderr)
        self.exit(EXIT_USAGE, f"\n{self.prog}: error: {message}\n")


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def phase_arg(value: str) -> Phase:
    try:
        return Phase.parse(value)
    except ArtifactFormatError as e:
        raise argparse.ArgumentTypeError(str(e))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr
    )


def _build_agent(config: CollabConfig, task: Optional[str] = None) -> CodexAgent:
    return CodexAgent(
        command=config.agent.command,
        name=config.agent.name,
        timeout=config.agent.timeout,
        store_name=config.memory.store_name,
        retrieve_tool=config.memory.retrieve_tool,
        store_tool=config.memory.store_tool,
        result_limit=config.memory.result_limit,
        task=task
    )


def _build_memory(
    config: CollabConfig,
    session_id: str,
    task: Optional[str] = None
) -> Optional[SessionMemory]:
    settings = config.memory
    if not settings.enabled:
        return None

    return SessionMemory(
        session_id,
        store_command=settings.store_command,
        search_command=settings.search_command,
        command_timeout=settings.command_timeout,
        retries=settings.retries,
        result_limit=settings.result_limit,
        task=task,
        redis_client=connect_mirror(settings.redis_url)
    )


def _check_session_id(session_id: str) -> None:
    if not is_session_id(session_id):
        print(f"warning: '{session_id}' does not look like a session id", file=sys.stderr)


def _quotable_session_id(session_id: str) -> bool:
    """Printed commands are single-quoted; an id with ' would not survive verbatim."""
    if "'" in session_id:
        print(f"error: session id may not contain a single quote: {session_id}", file=sys.stderr)
        return False
    return True


def _context(args) -> SessionContext:
    """SessionContext from session_id/phase/version/task arguments."""
    version = args.version
    if version is None and args.phase.versioned:
        version = 1
    return SessionContext(args.session_id, args.phase, version, getattr(args, "task", None))


def build_helper_parser() -> argparse.ArgumentParser:
    parser = HelpOnErrorParser(
        prog="collab",
        description="Session helper for planner/reviewer collaboration through a shared memory store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", type=str, help="YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", metavar="command")

    p = sub.add_parser("session", help="Print a freshly generated session id")
    p.add_argument("label", nargs="?", help="Optional task label embedded in the id")

    p = sub.add_parser("codex-review", help="Print the reviewer invocation for plan vN")
    p.add_argument("session_id")
    p.add_argument("--version", type=positive_int, default=1, help="Plan version to review")

    p = sub.add_parser("codex-validate", help="Print the reviewer validation invocation")
    p.add_argument("session_id")

    for name, help_text in (
        ("template", "Print a tagged artifact template"),
        ("query", "Print a retrieval query for an artifact"),
        ("store", "Format an artifact from a file/stdin and write it to the store"),
        ("find", "Search the store for an artifact and print it"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("session_id")
        p.add_argument("phase", type=phase_arg, help="plan, review, implementation, validation, pattern")
        p.add_argument("--version", type=positive_int, help="Version (plan/review only, default 1)")
        p.add_argument("--task", type=str, help="Task description")
        if name == "query":
            p.add_argument("keywords", nargs="*", help="Extra keywords")
            p.add_argument("--limit", type=positive_int, default=5)
        elif name == "store":
            p.add_argument("--file", type=str, help="Content file (default: stdin)")
        elif name == "find":
            p.add_argument("--wait", action="store_true", help="Poll with backoff until found")

    sub.add_parser("help", help="Show this help")
    return parser


def _cmd_store(args, config: CollabConfig) -> int:
    memory = _build_memory(config, args.session_id, args.task)
    if memory is None:
        print("error: memory store is not enabled (memory.enabled in config)", file=sys.stderr)
        return EXIT_USAGE

    if args.file:
        try:
            with open(args.file, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            print(f"error: cannot read {args.file}: {e.strerror or e}", file=sys.stderr)
            return EXIT_USAGE
    else:
        content = sys.stdin.read()

    tag = memory.store(_context(args), content)
    print(tag)
    return EXIT_OK


def _cmd_find(args, config: CollabConfig) -> int:
    memory = _build_memory(config, args.session_id, args.task)
    if memory is None:
        print("error: memory store is not enabled (memory.enabled in config)", file=sys.stderr)
        return EXIT_USAGE

    ctx = _context(args)
    if args.wait:
        try:
            hit = memory.wait_until_retrievable(
                ctx.phase, ctx.version,
                timeout=config.memory.poll_timeout,
                initial_delay=config.memory.poll_initial_delay,
                max_delay=config.memory.poll_max_delay
            )
        except ArtifactNotRetrievable as e:
            print(f"not found: {e}", file=sys.stderr)
            return EXIT_NOT_FOUND
    else:
        hit = memory.find_artifact(ctx.phase, ctx.version)
        if hit is None:
            print("not found", file=sys.stderr)
            return EXIT_NOT_FOUND

    print(hit.content)
    return EXIT_OK


def helper_main(argv: Optional[List[str]] = None) -> int:
    parser = build_helper_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command is None:
        parser.print_help(sys.stderr)
        return EXIT_USAGE
    if args.command == "help":
        parser.print_help()
        return EXIT_OK

    try:
        config = CollabConfig.load(args.config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if args.command == "session":
        print(generate_session_id(
            args.label,
            prefix=config.session.prefix,
            suffix_length=config.session.suffix_length
        ))
        return EXIT_OK

    _check_session_id(args.session_id)
    if args.command in ("codex-review", "codex-validate") and not _quotable_session_id(args.session_id):
        return EXIT_USAGE

    try:
        if args.command == "codex-review":
            print(_build_agent(config).review_invocation(args.session_id, args.version).render())
        elif args.command == "codex-validate":
            print(_build_agent(config).validation_invocation(args.session_id).render())
        elif args.command == "template":
            print(artifact_template(_context(args)), end="")
        elif args.command == "query":
            print(query_for(_context(args), args.keywords, limit=args.limit).text)
        elif args.command == "store":
            return _cmd_store(args, config)
        elif args.command == "find":
            return _cmd_find(args, config)
    except ArtifactFormatError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except MemoryStoreError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND

    return EXIT_OK


def build_collaborate_parser() -> argparse.ArgumentParser:
    parser = HelpOnErrorParser(
        prog="collaborate",
        description="Interactive planner/reviewer collaboration workflow"
    )
    parser.add_argument("task_name", help="Task name, embedded in the session id")
    parser.add_argument("iterations", nargs="?", type=positive_int, help="Maximum review iterations (default 3)")
    parser.add_argument("--session-id", type=str, help="Reuse an existing session id")
    parser.add_argument("--execute", action="store_true", help="Run the reviewer instead of printing its command")
    parser.add_argument("--config", type=str, help="YAML config file")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI colors")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def collaborate_main(argv: Optional[List[str]] = None, ask=input) -> int:
    args = build_collaborate_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = CollabConfig.load(args.config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    session_id = args.session_id or generate_session_id(
        args.task_name,
        prefix=config.session.prefix,
        suffix_length=config.session.suffix_length
    )
    if args.session_id:
        _check_session_id(session_id)
        if not _quotable_session_id(session_id):
            return EXIT_USAGE

    console = Console(color=False if args.no_color else None)
    workflow = CollaborationWorkflow(
        task_name=args.task_name,
        session_id=session_id,
        config=config,
        agent=_build_agent(config, args.task_name),
        console=console,
        iterations=args.iterations,
        ask=ask,
        memory=_build_memory(config, session_id, args.task_name),
        execute=args.execute
    )

    try:
        workflow.run()
    except WorkflowAborted as e:
        console.error(f"\n{e}")
        return EXIT_ABORTED

    return EXIT_OK


def main() -> None:
    sys.exit(helper_main())


def collaborate() -> None:
    sys.exit(collaborate_main())
