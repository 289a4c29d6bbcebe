"""Tagged artifact text.

The memory store keeps nothing but free text, so an artifact must carry
its own identity. Every block has a header (title, session, tag) and a
footer repeating the tag and session id:

    **COLLABORATION PLAN v2**
    Session: collab-20261018-142530-payment-auth-K3J9X2QZ
    Task: payment-auth
    Tag: collaboration:plan:v2:collab-20261018-142530-payment-auth-K3J9X2QZ

    ...content...

    ---
    End of collaboration:plan:v2:collab-... (session collab-...)
"""

import re
from typing import List, Optional, Tuple, Union

from .protocol import (
    Artifact, ArtifactFormatError, Phase, PHASE_TITLES, SessionContext, TAG_PREFIX
)

FOOTER_RULE = "---"

PHASE_SECTIONS = {
    Phase.PLAN: [
        ("Context", "[relevant context]"),
        ("Proposed Approach", "[detailed plan]"),
        ("Open Questions", "[areas needing feedback]"),
    ],
    Phase.REVIEW: [
        ("Strengths", "[what works in this plan]"),
        ("Concerns", "[risks and gaps]"),
        ("Recommendations", "[concrete changes]"),
        ("Verdict", "[iterate/proceed]"),
    ],
    Phase.IMPLEMENTATION: [
        ("What Was Built", "[overview]"),
        ("Key Files", "[list files with paths]"),
        ("Patterns Used", "[patterns applied]"),
        ("Testing", "[testing approach and coverage]"),
    ],
    Phase.VALIDATION: [
        ("Code Quality", "[findings]"),
        ("Pattern Adherence", "[findings]"),
        ("Security", "[findings]"),
        ("Test Coverage", "[findings]"),
        ("Verdict", "[approved/changes requested]"),
    ],
    Phase.PATTERN: [
        ("Pattern", "[name and summary]"),
        ("When To Use", "[situations where it applies]"),
        ("Example", "[code or usage example]"),
    ],
}

_TITLES = "|".join(re.escape(t) for t in PHASE_TITLES.values())
_HEADER_RE = re.compile(
    r"^\*\*(?P<title>" + _TITLES + r")(?: v(?P<version>\d+))?\*\*[ \t]*$",
    re.MULTILINE
)
_SESSION_RE = re.compile(r"^Session: (?P<session>\S+)[ \t]*$", re.MULTILINE)
_TASK_RE = re.compile(r"^Task: (?P<task>.+?)[ \t]*$", re.MULTILINE)
_TAG_LINE_RE = re.compile(r"^Tag: (?P<tag>\S+)[ \t]*$", re.MULTILINE)
_FOOTER_RE = re.compile(
    r"^" + re.escape(FOOTER_RULE) + r"\nEnd of (?P<tag>\S+) \(session (?P<session>\S+)\)[ \t]*$",
    re.MULTILINE
)
_TAG_RE = re.compile(
    re.escape(TAG_PREFIX) + r":(?P<phase>[a-z]+)(?::v(?P<version>\d+))?:(?P<session>\S+)"
)


def _check_version(phase: Phase, version: Optional[int]) -> None:
    if phase.versioned:
        if version is None:
            raise ArtifactFormatError(f"Phase '{phase.value}' requires a version number")
        if version < 1:
            raise ArtifactFormatError(f"Version must be >= 1, got {version}")
    elif version is not None:
        raise ArtifactFormatError(f"Phase '{phase.value}' is not versioned")


def artifact_tag(phase: Phase, session_id: str, version: Optional[int] = None) -> str:
    """Build the tag string, e.g. ``collaboration:review:v2:<session>``."""
    _check_version(phase, version)
    if not session_id or not session_id.strip():
        raise ArtifactFormatError("Session id is required")
    if phase.versioned:
        return f"{TAG_PREFIX}:{phase.value}:v{version}:{session_id}"
    return f"{TAG_PREFIX}:{phase.value}:{session_id}"


def parse_tag(tag: str) -> Tuple[Phase, Optional[int], str]:
    """Split a tag into (phase, version, session_id)."""
    match = _TAG_RE.fullmatch(tag.strip())
    if match is None:
        raise ArtifactFormatError(f"Not an artifact tag: {tag!r}")

    phase = Phase.parse(match.group("phase"))
    version = int(match.group("version")) if match.group("version") else None
    _check_version(phase, version)
    return phase, version, match.group("session")


def artifact_title(phase: Phase, version: Optional[int] = None) -> str:
    if phase.versioned:
        return f"{phase.title} v{version}"
    return phase.title


def _header(context: SessionContext) -> List[str]:
    tag = artifact_tag(context.phase, context.session_id, context.version)
    lines = [
        f"**{artifact_title(context.phase, context.version)}**",
        f"Session: {context.session_id}",
    ]
    if context.task:
        lines.append(f"Task: {context.task}")
    lines.append(f"Tag: {tag}")
    return lines


def _footer(context: SessionContext) -> List[str]:
    tag = artifact_tag(context.phase, context.session_id, context.version)
    return [FOOTER_RULE, f"End of {tag} (session {context.session_id})"]


def format_artifact(
    artifact_or_context: Union[Artifact, SessionContext],
    content: Optional[str] = None
) -> str:
    """Render a self-describing artifact block.

    Accepts either a complete Artifact, or a SessionContext plus content.
    """
    if isinstance(artifact_or_context, Artifact):
        context = artifact_or_context.context
        body = artifact_or_context.content if content is None else content
    else:
        context = artifact_or_context
        body = content or ""

    lines = _header(context)
    lines.append("")
    lines.append(body.strip("\n"))
    lines.append("")
    lines.extend(_footer(context))
    return "\n".join(lines) + "\n"


def template_body(phase: Phase, version: Optional[int] = None) -> str:
    """Section scaffold for a phase, with bracketed placeholders."""
    sections = list(PHASE_SECTIONS[phase])
    if phase is Phase.PLAN and version and version > 1:
        sections.append((f"Changes from v{version - 1}", "[how previous review feedback was addressed]"))

    blocks = [f"## {name}\n{placeholder}" for name, placeholder in sections]
    return "\n\n".join(blocks)


def artifact_template(context: SessionContext) -> str:
    """A fill-in-the-blanks artifact for the given phase/version."""
    return format_artifact(context, template_body(context.phase, context.version))


def parse_artifact(text: str) -> Artifact:
    """Recover an Artifact from a formatted block.

    The header must be present. The footer is optional (stores may trim
    long content) but, when present, must name the same tag and session.

    Raises:
        ArtifactFormatError: If the text is not a consistent artifact block
    """
    if not text:
        raise ArtifactFormatError("Empty artifact text")

    header = _HEADER_RE.search(text)
    if header is None:
        raise ArtifactFormatError("No artifact header found")

    rest = text[header.end():]
    tag_line = _TAG_LINE_RE.search(rest)
    if tag_line is None:
        raise ArtifactFormatError("No Tag: line after artifact header")

    phase, version, session_id = parse_tag(tag_line.group("tag"))

    title = header.group("title").strip()
    header_version = int(header.group("version")) if header.group("version") else None
    if title != phase.title or header_version != version:
        raise ArtifactFormatError(
            f"Header '{artifact_title(phase, version)}' does not match tag {tag_line.group('tag')}"
        )

    preamble = rest[:tag_line.start()]
    session_line = _SESSION_RE.search(preamble)
    if session_line is None or session_line.group("session") != session_id:
        raise ArtifactFormatError("Session line missing or disagrees with tag")

    task_line = _TASK_RE.search(preamble)
    task = task_line.group("task") if task_line else None

    body = rest[tag_line.end():]
    footers = list(_FOOTER_RE.finditer(body))
    footer = footers[-1] if footers else None
    if footer is not None:
        if footer.group("tag") != tag_line.group("tag") or footer.group("session") != session_id:
            raise ArtifactFormatError("Footer disagrees with header tag")
        body = body[:footer.start()]

    return Artifact(
        phase=phase,
        session_id=session_id,
        content=body.strip("\n"),
        version=version,
        task=task
    )


def try_parse_artifact(text: str) -> Optional[Artifact]:
    try:
        return parse_artifact(text)
    except ArtifactFormatError:
        return None
