"""Retrieval query builder.

The store ranks by embedding similarity, not exact match, so queries
over-specify: the session id leads, followed by the tag, the phase title
and version words. A topically similar artifact from another session then
has to beat several redundant identifying terms to outrank the right one.
"""

from typing import Iterable, List, Optional

from .artifacts import artifact_tag, artifact_title
from .protocol import RetrievalQuery, SessionContext, TAG_PREFIX

DEFAULT_LIMIT = 5


def _dedupe(terms: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for term in terms:
        term = " ".join(term.split())
        if not term:
            continue
        key = term.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(term)
    return result


def build_query(
    session_id: str,
    keywords: Iterable[str] = (),
    limit: int = DEFAULT_LIMIT
) -> RetrievalQuery:
    """Concatenate the session id with descriptive keywords.

    Args:
        session_id: Session identifier, always the first term
        keywords: Phase names, task fragments, tags
        limit: Result-count limit passed to the store

    Returns:
        RetrievalQuery with whitespace-normalised, deduplicated terms
    """
    if not session_id or not session_id.strip():
        raise ValueError("Session id is required to build a query")
    if limit < 1:
        raise ValueError(f"Query limit must be >= 1, got {limit}")

    terms = _dedupe([session_id, *keywords])
    return RetrievalQuery(text=" ".join(terms), limit=limit)


def query_for(
    context: SessionContext,
    extra_keywords: Iterable[str] = (),
    limit: int = DEFAULT_LIMIT
) -> RetrievalQuery:
    """Over-specified query for one artifact of a session."""
    keywords = [
        artifact_tag(context.phase, context.session_id, context.version),
        artifact_title(context.phase, context.version),
        context.phase.value,
    ]
    if context.version is not None:
        keywords.append(f"version {context.version}")
    if context.task:
        keywords.append(context.task)
    keywords.append(f"session {context.session_id}")
    keywords.extend(extra_keywords)

    return build_query(context.session_id, keywords, limit=limit)


def session_query(session_id: str, task: Optional[str] = None, limit: int = 20) -> RetrievalQuery:
    """Query returning every artifact of a session, for later lookups."""
    keywords = [TAG_PREFIX]
    if task:
        keywords.append(task)
    return build_query(session_id, keywords, limit=limit)


def tag_pattern(session_id: str) -> str:
    return f"{TAG_PREFIX}:*:{session_id}"
