"""Session Correlator

Correlates artifacts written by independent, stateless agent invocations
through a semantic-search memory store that has no tags, keys or
versioning of its own. Identity lives in the text:

    session id   collab-20261018-142530-payment-auth-K3J9X2QZ
    artifact     header + footer carrying collaboration:<phase>[:vN]:<session>
    query        session id + tag + phase words, deduplicated

Usage:
    from lib.correlator import generate_session_id, SessionContext, Phase
    from lib.correlator import format_artifact, query_for

    session_id = generate_session_id("payment-auth")
    ctx = SessionContext(session_id=session_id, phase=Phase.PLAN, version=1)

    text = format_artifact(ctx, "## Proposed Approach\n...")
    query = query_for(ctx)
"""

from .protocol import (
    Phase, SessionContext, SessionIdParts, Artifact, RetrievalQuery,
    CorrelatorError, InvalidSessionIdError, ArtifactFormatError
)
from .session import generate_session_id, is_session_id, parse_session_id, find_session_ids
from .artifacts import (
    artifact_tag, parse_tag, artifact_title, format_artifact,
    artifact_template, parse_artifact, try_parse_artifact
)
from .queries import build_query, query_for, session_query, tag_pattern

__all__ = [
    'Phase', 'SessionContext', 'SessionIdParts', 'Artifact', 'RetrievalQuery',
    'CorrelatorError', 'InvalidSessionIdError', 'ArtifactFormatError',
    'generate_session_id', 'is_session_id', 'parse_session_id', 'find_session_ids',
    'artifact_tag', 'parse_tag', 'artifact_title', 'format_artifact',
    'artifact_template', 'parse_artifact', 'try_parse_artifact',
    'build_query', 'query_for', 'session_query', 'tag_pattern',
]
