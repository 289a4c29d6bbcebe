"""Memory Protocol - Results and errors for the external memory store"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..correlator import Artifact, Phase, try_parse_artifact


class MemoryStoreError(Exception):
    """Base exception for memory store operations."""
    pass


class MemoryStoreTimeout(MemoryStoreError):
    """Store command timed out."""
    pass


class MemoryStoreUnavailable(MemoryStoreError):
    """Store CLI not available."""
    pass


class ArtifactNotRetrievable(MemoryStoreError):
    """Artifact did not become searchable before the poll timeout."""

    def __init__(self, tag: str, waited: float, attempts: int):
        self.tag = tag
        self.waited = waited
        self.attempts = attempts
        super().__init__(
            f"{tag} not retrievable after {waited:.1f}s ({attempts} searches)"
        )


@dataclass
class RetrievedArtifact:
    """A single search hit from the memory store."""
    id: str
    content: str
    score: float = 0.0
    source: str = "store"
    metadata: Dict[str, Any] = field(default_factory=dict)
    artifact: Optional[Artifact] = None

    def __post_init__(self):
        if self.artifact is None:
            self.artifact = try_parse_artifact(self.content)

    def matches(self, session_id: str, phase: Phase, version: Optional[int] = None) -> bool:
        """True when the hit's own embedded tag names this session/phase/version."""
        if self.artifact is None:
            return False
        return (
            self.artifact.session_id == session_id
            and self.artifact.phase is phase
            and self.artifact.version == version
        )
