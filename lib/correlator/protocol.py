"""Correlator Protocol - Data structures for session-tagged artifacts"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Phase(Enum):
    """Workflow phase an artifact belongs to."""
    PLAN = "plan"
    REVIEW = "review"
    IMPLEMENTATION = "implementation"
    VALIDATION = "validation"
    PATTERN = "pattern"

    @property
    def versioned(self) -> bool:
        return self in (Phase.PLAN, Phase.REVIEW)

    @property
    def title(self) -> str:
        return PHASE_TITLES[self]

    @classmethod
    def parse(cls, value: str) -> 'Phase':
        """Look up a phase by value, case-insensitively."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ArtifactFormatError(f"Unknown phase '{value}' (expected one of: {choices})")


PHASE_TITLES = {
    Phase.PLAN: "COLLABORATION PLAN",
    Phase.REVIEW: "COLLABORATION REVIEW",
    Phase.IMPLEMENTATION: "IMPLEMENTATION SUMMARY",
    Phase.VALIDATION: "VALIDATION RESULT",
    Phase.PATTERN: "EXTRACTED PATTERN",
}

TAG_PREFIX = "collaboration"


@dataclass(frozen=True)
class SessionIdParts:
    """Components of a session identifier."""
    prefix: str
    date: str
    time: str
    token: str
    label: Optional[str] = None


@dataclass
class SessionContext:
    """Explicit correlation context passed into every correlator operation."""
    session_id: str
    phase: Phase
    version: Optional[int] = None
    task: Optional[str] = None

    def next_version(self) -> 'SessionContext':
        """Context for the following version of the same phase."""
        return SessionContext(
            session_id=self.session_id,
            phase=self.phase,
            version=(self.version or 0) + 1,
            task=self.task
        )

    def with_phase(self, phase: Phase, version: Optional[int] = None) -> 'SessionContext':
        return SessionContext(
            session_id=self.session_id,
            phase=phase,
            version=version,
            task=self.task
        )


@dataclass
class Artifact:
    """A single free-text block stored for one phase/version of a session."""
    phase: Phase
    session_id: str
    content: str
    version: Optional[int] = None
    task: Optional[str] = None

    @property
    def context(self) -> SessionContext:
        return SessionContext(
            session_id=self.session_id,
            phase=self.phase,
            version=self.version,
            task=self.task
        )


@dataclass
class RetrievalQuery:
    """Free-text query handed to the memory store's similarity search."""
    text: str
    limit: int = 5


class CorrelatorError(Exception):
    """Base exception for correlator errors."""
    pass


class InvalidSessionIdError(CorrelatorError, ValueError):
    """Text is not a well-formed session identifier."""
    pass


class ArtifactFormatError(CorrelatorError, ValueError):
    """Artifact text or parameters are malformed."""
    pass
