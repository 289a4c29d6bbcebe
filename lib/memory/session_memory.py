"""Session Memory - external memory-store client for one collaboration session

Writes tagged artifacts to the store and searches for them again. The
store is reached through configurable CLI command templates and treated
as a black box: free text in, similarity-ranked free text out.
"""

import json
import subprocess
import sys
import time
from datetime import datetime, timezone
from string import Template
from typing import Any, Dict, List, Optional, Sequence

from ..correlator import (
    Artifact, Phase, SessionContext, artifact_tag, format_artifact, query_for
)
from ..correlator.protocol import RetrievalQuery
from .memory_protocol import (
    ArtifactNotRetrievable, MemoryStoreError, MemoryStoreTimeout,
    MemoryStoreUnavailable, RetrievedArtifact
)
from .security import get_logger, redact, sanitize

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "collab:session"


class SessionMemory:
    """Store/search artifacts of a single session.

    Usage:
        memory = SessionMemory(
            session_id,
            store_command=["brv", "store", "${content}"],
            search_command=["brv", "search", "${query}", "--limit", "${limit}", "--json"],
        )
        memory.store_artifact(Artifact(Phase.PLAN, session_id, text, version=1))
        hit = memory.wait_until_retrievable(Phase.PLAN, version=1)
    """

    def __init__(
        self,
        session_id: str,
        store_command: Sequence[str],
        search_command: Sequence[str],
        command_timeout: int = 30,
        retries: int = 2,
        result_limit: int = 5,
        task: Optional[str] = None,
        redis_client: Optional[Any] = None
    ):
        if not store_command or not search_command:
            raise ValueError("Both store_command and search_command are required")

        self.session_id = session_id
        self.store_command = list(store_command)
        self.search_command = list(search_command)
        self.command_timeout = command_timeout
        self.retries = retries
        self.result_limit = result_limit
        self.task = task
        self.redis = redis_client
        self.log = logger.bind(session_id)

    @property
    def cache_key(self) -> str:
        return f"{CACHE_KEY_PREFIX}:{self.session_id}:artifacts"

    @staticmethod
    def _build_command(template: Sequence[str], values: Dict[str, Any]) -> List[str]:
        """Substitute ${var} placeholders argument by argument (no shell)."""
        str_values = {k: str(v) for k, v in values.items()}
        return [Template(arg).safe_substitute(str_values) for arg in template]

    def _store_cmd(
        self,
        action: str,
        data: Dict[str, Any],
        retries: Optional[int] = None,
        silent: bool = False
    ) -> Optional[Dict]:
        """Run a store command with retry and error categorization.

        Args:
            action: "store" or "search"
            data: Template values (content, or query and limit)
            retries: Retry attempts (default: self.retries)
            silent: If True, return None instead of raising

        Returns:
            {"success": True} for store, parsed JSON for search

        Raises:
            MemoryStoreTimeout: If the command times out
            MemoryStoreUnavailable: If the CLI is not found
            MemoryStoreError: For non-zero exits and unparseable output
        """
        retries = self.retries if retries is None else retries
        template = self.store_command if action == "store" else self.search_command
        cmd = self._build_command(template, data)
        last_error: Optional[MemoryStoreError] = None

        for attempt in range(retries + 1):
            try:
                result = subprocess.run(
                    cmd, capture_output=True, text=True, timeout=self.command_timeout
                )
                if result.returncode != 0:
                    raise MemoryStoreError(
                        f"{action} failed with code {result.returncode}: {result.stderr.strip()}"
                    )
                if action == "store":
                    return {"success": True}
                return self._parse_search_output(result.stdout)

            except subprocess.TimeoutExpired:
                last_error = MemoryStoreTimeout(f"Timeout after {self.command_timeout}s: {action}")
                self._log_error("timeout", action, attempt, str(last_error))
            except FileNotFoundError:
                last_error = MemoryStoreUnavailable(f"Store CLI not found: {cmd[0]}")
                self._log_error("unavailable", action, attempt, str(last_error))
                break
            except json.JSONDecodeError as e:
                last_error = MemoryStoreError(f"Invalid JSON response: {e}")
                self._log_error("parse_error", action, attempt, str(last_error))
            except MemoryStoreError as e:
                last_error = e
                self._log_error("command_failed", action, attempt, str(e))

            if attempt < retries:
                time.sleep(0.5 * (2 ** attempt))

        if not silent and last_error:
            raise last_error
        return None

    @staticmethod
    def _parse_search_output(stdout: str) -> Dict:
        if not stdout or not stdout.strip():
            return {"results": []}
        data = json.loads(stdout)
        if isinstance(data, list):
            return {"results": data}
        return data

    def _log_error(self, error_type: str, action: str, attempt: int, message: str) -> None:
        """Structured error logging."""
        log_entry = {
            "level": "error",
            "component": "memory_store",
            "error_type": error_type,
            "action": action,
            "attempt": attempt + 1,
            "message": sanitize(message),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id
        }
        print(json.dumps(log_entry), file=sys.stderr)

    def store_artifact(self, artifact: Artifact) -> str:
        """Format, redact and write an artifact. Returns its tag.

        The local Redis mirror (if any) records the artifact only once the
        store command has succeeded, and keeps every such write, duplicates
        included.
        """
        if artifact.session_id != self.session_id:
            raise ValueError(
                f"Artifact belongs to session {artifact.session_id}, not {self.session_id}"
            )

        tag = artifact_tag(artifact.phase, artifact.session_id, artifact.version)
        text, found = redact(format_artifact(artifact))
        if found:
            self.log.warning("Redacted %s from %s before storing", ", ".join(found), tag)

        self._store_cmd("store", {"content": text, "tag": tag})

        if self.redis:
            self.redis.rpush(self.cache_key, json.dumps({
                "tag": tag,
                "phase": artifact.phase.value,
                "version": artifact.version,
                "content": text,
                "stored_at": datetime.now(timezone.utc).isoformat()
            }))

        self.log.info("Stored %s", tag)
        return tag

    def store(self, context: SessionContext, content: str) -> str:
        return self.store_artifact(Artifact(
            phase=context.phase,
            session_id=context.session_id,
            content=content,
            version=context.version,
            task=context.task or self.task
        ))

    def search(self, query: RetrievalQuery, use_cache_fallback: bool = True) -> List[RetrievedArtifact]:
        """Similarity search, ranked by the store.

        Falls back to the Redis mirror when the store CLI is unavailable
        or times out.
        """
        try:
            result = self._store_cmd(
                "search",
                {"query": query.text, "limit": query.limit},
                silent=use_cache_fallback and self.redis is not None
            )
        except (MemoryStoreTimeout, MemoryStoreUnavailable):
            if use_cache_fallback and self.redis:
                return self._search_cache(query)
            raise

        if result is None:
            return self._search_cache(query) if self.redis else []

        hits = []
        for i, r in enumerate(result.get("results", [])):
            if isinstance(r, str):
                hits.append(RetrievedArtifact(id=f"result-{i}", content=r))
                continue
            if not isinstance(r, dict):
                raise MemoryStoreError(f"Unexpected search result at position {i}: {type(r).__name__}")
            hits.append(RetrievedArtifact(
                id=str(r.get("id", "unknown")),
                content=r.get("content", ""),
                score=float(r.get("score", 0.0) or 0.0),
                metadata=r.get("metadata", {}) or {}
            ))
        return hits[:query.limit]

    def _search_cache(self, query: RetrievalQuery) -> List[RetrievedArtifact]:
        """Term-overlap search over the local mirror."""
        terms = [t.lower() for t in query.text.split()]
        if not terms:
            return []

        scored = []
        for index, raw in enumerate(self.redis.lrange(self.cache_key, 0, -1)):
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                continue

            content = entry.get("content", "")
            content_lower = content.lower()
            hits = sum(1 for t in terms if t in content_lower)
            if hits == 0:
                continue

            scored.append(RetrievedArtifact(
                id=f"cache-{index}",
                content=content,
                score=hits / len(terms),
                source="cache",
                metadata={"tag": entry.get("tag"), "stored_at": entry.get("stored_at")}
            ))

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:query.limit]

    def find_artifact(self, phase: Phase, version: Optional[int] = None) -> Optional[RetrievedArtifact]:
        """Best-ranked hit whose embedded tag names this session/phase/version.

        Hits from other sessions, or untagged text, are dropped. When more
        than one hit claims the same tag the store's ranking decides and
        the duplication is logged; it is not resolved here.
        """
        context = SessionContext(self.session_id, phase, version, self.task)
        query = query_for(context, limit=self.result_limit)
        hits = self.search(query)

        matching = [h for h in hits if h.matches(self.session_id, phase, version)]
        if len(matching) < len(hits):
            self.log.debug(
                "Dropped %d of %d hits not tagged %s",
                len(hits) - len(matching), len(hits),
                artifact_tag(phase, self.session_id, version)
            )
        if not matching:
            return None

        distinct = {h.artifact.content for h in matching}
        if len(distinct) > 1:
            self.log.warning(
                "%d different artifacts claim %s; using the best-ranked one",
                len(distinct), artifact_tag(phase, self.session_id, version)
            )
        return matching[0]

    def wait_until_retrievable(
        self,
        phase: Phase,
        version: Optional[int] = None,
        timeout: float = 60.0,
        initial_delay: float = 2.0,
        max_delay: float = 15.0
    ) -> RetrievedArtifact:
        """Poll until a freshly written artifact shows up in search.

        Exponential backoff from initial_delay, capped at max_delay, bounded
        by timeout. Store timeouts count as a miss; a missing store CLI
        propagates immediately.

        Raises:
            ArtifactNotRetrievable: If the artifact is still missing at timeout
        """
        tag = artifact_tag(phase, self.session_id, version)
        start = time.monotonic()
        delay = initial_delay
        attempts = 0

        while True:
            attempts += 1
            try:
                hit = self.find_artifact(phase, version)
            except MemoryStoreTimeout:
                hit = None
            if hit is not None:
                self.log.info("%s retrievable after %d searches", tag, attempts)
                return hit

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                raise ArtifactNotRetrievable(tag, elapsed, attempts)

            self.log.debug("%s not yet retrievable, retrying in %.1fs", tag, delay)
            time.sleep(min(delay, timeout - elapsed))
            delay = min(delay * 2, max_delay)

    def stored_tags(self) -> List[str]:
        """Tags written through this client, in write order (mirror only)."""
        if not self.redis:
            return []

        tags = []
        for raw in self.redis.lrange(self.cache_key, 0, -1):
            try:
                tags.append(json.loads(raw)["tag"])
            except (json.JSONDecodeError, KeyError, TypeError):
                continue
        return tags
