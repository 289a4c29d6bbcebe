"""Memory-store integration for collaboration sessions.

The shared memory store is an external semantic-search service reached
through its CLI. This package only builds payloads, runs the commands and
checks what comes back:

    ┌──────────────┐  store ${content}   ┌────────────────────┐
    │ SessionMemory│ ──────────────────▶ │ external store CLI │
    │              │ ◀────────────────── │ (similarity search)│
    └──────┬───────┘  search ${query}    └────────────────────┘
           │ rpush (optional)
           ▼
    ┌──────────────┐
    │ Redis mirror │  fallback search, list of tags written
    └──────────────┘

Usage:
    from lib.memory import SessionMemory

    memory = SessionMemory(session_id, store_command=[...], search_command=[...])
    memory.store(ctx, plan_text)
    hit = memory.wait_until_retrievable(Phase.PLAN, version=1, timeout=60)
"""

from .session_memory import SessionMemory
from .memory_protocol import (
    RetrievedArtifact, MemoryStoreError, MemoryStoreTimeout,
    MemoryStoreUnavailable, ArtifactNotRetrievable
)
from .redis_factory import create_redis_client, connect_mirror, RedisStartupError
from .security import redact, sanitize, is_sensitive, SecureLogger, get_logger, REDACTED

__all__ = [
    'SessionMemory', 'RetrievedArtifact', 'MemoryStoreError', 'MemoryStoreTimeout',
    'MemoryStoreUnavailable', 'ArtifactNotRetrievable',
    'create_redis_client', 'connect_mirror', 'RedisStartupError',
    'redact', 'sanitize', 'is_sensitive', 'SecureLogger', 'get_logger', 'REDACTED',
]
