"""Shared pytest fixtures for collaboration tests."""

import io
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Repository root, so `lib.<package>` imports resolve without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

try:
    import fakeredis
    FAKEREDIS_AVAILABLE = True
except ImportError:
    FAKEREDIS_AVAILABLE = False
    fakeredis = None


@pytest.fixture
def mock_redis():
    """Create a fake Redis client for testing."""
    if not FAKEREDIS_AVAILABLE:
        pytest.skip("fakeredis not installed")
    return fakeredis.FakeStrictRedis(decode_responses=True)


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 18, 14, 25, 30)


@pytest.fixture
def session_id():
    """A well-formed session id with a task label."""
    return "collab-20261018-142530-payment-auth-K3J9X2QZ"


@pytest.fixture
def other_session_id():
    """A second session, for cross-session confusion tests."""
    return "collab-20261018-142531-payment-auth-Q7W2E9R4"


@pytest.fixture
def config():
    from lib.collaborate.config import CollabConfig
    return CollabConfig()


@pytest.fixture
def memory_config():
    from lib.collaborate.config import CollabConfig
    return CollabConfig.from_dict({
        "memory": {
            "enabled": True,
            "store_command": ["memcli", "store", "--content", "${content}"],
            "search_command": ["memcli", "search", "--query", "${query}", "--limit", "${limit}"],
            "retries": 0,
            "poll_timeout": 5,
            "poll_initial_delay": 1,
            "poll_max_delay": 2,
        }
    })


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def console(output):
    from lib.collaborate.console import Console
    return Console(stream=output, color=False)


@pytest.fixture
def agent():
    from lib.agents import CodexAgent
    return CodexAgent(task="payment-auth")


class FakeStore:
    """In-process stand-in for the external store CLI.

    Patched over subprocess.run: `store` appends content, `search` returns
    every stored item with a score from term overlap, as JSON.
    """

    def __init__(self):
        self.items = []
        self.calls = []

    def __call__(self, cmd, capture_output=True, text=True, timeout=None):
        import json
        from unittest.mock import MagicMock

        self.calls.append(list(cmd))
        action = cmd[1]
        if action == "store":
            self.items.append(cmd[cmd.index("--content") + 1])
            return MagicMock(returncode=0, stdout="", stderr="")

        query = cmd[cmd.index("--query") + 1].lower().split()
        limit = int(cmd[cmd.index("--limit") + 1])
        results = []
        for index, content in enumerate(self.items):
            lower = content.lower()
            score = sum(1 for term in query if term in lower) / max(len(query), 1)
            results.append({"id": f"item-{index}", "content": content, "score": score})
        results.sort(key=lambda r: r["score"], reverse=True)
        return MagicMock(returncode=0, stdout=json.dumps({"results": results[:limit]}), stderr="")


@pytest.fixture
def fake_store():
    return FakeStore()
