"""Tests for SessionMemory - store client, tag filtering and backoff polling."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from lib.correlator import Artifact, Phase, SessionContext, build_query, format_artifact
from lib.memory import (
    ArtifactNotRetrievable, MemoryStoreError, MemoryStoreTimeout,
    MemoryStoreUnavailable, RetrievedArtifact, SessionMemory
)


STORE_CMD = ["memcli", "store", "--content", "${content}"]
SEARCH_CMD = ["memcli", "search", "--query", "${query}", "--limit", "${limit}"]


def make_memory(session_id, redis_client=None, retries=0):
    return SessionMemory(
        session_id,
        store_command=STORE_CMD,
        search_command=SEARCH_CMD,
        retries=retries,
        task="payment-auth",
        redis_client=redis_client
    )


def search_output(*contents):
    return json.dumps({"results": [
        {"id": f"m{i}", "content": c, "score": 1.0 - i * 0.1} for i, c in enumerate(contents)
    ]})


def memory_query(session_id, *keywords):
    return build_query(session_id, keywords)


class TestInit:

    def test_requires_commands(self, session_id):
        with pytest.raises(ValueError):
            SessionMemory(session_id, store_command=[], search_command=SEARCH_CMD)

    def test_cache_key(self, session_id):
        assert make_memory(session_id).cache_key == f"collab:session:{session_id}:artifacts"


class TestStoreCmd:

    @pytest.fixture
    def memory(self, session_id):
        return make_memory(session_id)

    def test_build_command_substitutes_per_argument(self):
        cmd = SessionMemory._build_command(SEARCH_CMD, {"query": "a b; rm -rf /", "limit": 3})
        assert cmd == ["memcli", "search", "--query", "a b; rm -rf /", "--limit", "3"]

    @patch('lib.memory.session_memory.subprocess.run')
    def test_store_success(self, mock_run, memory):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")

        assert memory._store_cmd("store", {"content": "hello"}) == {"success": True}
        assert mock_run.call_args[0][0] == ["memcli", "store", "--content", "hello"]

    @patch('lib.memory.session_memory.subprocess.run')
    def test_nonzero_exit_raises(self, mock_run, memory):
        mock_run.return_value = MagicMock(returncode=3, stdout="", stderr="boom")

        with pytest.raises(MemoryStoreError, match="code 3"):
            memory._store_cmd("store", {"content": "hello"})

    @patch('lib.memory.session_memory.subprocess.run')
    def test_search_empty_stdout(self, mock_run, memory):
        mock_run.return_value = MagicMock(returncode=0, stdout="  ", stderr="")
        assert memory._store_cmd("search", {"query": "q", "limit": 5}) == {"results": []}

    @patch('lib.memory.session_memory.subprocess.run')
    def test_search_list_output(self, mock_run, memory):
        mock_run.return_value = MagicMock(returncode=0, stdout='[{"id": "1", "content": "x"}]', stderr="")
        assert memory._store_cmd("search", {"query": "q", "limit": 5}) == {
            "results": [{"id": "1", "content": "x"}]
        }

    @patch('lib.memory.session_memory.subprocess.run')
    def test_search_list_of_payload_strings(self, mock_run, session_id):
        plan = format_artifact(Artifact(Phase.PLAN, session_id, "body", version=1))
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps([plan]), stderr="")
        memory = make_memory(session_id)

        hit = memory.find_artifact(Phase.PLAN, 1)

        assert hit is not None
        assert hit.id == "result-0"
        assert hit.artifact.content == "body"

    @patch('lib.memory.session_memory.subprocess.run')
    def test_search_rejects_unknown_result_shape(self, mock_run, session_id):
        mock_run.return_value = MagicMock(returncode=0, stdout="[42]", stderr="")
        with pytest.raises(MemoryStoreError):
            make_memory(session_id).search(memory_query(session_id))

    @patch('lib.memory.session_memory.subprocess.run')
    def test_timeout(self, mock_run, memory, capsys):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="memcli", timeout=30)

        with pytest.raises(MemoryStoreTimeout):
            memory._store_cmd("search", {"query": "q", "limit": 5})

        log = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert log["error_type"] == "timeout"
        assert log["component"] == "memory_store"
        assert log["session_id"] == memory.session_id

    @patch('lib.memory.session_memory.subprocess.run')
    def test_missing_cli_not_retried(self, mock_run, session_id):
        memory = make_memory(session_id, retries=3)
        mock_run.side_effect = FileNotFoundError()

        with pytest.raises(MemoryStoreUnavailable):
            memory._store_cmd("store", {"content": "x"})
        assert mock_run.call_count == 1

    @patch('lib.memory.session_memory.time.sleep')
    @patch('lib.memory.session_memory.subprocess.run')
    def test_retries_with_backoff(self, mock_run, mock_sleep, session_id):
        memory = make_memory(session_id, retries=2)
        mock_run.side_effect = [
            subprocess.TimeoutExpired(cmd="memcli", timeout=30),
            MagicMock(returncode=1, stdout="", stderr="busy"),
            MagicMock(returncode=0, stdout="", stderr=""),
        ]

        assert memory._store_cmd("store", {"content": "x"}) == {"success": True}
        assert [c[0][0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch('lib.memory.session_memory.subprocess.run')
    def test_silent_returns_none(self, mock_run, memory):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="memcli", timeout=30)
        assert memory._store_cmd("store", {"content": "x"}, silent=True) is None


class TestStoreArtifact:

    @patch('lib.memory.session_memory.subprocess.run')
    def test_writes_formatted_text(self, mock_run, session_id):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        memory = make_memory(session_id)

        tag = memory.store(SessionContext(session_id, Phase.PLAN, 1), "## Proposed Approach\nJWT")

        assert tag == f"collaboration:plan:v1:{session_id}"
        written = mock_run.call_args[0][0][3]
        assert written.startswith("**COLLABORATION PLAN v1**")
        assert "Task: payment-auth" in written
        assert written.rstrip().endswith(f"(session {session_id})")

    @patch('lib.memory.session_memory.subprocess.run')
    def test_redacts_secrets(self, mock_run, session_id):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        memory = make_memory(session_id)

        memory.store(SessionContext(session_id, Phase.IMPLEMENTATION), "Set api_key=abc123secret in env")

        written = mock_run.call_args[0][0][3]
        assert "abc123secret" not in written
        assert "[REDACTED]" in written
        assert session_id in written

    def test_rejects_foreign_session(self, session_id, other_session_id):
        memory = make_memory(session_id)
        with pytest.raises(ValueError):
            memory.store_artifact(Artifact(Phase.PATTERN, other_session_id, "x"))

    @patch('lib.memory.session_memory.subprocess.run')
    def test_mirrors_every_write(self, mock_run, session_id, mock_redis):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        memory = make_memory(session_id, redis_client=mock_redis)

        memory.store(SessionContext(session_id, Phase.PLAN, 1), "first")
        memory.store(SessionContext(session_id, Phase.PLAN, 1), "second")
        memory.store(SessionContext(session_id, Phase.REVIEW, 1), "review")

        tag = f"collaboration:plan:v1:{session_id}"
        assert memory.stored_tags() == [tag, tag, f"collaboration:review:v1:{session_id}"]

    @patch('lib.memory.session_memory.subprocess.run')
    def test_failed_write_not_mirrored(self, mock_run, session_id, mock_redis):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="quota exceeded")
        memory = make_memory(session_id, redis_client=mock_redis)

        with pytest.raises(MemoryStoreError):
            memory.store(SessionContext(session_id, Phase.PLAN, 1), "jwt refresh tokens")

        assert memory.stored_tags() == []
        mock_run.side_effect = FileNotFoundError()
        assert memory.search(memory_query(session_id, "jwt")) == []

    def test_stored_tags_without_redis(self, session_id):
        assert make_memory(session_id).stored_tags() == []


class TestSearch:

    @patch('lib.memory.session_memory.subprocess.run')
    def test_parses_hits(self, mock_run, session_id):
        plan = format_artifact(Artifact(Phase.PLAN, session_id, "body", version=1))
        mock_run.return_value = MagicMock(returncode=0, stdout=search_output(plan, "unrelated"), stderr="")
        memory = make_memory(session_id)

        hits = memory.search(memory_query(session_id))

        assert [h.id for h in hits] == ["m0", "m1"]
        assert hits[0].artifact is not None
        assert hits[0].artifact.version == 1
        assert hits[1].artifact is None

    @patch('lib.memory.session_memory.subprocess.run')
    def test_falls_back_to_cache(self, mock_run, session_id, mock_redis):
        memory = make_memory(session_id, redis_client=mock_redis)
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        memory.store(SessionContext(session_id, Phase.PLAN, 1), "jwt refresh tokens")

        mock_run.side_effect = FileNotFoundError()
        hits = memory.search(memory_query(session_id, "jwt"))

        assert len(hits) == 1
        assert hits[0].source == "cache"
        assert hits[0].artifact.content == "jwt refresh tokens"

    @patch('lib.memory.session_memory.subprocess.run')
    def test_unavailable_without_cache_raises(self, mock_run, session_id):
        mock_run.side_effect = FileNotFoundError()
        with pytest.raises(MemoryStoreUnavailable):
            make_memory(session_id).search(memory_query(session_id))


class TestFindArtifact:

    @patch('lib.memory.session_memory.subprocess.run')
    def test_skips_other_sessions(self, mock_run, session_id, other_session_id):
        foreign = format_artifact(Artifact(Phase.PLAN, other_session_id, "theirs", version=1))
        ours = format_artifact(Artifact(Phase.PLAN, session_id, "ours", version=1))
        mock_run.return_value = MagicMock(returncode=0, stdout=search_output(foreign, ours), stderr="")

        hit = make_memory(session_id).find_artifact(Phase.PLAN, 1)

        assert hit is not None
        assert hit.artifact.content == "ours"

    @patch('lib.memory.session_memory.subprocess.run')
    def test_skips_other_versions(self, mock_run, session_id):
        v1 = format_artifact(Artifact(Phase.PLAN, session_id, "v1", version=1))
        mock_run.return_value = MagicMock(returncode=0, stdout=search_output(v1), stderr="")

        assert make_memory(session_id).find_artifact(Phase.PLAN, 2) is None

    @patch('lib.memory.session_memory.subprocess.run')
    def test_duplicate_versions_keep_store_ranking(self, mock_run, session_id, caplog):
        first = format_artifact(Artifact(Phase.PLAN, session_id, "draft A", version=2))
        second = format_artifact(Artifact(Phase.PLAN, session_id, "draft B", version=2))
        mock_run.return_value = MagicMock(returncode=0, stdout=search_output(first, second), stderr="")

        with caplog.at_level("WARNING"):
            hit = make_memory(session_id).find_artifact(Phase.PLAN, 2)

        assert hit.artifact.content == "draft A"
        assert "2 different artifacts claim" in caplog.text

    @patch('lib.memory.session_memory.subprocess.run')
    def test_query_names_session_and_tag(self, mock_run, session_id):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        make_memory(session_id).find_artifact(Phase.REVIEW, 3)

        cmd = mock_run.call_args[0][0]
        query = cmd[cmd.index("--query") + 1]
        assert query.startswith(session_id)
        assert f"collaboration:review:v3:{session_id}" in query


class TestWaitUntilRetrievable:

    @pytest.fixture
    def memory(self, session_id):
        return make_memory(session_id)

    def hit(self, session_id):
        return RetrievedArtifact(
            id="m0",
            content=format_artifact(Artifact(Phase.PLAN, session_id, "body", version=1))
        )

    @patch('lib.memory.session_memory.time')
    def test_returns_immediately_when_present(self, mock_time, memory, session_id):
        mock_time.monotonic.return_value = 0.0
        with patch.object(SessionMemory, 'find_artifact', return_value=self.hit(session_id)):
            hit = memory.wait_until_retrievable(Phase.PLAN, 1)

        assert hit.artifact.session_id == session_id
        mock_time.sleep.assert_not_called()

    @patch('lib.memory.session_memory.time')
    def test_backoff_until_found(self, mock_time, memory, session_id):
        mock_time.monotonic.side_effect = [0.0, 0.1, 1.2, 3.3]
        results = [None, None, None, self.hit(session_id)]

        with patch.object(SessionMemory, 'find_artifact', side_effect=results):
            hit = memory.wait_until_retrievable(
                Phase.PLAN, 1, timeout=30, initial_delay=1, max_delay=2
            )

        assert hit is not None
        assert [c[0][0] for c in mock_time.sleep.call_args_list] == [1, 2, 2]

    @patch('lib.memory.session_memory.time')
    def test_timeout_raises(self, mock_time, memory, session_id):
        mock_time.monotonic.side_effect = [0.0, 4.0, 10.0]

        with patch.object(SessionMemory, 'find_artifact', return_value=None):
            with pytest.raises(ArtifactNotRetrievable) as exc:
                memory.wait_until_retrievable(Phase.PLAN, 1, timeout=10, initial_delay=8, max_delay=8)

        assert exc.value.tag == f"collaboration:plan:v1:{session_id}"
        assert exc.value.attempts == 2
        assert [c[0][0] for c in mock_time.sleep.call_args_list] == [6.0]

    @patch('lib.memory.session_memory.time')
    def test_store_timeout_counts_as_miss(self, mock_time, memory, session_id):
        mock_time.monotonic.side_effect = [0.0, 0.5]
        results = [MemoryStoreTimeout("slow"), self.hit(session_id)]

        with patch.object(SessionMemory, 'find_artifact', side_effect=results):
            assert memory.wait_until_retrievable(Phase.PLAN, 1, initial_delay=1) is not None

    def test_unavailable_propagates(self, memory):
        with patch.object(SessionMemory, 'find_artifact', side_effect=MemoryStoreUnavailable("gone")):
            with pytest.raises(MemoryStoreUnavailable):
                memory.wait_until_retrievable(Phase.PLAN, 1)
