"""
Integration tests for the full extraction cascade.

Sessions are queued through SessionQueue.capture from real JSONL transcripts,
then processed end-to-end against a temporary data directory. The only
double is the inference client.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from curator import GLOBAL_STORE_ID
from curator.memory.consolidator import CONSOLIDATION_SYSTEM
from curator.memory.daemon import MemoryDaemon, main
from curator.memory.extraction import structural
from curator.memory.locking import exclusive_lock
from curator.memory.models import ConversationMessage, DecisionFact, OutcomeStatus, now_ms
from curator.memory.pipeline import TRIAGE_TIER, Pipeline, uncaptured_messages
from tests.conftest import FakeInferenceClient, assistant, user

pytestmark = pytest.mark.integration

TAILWIND_CONFIG = """module.exports = {
  theme: {
    extend: {
      colors: {
        primary: '#2563eb',
      },
    },
  },
}
"""

DECISIVE_REPLY = json.dumps({
    "project_memories": [
        {"category": "architecture", "key": "orm", "value": "Drizzle ORM with PostgreSQL", "confidence": 0.9},
        {"category": "testing", "key": "unsure", "value": "Maybe Jest", "confidence": 0.4},
    ],
    "global_memories": [
        {"category": "preferences", "key": "pref-db-postgres", "value": "Prefers PostgreSQL", "confidence": 0.8},
    ],
    "supersedes": ["old-orm"],
})


def tailwind_session(project_root, session_id="s1"):
    return [
        user("Set up the tailwind config.", cwd=str(project_root), session_id=session_id),
        assistant("Done.", tools=[("Write", {
            "file_path": f"{project_root}/tailwind.config.js",
            "content": TAILWIND_CONFIG,
        })]),
    ]


def decisive_session(project_root, session_id="s2"):
    return [
        user("Let's go with Drizzle for the data layer. I prefer Postgres everywhere.",
             cwd=str(project_root), session_id=session_id),
        assistant("Sounds good."),
    ]


def debugging_session(project_root, session_id="s3"):
    return [
        user("Hmm, the test run failed again.", cwd=str(project_root), session_id=session_id),
        assistant("Let me try running it with verbose output."),
        user("error: cannot find module foo"),
        assistant("Sorry, my mistake. Reverting that change."),
    ]


@pytest.fixture
def pipeline(config, fake_client):
    return Pipeline.from_config(config, client=fake_client)


# ─────────────────────────────────────────────────────────────────────────────
# End-to-End Cascade
# ─────────────────────────────────────────────────────────────────────────────


class TestCascade:
    """Tests for the cheap tiers capturing facts without inference."""

    @pytest.mark.asyncio
    async def test_decision_log_and_structural_without_inference(
        self, pipeline, fake_client, project_root, make_transcript
    ):
        log = project_root / ".claude" / "decisions.log"
        log.write_text("[architecture] orm: Drizzle ORM with PostgreSQL\n")
        path = make_transcript(tailwind_session(project_root))
        pipeline.queue.capture("s1", path)

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 1
        assert stats.sessions_failed == 0
        assert stats.inference_calls == 0
        assert fake_client.call_count == 0

        store = pipeline.stores.load(str(project_root))
        assert store.memories["orm"].confidence == 0.9
        assert store.memories["orm"].value == "Drizzle ORM with PostgreSQL"
        assert store.memories["theme-colors-tailwind.config.js"].confidence >= 0.9
        assert "#2563eb" in store.memories["theme-colors-tailwind.config.js"].value

        assert log.exists()
        assert log.read_text() == ""
        assert pipeline.queue.list_pending() == []

        [report] = stats.reports
        assert report.outcome(TRIAGE_TIER).status == OutcomeStatus.SKIPPED
        assert stats.memories_from_decision_log == 1
        assert stats.memories_from_structural >= 1

    @pytest.mark.asyncio
    async def test_debugging_dialogue_stores_nothing(self, pipeline, fake_client, project_root, make_transcript):
        path = make_transcript(debugging_session(project_root))
        pipeline.queue.capture("s3", path)

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 1
        assert fake_client.call_count == 0
        assert pipeline.stores.load(str(project_root)).memories == {}
        assert not pipeline.stores.path_for(str(project_root)).exists()

    @pytest.mark.asyncio
    async def test_decision_key_shadows_structural_fact(self, pipeline, project_root, make_transcript):
        log = project_root / ".claude" / "decisions.log"
        log.write_text("[design] theme-colors-tailwind.config.js: Brand blue only\n")
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        await pipeline.process_queue()

        memory = pipeline.stores.load(str(project_root)).memories["theme-colors-tailwind.config.js"]
        assert memory.value == "Brand blue only"
        assert memory.confidence == 0.9

    @pytest.mark.asyncio
    async def test_global_decision_log_goes_to_global_store(self, pipeline, config, project_root, make_transcript):
        config.global_decision_log.write_text("[preferences] pkg-manager: pnpm\n")
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        await pipeline.process_queue()

        assert pipeline.stores.load(GLOBAL_STORE_ID).memories["pkg-manager"].value == "pnpm"
        assert "pkg-manager" not in pipeline.stores.load(str(project_root)).memories
        assert config.global_decision_log.read_text() == ""


# ─────────────────────────────────────────────────────────────────────────────
# Inference Tier
# ─────────────────────────────────────────────────────────────────────────────


class TestInference:
    """Tests for gap filling through the gateway."""

    @pytest.mark.asyncio
    async def test_reply_is_routed_by_scope(self, config, project_root, make_transcript):
        client = FakeInferenceClient([DECISIVE_REPLY])
        pipeline = Pipeline.from_config(config, client=client)
        pipeline.stores.apply(
            str(project_root),
            [DecisionFact(category="architecture", key="old-orm", value="Prisma")],
            "s0",
        )
        pipeline.queue.capture("s2", make_transcript(decisive_session(project_root)))

        stats = await pipeline.process_queue()

        assert client.call_count == 1
        assert stats.inference_calls == 1
        assert stats.memories_from_inference == 2

        _, prompt = client.calls[0]
        assert "old-orm: Prisma" in prompt
        assert "Drizzle" in prompt

        project = pipeline.stores.load(str(project_root)).memories
        assert set(project) == {"orm"}
        assert project["orm"].session_id == "s2"

        global_store = pipeline.stores.load(GLOBAL_STORE_ID).memories
        assert global_store["pref-db-postgres"].confidence == 0.8

        [report] = stats.reports
        assert report.superseded_keys == ["old-orm"]

    @pytest.mark.asyncio
    async def test_usage_counter_is_persisted(self, config, project_root, make_transcript):
        settings = config.settings_path
        settings.write_text(json.dumps({"theme": "dark"}))
        pipeline = Pipeline.from_config(config, client=FakeInferenceClient([DECISIVE_REPLY]))
        pipeline.queue.capture("s2", make_transcript(decisive_session(project_root)))

        await pipeline.process_queue()

        data = json.loads(settings.read_text())
        assert data["theme"] == "dark"
        assert data["apiUsage"]["callsThisHour"] == 1
        assert data["apiUsage"]["callsByProject"] == {str(project_root): 1}

    @pytest.mark.asyncio
    async def test_cooldown_refuses_second_session(self, config, tmp_path, make_transcript):
        client = FakeInferenceClient([DECISIVE_REPLY])
        pipeline = Pipeline.from_config(config, client=client)
        for name in ("a", "b"):
            root = tmp_path / name
            root.mkdir()
            pipeline.queue.capture(name, make_transcript(decisive_session(root, session_id=name)))

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 2
        assert client.call_count == 1
        refused = [r for r in stats.reports if not r.inference_called]
        assert len(refused) == 1
        assert "cooldown" in refused[0].outcome("inference").reason

    @pytest.mark.asyncio
    async def test_inference_failure_is_not_fatal(self, config, failing_client, project_root, make_transcript):
        pipeline = Pipeline.from_config(config, client=failing_client)
        pipeline.queue.capture("s2", make_transcript(decisive_session(project_root)))

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 1
        assert stats.sessions_failed == 0
        assert stats.reports[0].outcome("inference").status == OutcomeStatus.FAILED
        assert not config.settings_path.exists()
        assert pipeline.queue.list_pending() == []

    @pytest.mark.asyncio
    async def test_captured_messages_are_not_resent(self, pipeline, fake_client, project_root, make_transcript):
        log = project_root / ".claude" / "decisions.log"
        log.write_text("[architecture] drizzle: Drizzle ORM\n[preferences] postgres: PostgreSQL\n")
        pipeline.queue.capture("s2", make_transcript(decisive_session(project_root)))

        stats = await pipeline.process_queue()

        assert fake_client.call_count == 0
        assert "already captured" in stats.reports[0].outcome("inference").reason

    def test_uncaptured_messages_is_case_insensitive(self):
        messages = [
            ConversationMessage(role="user", content="We use DRIZZLE here"),
            ConversationMessage(role="user", content="Prefer pnpm"),
        ]

        assert [m.content for m in uncaptured_messages(messages, {"drizzle"})] == ["Prefer pnpm"]


# ─────────────────────────────────────────────────────────────────────────────
# Consolidation
# ─────────────────────────────────────────────────────────────────────────────


def seed_store(pipeline, project_root, count=100):
    pipeline.stores.apply(
        str(project_root),
        [DecisionFact(category="architecture", key=f"k{i}", value=f"value {i}") for i in range(count)],
        "s0",
    )


def keep_reply(keys):
    return json.dumps({
        "keep": [{"key": k, "category": "architecture", "value": f"kept {k}", "confidence": 0.9} for k in keys],
        "reason": "merged duplicates",
    })


class TestConsolidation:
    """Tests for the compaction step that follows a session."""

    @pytest.mark.asyncio
    async def test_oversized_store_is_consolidated(self, config, project_root, make_transcript):
        client = FakeInferenceClient([keep_reply(["k0", "k1"])])
        pipeline = Pipeline.from_config(config, client=client)
        seed_store(pipeline, project_root)
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        stats = await pipeline.process_queue()

        assert client.call_count == 1
        system, prompt = client.calls[0]
        assert system == CONSOLIDATION_SYSTEM
        assert "memory consolidation agent" in prompt

        store = pipeline.stores.load(str(project_root))
        assert set(store.memories) == {"k0", "k1"}
        assert store.memories["k0"].value == "kept k0"
        assert store.last_consolidated > 0
        assert stats.reports[0].consolidation == OutcomeStatus.PARSED

        usage = json.loads(config.settings_path.read_text())["apiUsage"]
        assert usage["callsByProject"] == {str(project_root): 1}

    @pytest.mark.asyncio
    async def test_failed_consolidation_keeps_saved_store(self, config, project_root, make_transcript):
        client = FakeInferenceClient(["I could not do that."])
        pipeline = Pipeline.from_config(config, client=client)
        seed_store(pipeline, project_root)
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        stats = await pipeline.process_queue()

        store = pipeline.stores.load(str(project_root))
        assert client.call_count == 1
        assert stats.sessions_processed == 1
        assert stats.reports[0].consolidation == OutcomeStatus.FAILED
        assert "k0" in store.memories
        assert "theme-colors-tailwind.config.js" in store.memories
        assert len(store.memories) > 100
        assert store.last_consolidated == 0

    @pytest.mark.asyncio
    async def test_at_most_one_call_per_project_per_pass(self, config, project_root, make_transcript):
        client = FakeInferenceClient([keep_reply([f"k{i}" for i in range(100)])])
        pipeline = Pipeline.from_config(config, client=client)
        seed_store(pipeline, project_root)
        for session_id in ("s1", "s2", "s3"):
            pipeline.queue.capture(session_id, make_transcript(tailwind_session(project_root, session_id)))

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 3
        assert client.call_count == 1
        assert [r.consolidation for r in stats.reports].count(OutcomeStatus.PARSED) == 1

    @pytest.mark.asyncio
    async def test_consolidation_respects_cooldown(self, config, project_root, make_transcript):
        config.settings_path.write_text(json.dumps({
            "apiUsage": {"callsThisHour": 1, "hourStart": now_ms(), "lastCallTime": now_ms(), "callsByProject": {}},
        }))
        client = FakeInferenceClient([keep_reply(["k0"])])
        pipeline = Pipeline.from_config(config, client=client)
        seed_store(pipeline, project_root)
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        stats = await pipeline.process_queue()

        assert client.call_count == 0
        assert stats.reports[0].consolidation == OutcomeStatus.SKIPPED
        assert len(pipeline.stores.load(str(project_root)).memories) > 100


# ─────────────────────────────────────────────────────────────────────────────
# Failure Isolation and Locking
# ─────────────────────────────────────────────────────────────────────────────


class TestIsolation:
    """Tests for per-session failure handling."""

    @pytest.mark.asyncio
    async def test_failed_session_stays_pending(self, pipeline, tmp_path, project_root, make_transcript):
        good = make_transcript(tailwind_session(project_root, session_id="good"))
        pipeline.queue.capture("good", good)
        bad = make_transcript(tailwind_session(project_root, session_id="bad"), name="bad.jsonl")
        pipeline.queue.capture("bad", bad)

        # A directory in place of the transcript makes the read raise
        bad.unlink()
        bad.mkdir()

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 1
        assert stats.sessions_failed == 1
        assert [p.session_id for p in pipeline.queue.list_pending()] == ["bad"]
        assert "theme-colors-tailwind.config.js" in pipeline.stores.load(str(project_root)).memories

    @pytest.mark.asyncio
    async def test_structural_crash_keeps_decision_log(self, pipeline, project_root, make_transcript, monkeypatch):
        log = project_root / ".claude" / "decisions.log"
        log.write_text("[architecture] orm: Drizzle ORM\n")
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        def explode(events):
            raise RuntimeError("miner crashed")

        monkeypatch.setattr(structural, "extract", explode)

        stats = await pipeline.process_queue()

        assert stats.sessions_failed == 1
        assert log.read_text() == "[architecture] orm: Drizzle ORM\n"
        assert len(pipeline.queue.list_pending()) == 1

    @pytest.mark.asyncio
    async def test_undecodable_session_log_does_not_block_pass(self, pipeline, project_root, make_transcript):
        pipeline.queue.capture("good", make_transcript(tailwind_session(project_root, session_id="good")))
        pipeline.queue.events_path("bad").write_bytes(b"\xff\xfe not utf8\n")

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 1
        assert stats.reports[0].session_id == "good"
        assert "theme-colors-tailwind.config.js" in pipeline.stores.load(str(project_root)).memories

    @pytest.mark.asyncio
    async def test_missing_transcript_is_consumed(self, pipeline, project_root, make_transcript):
        path = make_transcript(tailwind_session(project_root))
        pipeline.queue.capture("s1", path)
        path.unlink()

        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 1
        assert stats.reports[0].stored_keys == []
        assert pipeline.queue.list_pending() == []

    @pytest.mark.asyncio
    async def test_lock_busy_skips_pass(self, pipeline, config, project_root, make_transcript):
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        with exclusive_lock(config.lock_path):
            stats = await pipeline.process_queue()

        assert stats.lock_busy is True
        assert stats.sessions_processed == 0
        assert len(pipeline.queue.list_pending()) == 1

    @pytest.mark.asyncio
    async def test_empty_queue(self, pipeline):
        stats = await pipeline.process_queue()

        assert stats.sessions_processed == 0
        assert stats.lock_busy is False


# ─────────────────────────────────────────────────────────────────────────────
# Daemon
# ─────────────────────────────────────────────────────────────────────────────


class TestDaemon:
    """Tests for the re-entrancy guard and running totals."""

    @pytest.mark.asyncio
    async def test_concurrent_request_is_refused(self, pipeline, monkeypatch):
        release = asyncio.Event()
        original = pipeline.process_queue

        async def slow_pass():
            await release.wait()
            return await original()

        monkeypatch.setattr(pipeline, "process_queue", slow_pass)
        daemon = MemoryDaemon(pipeline)

        first = asyncio.create_task(daemon.process())
        await asyncio.sleep(0)

        assert daemon.is_processing
        assert await daemon.process() == {"status": "already_processing"}

        release.set()
        result = await first

        assert result["status"] == "ok"
        assert not daemon.is_processing

    @pytest.mark.asyncio
    async def test_error_is_reported(self, pipeline):
        daemon = MemoryDaemon(pipeline)

        with patch.object(pipeline, "process_queue", AsyncMock(side_effect=RuntimeError("disk full"))):
            result = await daemon.process()

        assert result == {"status": "error", "message": "disk full"}
        assert not daemon.is_processing

    @pytest.mark.asyncio
    async def test_stats_accumulate(self, pipeline, project_root, make_transcript):
        daemon = MemoryDaemon(pipeline, poll_interval=60)
        pipeline.queue.capture("s1", make_transcript(tailwind_session(project_root)))

        result = await daemon.process()

        assert result["stats"]["sessions_processed"] == 1
        stats = daemon.stats
        assert stats["total_processed"] == 1
        assert stats["queue_depth"] == 0
        assert stats["running"] is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, pipeline):
        daemon = MemoryDaemon(pipeline, poll_interval=60)

        await daemon.start()
        assert daemon.stats["running"] is True

        await daemon.stop()
        assert daemon.stats["running"] is False


@pytest.mark.usefixtures("isolated_logging")
class TestCli:
    """Tests for the curated-context entry point."""

    def test_capture_then_once(self, data_dir, project_root, make_transcript, capsys):
        path = make_transcript(tailwind_session(project_root))

        assert main(["--capture", "s1", str(path)]) == 0
        assert json.loads(capsys.readouterr().out) == {"queued": True}

        assert main(["--status"]) == 0
        assert json.loads(capsys.readouterr().out) == {"queue_depth": 1}

        assert main(["--once"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["status"] == "ok"
        assert result["stats"]["sessions_processed"] == 1

    def test_duplicate_capture(self, data_dir, project_root, make_transcript, capsys):
        path = make_transcript(tailwind_session(project_root))
        main(["--capture", "s1", str(path)])
        capsys.readouterr()

        main(["--capture", "s1", str(path)])

        assert json.loads(capsys.readouterr().out) == {"queued": False}
