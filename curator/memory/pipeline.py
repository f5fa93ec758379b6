"""
Pipeline Orchestrator

Runs every pending session through the extraction cascade, one session at a
time, cheapest tier first:

  1. Decision log   - explicit facts, fixed confidence 0.9
  2. Structural     - regex mining of tool events, shadowed by decision keys
  3. Triage         - decides whether the conversation needs inference
  4. Inference      - rate-limited gap filling for uncaptured messages

Candidates are then routed by scope: project facts into the project store,
global facts into the global store as a separate load/merge/save. A session
that raises is logged and left pending; the rest of the pass continues.

Usage:
    from curator.memory.pipeline import Pipeline

    pipeline = Pipeline.from_config()
    stats = await pipeline.process_queue()
"""

from __future__ import annotations

from pathlib import Path

from curator import GLOBAL_STORE_ID
from curator.config import CuratorConfig, load_config
from curator.llm import AnthropicInferenceClient, InferenceClient
from curator.logging_config import get_logger, session_context
from curator.memory.consolidator import Consolidator
from curator.memory.extraction import decision_log, structural, triage
from curator.memory.extraction.inference import InferenceGateway
from curator.memory.extraction.transcript import parse_transcript
from curator.memory.extraction.usage import UsageCounter, load_usage, save_usage
from curator.memory.locking import exclusive_lock
from curator.memory.models import (
    CandidateFact,
    DecisionFact,
    InferredFact,
    LockBusyError,
    OutcomeStatus,
    PassStats,
    Scope,
    SessionReport,
    StructuralFact,
    TierOutcome,
)
from curator.memory.queue import PendingSession, SessionQueue
from curator.memory.store import StoreManager, split_by_scope

logger = get_logger(__name__)

TRIAGE_TIER = "triage"


def uncaptured_messages(messages, known_keys: set[str]):
    """Messages that mention none of the known keys (case-insensitive substring)."""
    lowered = [k.lower() for k in known_keys if k]
    return [m for m in messages if not any(k in m.content.lower() for k in lowered)]


class Pipeline:

    def __init__(
        self,
        config: CuratorConfig,
        queue: SessionQueue,
        stores: StoreManager,
        gateway: InferenceGateway,
        consolidator: Consolidator,
    ):
        self.config = config
        self.queue = queue
        self.stores = stores
        self.gateway = gateway
        self.consolidator = consolidator
        # Projects already offered to the consolidator during the current pass
        self._consolidated: set[str] = set()

    @classmethod
    def from_config(cls, config: CuratorConfig | None = None, client: InferenceClient | None = None) -> Pipeline:
        config = config or load_config()
        if client is None:
            client = AnthropicInferenceClient(
                model=config.inference.model,
                max_tokens=config.inference.max_tokens,
                timeout=config.inference.timeout_seconds,
            )
        stores = StoreManager.from_config(config)
        return cls(
            config=config,
            queue=SessionQueue.from_config(config),
            stores=stores,
            gateway=InferenceGateway.from_config(config.inference, client),
            consolidator=Consolidator.from_config(config, client, stores),
        )

    # =========================================================================
    # Pass
    # =========================================================================

    async def process_queue(self) -> PassStats:
        """
        Process every pending session under the single-writer lock.

        Returns:
            PassStats for the pass; ``lock_busy`` is set if another process
            held the lock and nothing ran
        """
        try:
            with exclusive_lock(self.config.lock_path):
                return await self._process_pending()
        except LockBusyError as e:
            logger.warning("pass_skipped", reason=str(e))
            return PassStats(lock_busy=True)

    async def _process_pending(self) -> PassStats:
        stats = PassStats()
        self._consolidated = set()
        sessions = self.queue.list_pending()
        if not sessions:
            return stats

        usage = load_usage(self.config.settings_path)

        for pending in sessions:
            report = await self._process_isolated(pending, usage)
            if report is None:
                stats.sessions_failed += 1
                continue

            self.queue.mark_processed(pending.session_id)
            stats.sessions_processed += 1
            stats.reports.append(report)
            self._tally(stats, report)

        logger.info("pass_complete", **stats.to_dict())
        return stats

    async def _process_isolated(self, pending: PendingSession, usage: UsageCounter) -> SessionReport | None:
        """process_session with failures logged instead of raised. None means the session stays pending."""
        usage_before = usage.to_dict()
        with session_context(pending.session_id, pending.project_root):
            try:
                return await self.process_session(pending, usage)
            except Exception as e:
                logger.error("session_failed", error=f"{type(e).__name__}: {e}")
                return None
            finally:
                if usage.to_dict() != usage_before:
                    save_usage(self.config.settings_path, usage)

    @staticmethod
    def _tally(stats: PassStats, report: SessionReport) -> None:
        for outcome in report.outcomes:
            if outcome.tier == DecisionFact.tier:
                stats.memories_from_decision_log += len(outcome.facts)
            elif outcome.tier == StructuralFact.tier:
                stats.memories_from_structural += len(outcome.facts)
            elif outcome.tier == InferredFact.tier:
                stats.memories_from_inference += len(outcome.facts)
        if report.inference_called:
            stats.inference_calls += 1

    # =========================================================================
    # Session
    # =========================================================================

    def _read_decision_logs(self, project_root: str) -> TierOutcome:
        entries = decision_log.parse(self.config.project_decision_log(project_root))
        entries += decision_log.parse(self.config.global_decision_log, force_scope=Scope.GLOBAL)
        if not entries:
            return TierOutcome.skipped(DecisionFact.tier, "no decision log entries")
        return TierOutcome.parsed(DecisionFact.tier, entries)

    def _clear_decision_logs(self, project_root: str) -> None:
        decision_log.clear(self.config.project_decision_log(project_root))
        decision_log.clear(self.config.global_decision_log)

    async def _run_inference(
        self,
        report: SessionReport,
        messages,
        known_keys: set[str],
        existing: dict[str, str],
        usage: UsageCounter,
    ) -> tuple[TierOutcome, list[str]]:
        """Tier 4. Returns the outcome plus the keys the reply supersedes."""
        if not self.config.inference.enabled:
            return TierOutcome.skipped(InferredFact.tier, "inference disabled"), []

        candidates = uncaptured_messages(messages, known_keys)
        if not candidates:
            return TierOutcome.skipped(InferredFact.tier, "high-signal messages already captured"), []

        outcome = await self.gateway.run(candidates, existing, report.project_root, usage)
        report.inference_called = outcome.called

        if outcome.status != OutcomeStatus.PARSED or outcome.result is None:
            return TierOutcome(tier=InferredFact.tier, status=outcome.status, reason=outcome.reason), []

        result = outcome.result
        facts = [*result.project_memories, *result.global_memories]
        return TierOutcome.parsed(InferredFact.tier, facts), list(result.supersedes)

    async def process_session(self, pending: PendingSession, usage: UsageCounter) -> SessionReport:
        """
        Run all four tiers for one session and persist the merged result.

        Raises on unexpected failures so the caller can leave the session pending.
        """
        project_root = pending.project_root
        report = SessionReport(session_id=pending.session_id, project_root=project_root)

        if not Path(pending.transcript_path).exists():
            logger.info("transcript_missing", session_id=pending.session_id, path=pending.transcript_path)
            report.outcomes.append(TierOutcome.skipped(StructuralFact.tier, "transcript missing"))
            return report

        store = self.stores.load(project_root)
        candidates: list[CandidateFact] = []

        # Tier 1: decision log
        decision_outcome = self._read_decision_logs(project_root)
        report.outcomes.append(decision_outcome)
        candidates.extend(decision_outcome.facts)
        decision_keys = {f.key for f in decision_outcome.facts}

        transcript = parse_transcript(pending.transcript_path, max_chars=self.config.queue.max_transcript_chars)
        session_id = transcript.session_id or pending.session_id

        # Tier 2: structural, shadowed by explicit decisions
        mined = [f for f in structural.extract(transcript.tool_events) if f.key not in decision_keys]
        if mined:
            report.outcomes.append(TierOutcome.parsed(StructuralFact.tier, mined))
        else:
            report.outcomes.append(TierOutcome.skipped(StructuralFact.tier, "no structural facts"))
        candidates.extend(mined)

        # Tier 3: triage
        scored = triage.score(
            transcript.messages,
            window_size=self.config.triage.window_size,
            min_decision_score=self.config.triage.min_decision_score,
        )
        triage_reason = f"decision={scored.decision_score} noise={scored.noise_score}"
        if scored.should_process and scored.high_signal_messages:
            report.outcomes.append(TierOutcome.parsed(TRIAGE_TIER, [], triage_reason))
        else:
            report.outcomes.append(TierOutcome.skipped(TRIAGE_TIER, triage_reason))

        # Tier 4: inference, only for what the cheaper tiers missed
        supersedes: list[str] = []
        if scored.should_process and scored.high_signal_messages:
            known_keys = set(store.memories) | {f.key for f in candidates}
            existing = {key: memory.value for key, memory in store.memories.items()}
            inference_outcome, supersedes = await self._run_inference(
                report, scored.high_signal_messages, known_keys, existing, usage
            )
        else:
            inference_outcome = TierOutcome.skipped(InferredFact.tier, "triage did not select session")
        report.outcomes.append(inference_outcome)
        candidates.extend(inference_outcome.facts)

        # Merge
        project_facts, global_facts = split_by_scope(candidates)

        if global_facts:
            report.global_keys = self.stores.apply(GLOBAL_STORE_ID, global_facts, session_id)

        if project_facts or supersedes:
            for key in supersedes:
                if self.stores.remove(store, key):
                    report.superseded_keys.append(key)
            report.stored_keys = self.stores.merge(store, project_facts, session_id)
            self.stores.save(project_root, store)

        if decision_outcome.facts:
            self._clear_decision_logs(project_root)

        if project_root not in self._consolidated and self.consolidator.needs_consolidation(store):
            self._consolidated.add(project_root)
            consolidation = await self.consolidator.run(project_root, usage)
            report.consolidation = consolidation.status
            logger.info(
                "consolidation_attempted",
                project=project_root,
                status=consolidation.status.value,
                before=consolidation.before,
                after=consolidation.after,
            )

        logger.info(
            "session_processed",
            session_id=session_id,
            project=project_root,
            stored=len(report.stored_keys),
            global_stored=len(report.global_keys),
            superseded=len(report.superseded_keys),
            inference_called=report.inference_called,
        )
        return report
