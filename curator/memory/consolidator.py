"""
Consolidator — periodic compaction of a memory store.

Sends a store's full fact set to the inference collaborator, which merges
duplicates, resolves contradictions in favor of newer entries and drops
obsolete facts. The returned keep set replaces the memory map wholesale.

Consolidation is opportunistic: a failed or unusable reply is logged and the
store is left exactly as it was. Calls draw on the same usage counter as
the extraction gateway, so the hourly, per-project and cooldown ceilings
cover both.

Usage:
    from curator.memory.consolidator import Consolidator

    consolidator = Consolidator.from_config(config, client, stores)
    if consolidator.needs_consolidation(store):
        outcome = await consolidator.run(project_root)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from curator.llm import InferenceClient
from curator.logging_config import get_logger
from curator.memory.extraction.prompts import build_consolidation_prompt
from curator.memory.extraction.usage import RateLimits, UsageCounter
from curator.memory.models import MemoryStore, OutcomeStatus, StoredMemory, now_ms
from curator.memory.store import StoreManager

logger = get_logger(__name__)

DAY_MS = 86_400_000
CONSOLIDATION_SESSION_ID = "consolidation"
CONSOLIDATION_SYSTEM = "You consolidate key-addressable project memories. Reply with JSON only."


@dataclass
class ConsolidationOutcome:
    status: OutcomeStatus
    before: int = 0
    after: int = 0
    reason: str = ""


class Consolidator:

    def __init__(
        self,
        client: InferenceClient,
        stores: StoreManager,
        enabled: bool = True,
        max_entries: int = 100,
        stale_days: float = 7.0,
        stale_min_entries: int = 20,
        min_entries: int = 5,
        default_confidence: float = 0.8,
        limits: RateLimits | None = None,
    ):
        self.client = client
        self.stores = stores
        self.enabled = enabled
        self.max_entries = max_entries
        self.stale_days = stale_days
        self.stale_min_entries = stale_min_entries
        self.min_entries = min_entries
        self.default_confidence = default_confidence
        self.limits = limits or RateLimits()

    @classmethod
    def from_config(cls, config: Any, client: InferenceClient, stores: StoreManager) -> Consolidator:
        section = config.consolidation
        return cls(
            client=client,
            stores=stores,
            enabled=section.enabled,
            max_entries=section.max_entries,
            stale_days=section.stale_days,
            stale_min_entries=section.stale_min_entries,
            min_entries=section.min_entries,
            default_confidence=section.default_confidence,
            limits=RateLimits(
                max_calls_per_hour=config.inference.max_calls_per_hour,
                max_calls_per_project=config.inference.max_calls_per_project,
                cooldown_ms=int(config.inference.cooldown_seconds * 1000),
            ),
        )

    def needs_consolidation(self, store: MemoryStore, now: int | None = None) -> bool:
        """True at the absolute ceiling, or when stale and above the lower threshold."""
        if not self.enabled:
            return False

        now = now_ms() if now is None else now
        count = len(store.memories)
        if count >= self.max_entries:
            return True

        days_since_last = (now - store.last_consolidated) / DAY_MS
        return days_since_last > self.stale_days and count > self.stale_min_entries

    def _digest(self, store: MemoryStore, now: int) -> list[dict[str, Any]]:
        return [
            {
                "key": m.key,
                "category": m.category,
                "value": m.value,
                "confidence": m.confidence,
                "age_days": int((now - m.updated_at) // DAY_MS),
            }
            for m in store.memories.values()
        ]

    def _rebuild(self, store: MemoryStore, keep: list[Any], now: int) -> dict[str, StoredMemory]:
        rebuilt: dict[str, StoredMemory] = {}
        for item in keep:
            if not isinstance(item, dict) or not isinstance(item.get("key"), str):
                continue
            key = item["key"]
            existing = store.memories.get(key)

            confidence = item.get("confidence")
            if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
                confidence = existing.confidence if existing else self.default_confidence

            rebuilt[key] = StoredMemory(
                key=key,
                category=str(item.get("category") or (existing.category if existing else "")),
                value=str(item.get("value") or (existing.value if existing else "")),
                confidence=float(confidence),
                created_at=existing.created_at if existing else now,
                updated_at=existing.updated_at if existing else now,
                session_id=existing.session_id if existing else CONSOLIDATION_SESSION_ID,
                source=existing.source if existing else None,
                file_pattern=existing.file_pattern if existing else None,
            )
        return rebuilt

    async def consolidate(
        self,
        store: MemoryStore,
        now: int | None = None,
        usage: UsageCounter | None = None,
    ) -> ConsolidationOutcome:
        """
        Replace the store's memory map with the collaborator's keep set, in place.

        The store is only mutated on a PARSED outcome; the caller persists it.
        When a usage counter is given the call shares the extraction ceilings:
        it is refused while any ceiling is reached and recorded once it succeeds.
        """
        before = len(store.memories)
        if before < self.min_entries:
            return ConsolidationOutcome(OutcomeStatus.SKIPPED, before, before, "not enough memories")

        now = now_ms() if now is None else now

        if usage is not None:
            refusal = usage.refusal_reason(store.project_root, self.limits, now)
            if refusal:
                logger.info("consolidation_deferred", project=store.project_root, reason=refusal)
                return ConsolidationOutcome(OutcomeStatus.SKIPPED, before, before, refusal)

        prompt = build_consolidation_prompt(self._digest(store, now))

        try:
            text = await self.client.complete(CONSOLIDATION_SYSTEM, prompt)
        except Exception as e:
            logger.warning("consolidation_failed", project=store.project_root, error=str(e))
            return ConsolidationOutcome(OutcomeStatus.FAILED, before, before, str(e))

        if usage is not None:
            usage.record_call(store.project_root, now)

        start, end = text.find("{"), text.rfind("}")
        try:
            if start == -1 or end < start:
                raise ValueError("no JSON object in reply")
            result = json.loads(text[start:end + 1])
        except ValueError as e:
            logger.warning("consolidation_unparsable", project=store.project_root, error=str(e))
            return ConsolidationOutcome(OutcomeStatus.FAILED, before, before, f"unparsable reply: {e}")

        keep = result.get("keep") if isinstance(result, dict) else None
        if not isinstance(keep, list):
            logger.warning("consolidation_missing_keep", project=store.project_root)
            return ConsolidationOutcome(OutcomeStatus.FAILED, before, before, "reply has no keep list")

        rebuilt = self._rebuild(store, keep, now)
        if not rebuilt:
            # An empty keep set would wipe the store; treat it as a bad reply
            logger.warning("consolidation_empty_keep", project=store.project_root)
            return ConsolidationOutcome(OutcomeStatus.FAILED, before, before, "empty keep set")

        store.memories = rebuilt
        store.last_consolidated = now
        store.last_updated = now

        reason = result.get("reason") if isinstance(result.get("reason"), str) else ""
        logger.info(
            "consolidated",
            project=store.project_root,
            before=before,
            after=len(rebuilt),
            reason=reason,
        )
        return ConsolidationOutcome(OutcomeStatus.PARSED, before, len(rebuilt), reason)

    async def run(self, identifier: str, usage: UsageCounter | None = None) -> ConsolidationOutcome:
        """Load, consolidate and save one store; nothing is written unless it parsed."""
        store = self.stores.load(identifier)
        outcome = await self.consolidate(store, usage=usage)
        if outcome.status == OutcomeStatus.PARSED:
            self.stores.save(identifier, store)
        return outcome
