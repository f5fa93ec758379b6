"""
Memory Store

Persistent, confidence-weighted, size-bounded key/value index of facts. One
JSON document per identifier (a project root, or the global sentinel) under
``<data_dir>/store/``:

    global           -> store/global.json
    /path/to/project -> store/<md5(path)[:12]>.json

Rules:
  - merge overwrites value/category/confidence/updatedAt by key and keeps
    the original createdAt
  - save enforces the ceiling by evicting (confidence asc, updatedAt asc)
  - writes go to a temp file renamed over the target
  - a missing or corrupt file loads as a fresh empty store

Usage:
    from curator.memory.store import StoreManager

    stores = StoreManager(config.store_dir)
    store = stores.load(project_root)
    stores.merge(store, facts, session_id)
    stores.save(project_root, store)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable

from curator import GLOBAL_STORE_ID
from curator.memory.models import (
    CandidateFact,
    MemoryStore,
    Scope,
    StoredMemory,
    StructuralFact,
    now_ms,
)

logger = logging.getLogger(__name__)

MAX_ENTRIES_PROJECT = 200
MAX_ENTRIES_GLOBAL = 100
REINFORCEMENT_STEP = 0.05
REINFORCEMENT_CEILING = 0.85

PREFERENCES_CATEGORY = "preferences"


def store_filename(identifier: str) -> str:
    if identifier == GLOBAL_STORE_ID:
        return "global.json"
    return hashlib.md5(identifier.encode("utf-8")).hexdigest()[:12] + ".json"


def is_global(identifier: str) -> bool:
    return identifier == GLOBAL_STORE_ID


def split_by_scope(facts: Iterable[CandidateFact]) -> tuple[list[CandidateFact], list[CandidateFact]]:
    """(project facts, global facts)"""
    project, global_ = [], []
    for fact in facts:
        (global_ if fact.scope == Scope.GLOBAL else project).append(fact)
    return project, global_


def group_by_category(store: MemoryStore) -> dict[str, list[StoredMemory]]:
    grouped: dict[str, list[StoredMemory]] = {}
    for memory in store.memories.values():
        grouped.setdefault(memory.category, []).append(memory)
    return grouped


class StoreManager:
    """Loads, merges, evicts and persists memory stores under one directory."""

    def __init__(
        self,
        store_dir: str | Path,
        max_entries_project: int = MAX_ENTRIES_PROJECT,
        max_entries_global: int = MAX_ENTRIES_GLOBAL,
        reinforcement_step: float = REINFORCEMENT_STEP,
        reinforcement_ceiling: float = REINFORCEMENT_CEILING,
    ):
        self.store_dir = Path(store_dir)
        self.max_entries_project = max_entries_project
        self.max_entries_global = max_entries_global
        self.reinforcement_step = reinforcement_step
        self.reinforcement_ceiling = reinforcement_ceiling

    @classmethod
    def from_config(cls, config: Any) -> StoreManager:
        return cls(
            store_dir=config.store_dir,
            max_entries_project=config.store.max_entries_project,
            max_entries_global=config.store.max_entries_global,
            reinforcement_step=config.store.reinforcement_step,
            reinforcement_ceiling=config.store.reinforcement_ceiling,
        )

    def path_for(self, identifier: str) -> Path:
        return self.store_dir / store_filename(identifier)

    def ceiling_for(self, identifier: str) -> int:
        return self.max_entries_global if is_global(identifier) else self.max_entries_project

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self, identifier: str) -> MemoryStore:
        """Load a store, or a fresh empty one if the file is missing or corrupt."""
        path = self.path_for(identifier)
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("store document is not an object")
                return MemoryStore.from_dict(data)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Store {path.name} for {identifier} is unreadable, starting fresh: {e}")

        return MemoryStore(project_root=identifier)

    def save(self, identifier: str, store: MemoryStore) -> list[str]:
        """
        Enforce the ceiling and write atomically.

        Returns:
            Keys evicted to satisfy the ceiling
        """
        evicted = self.evict(store, self.ceiling_for(identifier))
        if evicted:
            logger.info(f"Evicted {len(evicted)} memories from {identifier}")

        self.store_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(identifier)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(json.dumps(store.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
        return evicted

    def list_identifiers(self) -> list[str]:
        """Identifiers of every persisted store, read back from the documents."""
        if not self.store_dir.exists():
            return []

        identifiers = []
        for path in sorted(self.store_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.debug(f"Skipping unreadable store {path.name}: {e}")
                continue
            if isinstance(data, dict) and data.get("projectRoot"):
                identifiers.append(str(data["projectRoot"]))
        return identifiers

    # =========================================================================
    # Mutation
    # =========================================================================

    @staticmethod
    def evict(store: MemoryStore, ceiling: int) -> list[str]:
        """Drop the lowest (confidence, updatedAt) entries until the ceiling holds."""
        excess = len(store.memories) - ceiling
        if excess <= 0:
            return []

        ranked = sorted(store.memories.values(), key=lambda m: (m.confidence, m.updated_at))
        evicted = [m.key for m in ranked[:excess]]
        for key in evicted:
            del store.memories[key]
        return evicted

    def reinforced_confidence(self, fact: CandidateFact, existing: StoredMemory, session_id: str) -> float | None:
        """
        Confidence for a global preference seen again in a different session.

        Returns None when the rule doesn't apply. The result never exceeds the
        ceiling unless the stored value already did, in which case it is kept.
        """
        if not isinstance(fact, StructuralFact):
            return None
        if fact.scope != Scope.GLOBAL or fact.category != PREFERENCES_CATEGORY:
            return None
        if existing.session_id == session_id:
            return None

        if existing.confidence > self.reinforcement_ceiling:
            return existing.confidence
        boosted = min(existing.confidence + self.reinforcement_step, self.reinforcement_ceiling)
        return max(fact.confidence, boosted)

    def merge(
        self,
        store: MemoryStore,
        facts: Iterable[CandidateFact],
        session_id: str,
        now: int | None = None,
    ) -> list[str]:
        """
        Merge candidates into a store in place.

        Returns:
            Keys written, in merge order
        """
        now = now_ms() if now is None else now
        written = []

        for fact in facts:
            existing = store.memories.get(fact.key)
            confidence = fact.confidence
            if existing is not None:
                reinforced = self.reinforced_confidence(fact, existing, session_id)
                if reinforced is not None:
                    confidence = reinforced

            store.memories[fact.key] = StoredMemory(
                key=fact.key,
                category=fact.category,
                value=fact.value,
                confidence=confidence,
                created_at=existing.created_at if existing is not None else now,
                updated_at=now,
                session_id=session_id,
                source=getattr(fact, "source", None) or None,
                file_pattern=getattr(fact, "file_pattern", None),
            )
            written.append(fact.key)

        store.last_updated = now
        return written

    @staticmethod
    def remove(store: MemoryStore, key: str) -> bool:
        return store.memories.pop(key, None) is not None

    def apply(
        self,
        identifier: str,
        facts: Iterable[CandidateFact],
        session_id: str,
        remove_keys: Iterable[str] = (),
    ) -> list[str]:
        """Load, remove, merge and save one store as a single transaction."""
        store = self.load(identifier)
        for key in remove_keys:
            self.remove(store, key)
        written = self.merge(store, facts, session_id)
        self.save(identifier, store)
        return written
