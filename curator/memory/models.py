"""
Shared types for the memory pipeline.

Candidate facts are produced by the extraction tiers and never persisted
directly; each tier has its own variant so the fields it guarantees are
explicit. Stored memories and store documents serialize to the camelCase
JSON shape used on disk (millisecond epoch timestamps).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

DECISION_CONFIDENCE = 0.9
STORE_VERSION = 1


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Errors
# =============================================================================

class CuratorError(Exception):
    """Base error for the memory pipeline."""


class InferenceError(CuratorError):
    """The external inference call failed, timed out, or returned nothing usable."""


class LockBusyError(CuratorError):
    """Another process holds the single-writer lock."""


# =============================================================================
# Candidate facts
# =============================================================================

class Scope(str, Enum):
    PROJECT = "project"
    GLOBAL = "global"


@dataclass
class CandidateFact:
    """A tier-produced key/value/confidence triple pending merge."""
    category: str
    key: str
    value: str
    confidence: float
    scope: Scope = Scope.PROJECT

    tier: ClassVar[str] = "unknown"


@dataclass
class DecisionFact(CandidateFact):
    """An operator-asserted fact read from a decision log."""
    confidence: float = DECISION_CONFIDENCE

    tier: ClassVar[str] = "decision_log"


@dataclass
class StructuralFact(CandidateFact):
    """A fact mined from a file-mutation or command event."""
    source: str = ""

    tier: ClassVar[str] = "structural"


@dataclass
class InferredFact(CandidateFact):
    """A fact returned by the external inference call."""
    source: str | None = None
    file_pattern: str | None = None

    tier: ClassVar[str] = "inference"


# =============================================================================
# Persisted memory
# =============================================================================

@dataclass
class StoredMemory:
    key: str
    category: str
    value: str
    confidence: float
    created_at: int
    updated_at: int
    session_id: str
    source: str | None = None
    file_pattern: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "category": self.category,
            "value": self.value,
            "confidence": self.confidence,
        }
        if self.source is not None:
            data["source"] = self.source
        if self.file_pattern is not None:
            data["filePattern"] = self.file_pattern
        data["createdAt"] = self.created_at
        data["updatedAt"] = self.updated_at
        data["sessionId"] = self.session_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredMemory:
        return cls(
            key=str(data["key"]),
            category=str(data.get("category", "")),
            value=str(data.get("value", "")),
            confidence=float(data.get("confidence", 0.0)),
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", 0)),
            session_id=str(data.get("sessionId", "")),
            source=data.get("source"),
            file_pattern=data.get("filePattern"),
        )


@dataclass
class MemoryStore:
    """A named key -> StoredMemory map plus bookkeeping timestamps."""
    project_root: str
    memories: dict[str, StoredMemory] = field(default_factory=dict)
    last_consolidated: int = 0
    last_updated: int = 0
    version: int = STORE_VERSION

    def __len__(self) -> int:
        return len(self.memories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "projectRoot": self.project_root,
            "memories": {k: m.to_dict() for k, m in self.memories.items()},
            "lastConsolidated": self.last_consolidated,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryStore:
        raw_memories = data.get("memories") or {}
        if not isinstance(raw_memories, dict):
            raise ValueError("memories must be an object")
        return cls(
            project_root=str(data.get("projectRoot", "")),
            memories={k: StoredMemory.from_dict(v) for k, v in raw_memories.items()},
            last_consolidated=int(data.get("lastConsolidated", 0)),
            last_updated=int(data.get("lastUpdated", 0)),
            version=int(data.get("version", STORE_VERSION)),
        )


# =============================================================================
# Transcript and queue records
# =============================================================================

@dataclass
class ConversationMessage:
    role: str
    content: str


@dataclass
class ToolEvent:
    """A normalized tool invocation: tool name plus its raw input mapping."""
    tool: str
    input: dict[str, Any] = field(default_factory=dict)

    def get_str(self, name: str) -> str:
        value = self.input.get(name)
        return value if isinstance(value, str) else ""


@dataclass
class SessionRecord:
    session_id: str
    project_root: str
    transcript_hash: str
    transcript_path: str
    message_count: int = 0
    tool_event_count: int = 0
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
            "projectRoot": self.project_root,
            "transcriptHash": self.transcript_hash,
            "messageCount": self.message_count,
            "toolEventCount": self.tool_event_count,
            "transcriptPath": self.transcript_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionRecord:
        return cls(
            session_id=str(data["sessionId"]),
            project_root=str(data["projectRoot"]),
            transcript_hash=str(data.get("transcriptHash", "")),
            transcript_path=str(data["transcriptPath"]),
            message_count=int(data.get("messageCount", 0)),
            tool_event_count=int(data.get("toolEventCount", 0)),
            timestamp=int(data.get("timestamp", 0)),
        )


# =============================================================================
# Outcomes
# =============================================================================

class OutcomeStatus(str, Enum):
    PARSED = "parsed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TierOutcome:
    """What one tier produced for one session, and why."""
    tier: str
    status: OutcomeStatus
    facts: list[CandidateFact] = field(default_factory=list)
    reason: str = ""

    @classmethod
    def parsed(cls, tier: str, facts: list[CandidateFact], reason: str = "") -> TierOutcome:
        return cls(tier=tier, status=OutcomeStatus.PARSED, facts=list(facts), reason=reason)

    @classmethod
    def skipped(cls, tier: str, reason: str) -> TierOutcome:
        return cls(tier=tier, status=OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, tier: str, reason: str) -> TierOutcome:
        return cls(tier=tier, status=OutcomeStatus.FAILED, reason=reason)


@dataclass
class SessionReport:
    session_id: str
    project_root: str
    outcomes: list[TierOutcome] = field(default_factory=list)
    stored_keys: list[str] = field(default_factory=list)
    global_keys: list[str] = field(default_factory=list)
    superseded_keys: list[str] = field(default_factory=list)
    inference_called: bool = False
    consolidation: OutcomeStatus | None = None

    def outcome(self, tier: str) -> TierOutcome | None:
        for item in self.outcomes:
            if item.tier == tier:
                return item
        return None


@dataclass
class PassStats:
    sessions_processed: int = 0
    sessions_failed: int = 0
    memories_from_decision_log: int = 0
    memories_from_structural: int = 0
    memories_from_inference: int = 0
    inference_calls: int = 0
    lock_busy: bool = False
    reports: list[SessionReport] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_busy": self.lock_busy,
            "sessions_processed": self.sessions_processed,
            "sessions_failed": self.sessions_failed,
            "memories_from_decision_log": self.memories_from_decision_log,
            "memories_from_structural": self.memories_from_structural,
            "memories_from_inference": self.memories_from_inference,
            "inference_calls": self.inference_calls,
        }
