"""
Inference Gateway — Tier 4

Rate-limited wrapper around the external extraction call. It is the only
tier that costs money, so every call is gated by the usage counter first and
the response is trusted only as far as it parses.

Refusals (a ceiling reached) and failures (timeout, API error) are not
errors for the caller: both mean "no new facts this round". ``run`` reports
which one happened; ``extract`` collapses it to ``None``.

Usage:
    from curator.memory.extraction.inference import InferenceGateway

    gateway = InferenceGateway.from_config(config.inference, client)
    result = await gateway.extract(messages, existing, project_root, usage)
    if result:
        ...
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from curator.llm import AnthropicInferenceClient, InferenceClient
from curator.memory.extraction.prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from curator.memory.extraction.usage import RateLimits, UsageCounter
from curator.memory.models import (
    ConversationMessage,
    InferenceError,
    InferredFact,
    OutcomeStatus,
    Scope,
)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.7
MAX_PROJECT_MEMORIES = 10
MAX_GLOBAL_MEMORIES = 5


@dataclass
class ExtractionResult:
    project_memories: list[InferredFact] = field(default_factory=list)
    global_memories: list[InferredFact] = field(default_factory=list)
    supersedes: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.project_memories or self.global_memories or self.supersedes)


@dataclass
class GatewayOutcome:
    """Why the gateway did or did not produce a result."""
    status: OutcomeStatus
    reason: str = ""
    result: ExtractionResult | None = None
    called: bool = False


def _find_json_object(text: str) -> str | None:
    """Span from the first '{' to the last '}', tolerating surrounding prose or fences."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    return text[start:end + 1]


def _parse_memory(item: Any, scope: Scope) -> InferredFact | None:
    if not isinstance(item, dict):
        return None

    key = item.get("key")
    value = item.get("value")
    confidence = item.get("confidence")
    if not isinstance(key, str) or not key.strip():
        return None
    if not isinstance(value, str):
        return None
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None

    source = item.get("source")
    file_pattern = item.get("file_pattern")
    return InferredFact(
        category=str(item.get("category") or "architecture"),
        key=key.strip(),
        value=value,
        confidence=float(confidence),
        scope=scope,
        source=source if isinstance(source, str) else None,
        file_pattern=file_pattern if isinstance(file_pattern, str) else None,
    )


def _parse_memories(raw: Any, scope: Scope, min_confidence: float, limit: int) -> list[InferredFact]:
    if not isinstance(raw, list):
        return []
    facts = []
    for item in raw:
        fact = _parse_memory(item, scope)
        if fact is not None and fact.confidence >= min_confidence:
            facts.append(fact)
    return facts[:limit]


def parse_extraction_response(
    text: str,
    min_confidence: float = MIN_CONFIDENCE,
    max_project: int = MAX_PROJECT_MEMORIES,
    max_global: int = MAX_GLOBAL_MEMORIES,
) -> ExtractionResult:
    """
    Parse the model's reply into an ExtractionResult.

    Anything non-conformant degrades to an empty result: no JSON object,
    invalid JSON, wrong field types, or individual malformed entries.
    """
    json_str = _find_json_object(text or "")
    if json_str is None:
        logger.debug("Extraction response contained no JSON object")
        return ExtractionResult()

    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError:
        logger.debug(f"Failed to parse extraction JSON: {json_str[:200]}")
        return ExtractionResult()

    if not isinstance(parsed, dict):
        return ExtractionResult()

    supersedes = parsed.get("supersedes")
    return ExtractionResult(
        project_memories=_parse_memories(parsed.get("project_memories"), Scope.PROJECT, min_confidence, max_project),
        global_memories=_parse_memories(parsed.get("global_memories"), Scope.GLOBAL, min_confidence, max_global),
        supersedes=[k for k in supersedes if isinstance(k, str)] if isinstance(supersedes, list) else [],
    )


class InferenceGateway:
    """Checks the usage ceilings, calls the collaborator, parses the reply."""

    def __init__(
        self,
        client: InferenceClient,
        limits: RateLimits | None = None,
        min_confidence: float = MIN_CONFIDENCE,
        max_project_memories: int = MAX_PROJECT_MEMORIES,
        max_global_memories: int = MAX_GLOBAL_MEMORIES,
    ):
        self.client = client
        self.limits = limits or RateLimits()
        self.min_confidence = min_confidence
        self.max_project_memories = max_project_memories
        self.max_global_memories = max_global_memories

    @classmethod
    def from_config(cls, config: Any, client: InferenceClient | None = None) -> InferenceGateway:
        """Build from an InferenceConfig section; the Anthropic client is the default."""
        if client is None:
            client = AnthropicInferenceClient(
                model=config.model,
                max_tokens=config.max_tokens,
                timeout=config.timeout_seconds,
            )
        return cls(
            client=client,
            limits=RateLimits(
                max_calls_per_hour=config.max_calls_per_hour,
                max_calls_per_project=config.max_calls_per_project,
                cooldown_ms=int(config.cooldown_seconds * 1000),
            ),
            min_confidence=config.min_confidence,
            max_project_memories=config.max_project_memories,
            max_global_memories=config.max_global_memories,
        )

    async def run(
        self,
        messages: list[ConversationMessage],
        existing: Mapping[str, str],
        project_id: str,
        usage: UsageCounter,
    ) -> GatewayOutcome:
        """
        Attempt one extraction call.

        Args:
            messages: High-signal turns to send
            existing: key -> value digest of already-stored facts
            project_id: Project the per-project ceiling is counted against
            usage: Counter to check and update; the caller persists it

        Returns:
            GatewayOutcome; ``called`` is True only if the collaborator was invoked
        """
        if not messages:
            return GatewayOutcome(status=OutcomeStatus.SKIPPED, reason="no messages")

        refusal = usage.refusal_reason(project_id, self.limits)
        if refusal:
            logger.info(f"Inference skipped for {project_id}: {refusal}")
            return GatewayOutcome(status=OutcomeStatus.SKIPPED, reason=refusal)

        prompt = build_extraction_prompt(messages, existing)

        try:
            text = await self.client.complete(EXTRACTION_SYSTEM_PROMPT, prompt)
        except InferenceError as e:
            logger.warning(f"Inference extraction failed: {e}")
            return GatewayOutcome(status=OutcomeStatus.FAILED, reason=str(e), called=True)
        except Exception as e:
            logger.warning(f"Inference extraction raised {type(e).__name__}: {e}")
            return GatewayOutcome(status=OutcomeStatus.FAILED, reason=str(e), called=True)

        usage.record_call(project_id)

        result = parse_extraction_response(
            text,
            min_confidence=self.min_confidence,
            max_project=self.max_project_memories,
            max_global=self.max_global_memories,
        )
        logger.info(
            f"Inference extracted {len(result.project_memories)} project, "
            f"{len(result.global_memories)} global, {len(result.supersedes)} superseded"
        )
        return GatewayOutcome(status=OutcomeStatus.PARSED, result=result, called=True)

    async def extract(
        self,
        messages: list[ConversationMessage],
        existing: Mapping[str, str],
        project_id: str,
        usage: UsageCounter,
    ) -> ExtractionResult | None:
        """Contract form of ``run``: the result, or None when refused or failed."""
        outcome = await self.run(messages, existing, project_id, usage)
        return outcome.result
