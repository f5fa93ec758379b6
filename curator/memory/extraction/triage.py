"""
Triage Scorer — Tier 3 Pre-filter for Inference

Decides whether a session's recent conversation warrants the expensive
inference tier. Pure regex signal detection, zero API calls.

Two independent pattern sets are counted over the recent window:
  decision signals: explicit choices, stack/tooling/deployment/data vocabulary
  noise signals:    hedging, debugging, correction language

Each score is the number of distinct patterns that match anywhere in the
window. Only the individual messages carrying a decision signal are handed
to the next tier.

Usage:
    from curator.memory.extraction.triage import score

    result = score(transcript.messages)
    if result.should_process:
        await gateway.extract(result.high_signal_messages, ...)
"""

from __future__ import annotations

import re
import logging
from dataclasses import dataclass, field

from curator.memory.models import ConversationMessage

logger = logging.getLogger(__name__)

WINDOW_SIZE = 10
MIN_DECISION_SCORE = 2


# =============================================================================
# Signal Detection Patterns
# =============================================================================

DECISION_SIGNALS = [
    re.compile(r"(?:let's|we'll|I'll|going to|decided to|switching to|using)\s+", re.I),
    re.compile(r"(?:the (?:primary|accent|background) color|theme|font|layout)\s+(?:is|should be|will be)", re.I),
    re.compile(r"(?:we're using|stack is|chose|picked|going with)\s+", re.I),
    re.compile(r"(?:header|footer|sidebar|nav|api|endpoint|route|schema)\s+(?:should|will|must)", re.I),
    re.compile(r"(?:convention|pattern|standard|rule):\s+", re.I),
    re.compile(r"(?:always|never|prefer|avoid)\s+", re.I),
    re.compile(r"(?:architecture|design system|component library|state management)", re.I),
    re.compile(r"(?:database|orm|authentication|authorization)\s+(?:is|uses?|with)", re.I),
    re.compile(r"(?:deploy(?:ing|ed|s)?|hosting|wrangler|vercel|netlify|cloudflare|aws|gcloud)\s+", re.I),
    re.compile(r"(?:I (?:usually|typically|normally|generally|always) use)\s+", re.I),
    re.compile(r"(?:I prefer|my go-to|I like to use|I tend to use|my preference is)\s+", re.I),
    re.compile(r"(?:for (?:backend|frontend|styling|testing|deployment|CI),?\s+(?:I|we)\s+(?:use|prefer|like))", re.I),
    re.compile(r"(?:data\s*(?:file|source|set|base)|single source of truth|canonical\s+(?:data|file|source))", re.I),
    re.compile(r"(?:schema|table|model|migration|column|field)\s+(?:is|has|should|must|contains)", re.I),
    re.compile(r"(?:scrape[ds]?|ingest|import|export|etl|pipeline)\s+(?:data|from|to|into)", re.I),
    re.compile(r"(?:\.jsonl|\.csv|\.parquet|\.pickle|\.sqlite)\b", re.I),
]

NOISE_SIGNALS = [
    re.compile(r"(?:let me try|hmm|actually wait|no that's wrong|error:|failed)", re.I),
    re.compile(r"(?:can you|what if|maybe|not sure|I'm not certain)", re.I),
    re.compile(r"(?:reading file|searching|listing|looking at)", re.I),
    re.compile(r"(?:debugging|troubleshoot|fix(?:ing)?|broke|broken)", re.I),
    re.compile(r"(?:oops|sorry|mistake|undo|revert)", re.I),
]


@dataclass
class TriageResult:
    """Result of triage over the recent message window."""
    should_process: bool
    decision_score: int
    noise_score: int
    high_signal_messages: list[ConversationMessage] = field(default_factory=list)


def count_signals(text: str, patterns: list[re.Pattern]) -> int:
    """Number of distinct patterns matching anywhere in text."""
    return sum(1 for p in patterns if p.search(text))


def has_decision_signal(text: str) -> bool:
    return any(p.search(text) for p in DECISION_SIGNALS)


def score(
    messages: list[ConversationMessage],
    window_size: int = WINDOW_SIZE,
    min_decision_score: int = MIN_DECISION_SCORE,
) -> TriageResult:
    """
    Score the most recent window of messages.

    Args:
        messages: Conversation turns, oldest first
        window_size: Number of trailing turns considered
        min_decision_score: Minimum distinct decision signals required

    Returns:
        TriageResult; high_signal_messages is empty unless should_process
    """
    recent = messages[-window_size:] if window_size > 0 else []
    if not recent:
        return TriageResult(should_process=False, decision_score=0, noise_score=0)

    text = " ".join(m.content for m in recent)
    decision_score = count_signals(text, DECISION_SIGNALS)
    noise_score = count_signals(text, NOISE_SIGNALS)

    should_process = decision_score >= min_decision_score and decision_score > noise_score

    high_signal = [m for m in recent if has_decision_signal(m.content)] if should_process else []

    logger.debug(
        f"Triage: decision={decision_score} noise={noise_score} "
        f"process={should_process} high_signal={len(high_signal)}"
    )

    return TriageResult(
        should_process=should_process,
        decision_score=decision_score,
        noise_score=noise_score,
        high_signal_messages=high_signal,
    )
