"""
Transcript Normalization

Turns a JSONL conversation transcript into the two streams the extraction
tiers consume: text turns (for triage and inference) and tool events (for the
structural miner).

Usage:
    from curator.memory.extraction.transcript import parse_transcript

    transcript = parse_transcript(path)
    facts = extract_structural(transcript.tool_events)
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from curator.memory.models import ConversationMessage, ToolEvent

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 50_000
MIN_MESSAGES_KEPT = 4

# Internal bookkeeping entries written by the host application
_SKIPPED_ENTRY_TYPES = {"queue-operation", "file-history-snapshot"}


@dataclass
class Transcript:
    project_root: str = ""
    session_id: str = ""
    messages: list[ConversationMessage] = field(default_factory=list)
    tool_events: list[ToolEvent] = field(default_factory=list)


def _text_blocks(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    parts = [
        block.get("text") or ""
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(parts).strip()


def parse_transcript_text(raw: str, max_chars: int = MAX_CONTENT_LENGTH) -> Transcript:
    """
    Parse transcript JSONL text.

    Malformed lines are skipped. When the total text exceeds ``max_chars``,
    the oldest turns are dropped while more than four remain.
    """
    transcript = Transcript()

    for line in raw.splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue

        entry_type = entry.get("type")
        if entry_type in _SKIPPED_ENTRY_TYPES:
            continue

        if entry.get("cwd") and not transcript.project_root:
            transcript.project_root = str(entry["cwd"])
        if entry.get("sessionId") and not transcript.session_id:
            transcript.session_id = str(entry["sessionId"])

        message = entry.get("message")
        if not isinstance(message, dict) or not message.get("content"):
            continue
        content = message["content"]

        if entry_type in ("user", "assistant"):
            text = _text_blocks(content)
            if text:
                transcript.messages.append(ConversationMessage(role=entry_type, content=text))

        if entry_type == "assistant" and isinstance(content, list):
            for block in content:
                if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("name"):
                    tool_input = block.get("input")
                    transcript.tool_events.append(ToolEvent(
                        tool=str(block["name"]),
                        input=tool_input if isinstance(tool_input, dict) else {},
                    ))

    total = sum(len(m.content) for m in transcript.messages)
    while total > max_chars and len(transcript.messages) > MIN_MESSAGES_KEPT:
        removed = transcript.messages.pop(0)
        total -= len(removed.content)

    return transcript


def parse_transcript(path: str | Path, max_chars: int = MAX_CONTENT_LENGTH) -> Transcript:
    """Read and parse a transcript file. Raises OSError if it can't be read."""
    raw = Path(path).read_text(encoding="utf-8", errors="replace")
    return parse_transcript_text(raw, max_chars=max_chars)


def compute_transcript_hash(raw: str) -> str:
    """Stable content hash used to skip re-capturing an unchanged transcript."""
    return hashlib.sha256(raw.encode("utf-8", errors="replace")).hexdigest()[:16]
