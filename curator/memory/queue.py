"""
Session Queue

Durable, file-backed queue of pending sessions under ``<data_dir>/sessions/``:

    <sessionId>.jsonl  - append-only session events, one JSON object per line
    <sessionId>.hash   - hash of the last captured transcript state

A session stays pending until ``mark_processed`` deletes both files, so a
crash mid-pass just means the session is picked up again next time.

Usage:
    from curator.memory.queue import SessionQueue

    queue = SessionQueue(config.sessions_dir)
    queue.capture(session_id, transcript_path)      # producer side
    for pending in queue.list_pending():             # consumer side
        ...
        queue.mark_processed(pending.session_id)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from curator.memory.extraction.transcript import (
    MAX_CONTENT_LENGTH,
    compute_transcript_hash,
    parse_transcript_text,
)
from curator.memory.models import SessionRecord, now_ms

logger = logging.getLogger(__name__)

EVENTS_SUFFIX = ".jsonl"
HASH_SUFFIX = ".hash"


@dataclass
class PendingSession:
    """All queued events for one session; the latest one is authoritative."""
    session_id: str
    events: list[SessionRecord] = field(default_factory=list)

    @property
    def latest(self) -> SessionRecord:
        return self.events[-1]

    @property
    def transcript_path(self) -> str:
        return self.latest.transcript_path

    @property
    def project_root(self) -> str:
        return self.latest.project_root


class SessionQueue:

    def __init__(self, sessions_dir: str | Path, max_transcript_chars: int = MAX_CONTENT_LENGTH):
        self.sessions_dir = Path(sessions_dir)
        self.max_transcript_chars = max_transcript_chars

    @classmethod
    def from_config(cls, config) -> SessionQueue:
        return cls(config.sessions_dir, max_transcript_chars=config.queue.max_transcript_chars)

    def ensure_directories(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def events_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}{EVENTS_SUFFIX}"

    def hash_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}{HASH_SUFFIX}"

    # =========================================================================
    # Consumer side
    # =========================================================================

    def _read_events(self, path: Path) -> list[SessionRecord]:
        events = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("event is not an object")
                events.append(SessionRecord.from_dict(data))
            except (ValueError, KeyError, TypeError) as e:
                logger.debug(f"Discarding malformed event in {path.name}: {e}")
        return events

    def list_pending(self) -> list[PendingSession]:
        """
        Scan the sessions directory.

        Unreadable files and malformed event lines are skipped; a file with no
        valid events is not pending. Repeated scans return the same sessions
        until they are marked processed.
        """
        self.ensure_directories()

        pending = []
        for path in sorted(self.sessions_dir.glob(f"*{EVENTS_SUFFIX}")):
            try:
                events = self._read_events(path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read session file {path.name}: {e}")
                continue

            if not events:
                continue

            pending.append(PendingSession(session_id=path.name[: -len(EVENTS_SUFFIX)], events=events))

        return pending

    def mark_processed(self, session_id: str) -> int:
        """
        Delete the session's event log and hash marker.

        Each deletion is attempted independently; failures are logged, not raised.

        Returns:
            Number of files removed
        """
        removed = 0
        for path in (self.events_path(session_id), self.hash_path(session_id)):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove {path.name}: {e}")
        return removed

    def depth(self) -> int:
        """Number of sessions with an event log on disk."""
        if not self.sessions_dir.exists():
            return 0
        return sum(1 for _ in self.sessions_dir.glob(f"*{EVENTS_SUFFIX}"))

    # =========================================================================
    # Producer side
    # =========================================================================

    def capture(self, session_id: str, transcript_path: str | Path, project_root: str | None = None) -> SessionRecord | None:
        """
        Record that a transcript has new content.

        A transcript whose hash matches the last capture, that can't be read,
        or that has no conversational turns is not queued.

        Returns:
            The appended SessionRecord, or None if nothing was queued
        """
        path = Path(transcript_path)
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read transcript {path}: {e}")
            return None

        self.ensure_directories()
        transcript_hash = compute_transcript_hash(raw)

        hash_file = self.hash_path(session_id)
        if hash_file.exists():
            try:
                if hash_file.read_text(encoding="utf-8").strip() == transcript_hash:
                    logger.debug(f"Transcript unchanged for session {session_id}, skipping capture")
                    return None
            except OSError as e:
                logger.debug(f"Could not read hash marker for {session_id}: {e}")

        transcript = parse_transcript_text(raw, max_chars=self.max_transcript_chars)
        if not transcript.messages:
            return None

        record = SessionRecord(
            session_id=session_id,
            project_root=project_root or transcript.project_root,
            transcript_hash=transcript_hash,
            transcript_path=str(path),
            message_count=len(transcript.messages),
            tool_event_count=len(transcript.tool_events),
            timestamp=now_ms(),
        )

        with open(self.events_path(session_id), "a", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict()) + "\n")
        hash_file.write_text(transcript_hash, encoding="utf-8")

        logger.info(f"Captured session {session_id} ({record.message_count} messages, {record.tool_event_count} tool events)")
        return record
