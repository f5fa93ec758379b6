"""
Decision Log Reader — Tier 1

Parses the append-only decision log the running assistant writes explicit
facts into. One fact per line:

    [category] key: value            (project scope)
    [global:category] key: value     (global scope)

Lines that don't match are skipped. Every entry carries a fixed confidence of
0.9: the fact was stated on purpose, so it outranks anything inferred.

Two logs exist: ``<projectRoot>/.claude/decisions.log`` and a process-wide
``<data_dir>/decisions.log`` whose entries are always global.

Usage:
    from curator.memory.extraction.decision_log import parse, clear

    entries = parse(log_path)
    if entries:
        clear(log_path)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from curator.memory.models import DecisionFact, Scope

logger = logging.getLogger(__name__)

DECISION_LOG_FILENAME = "decisions.log"

LINE_PATTERN = re.compile(r"^\[(?:(global):)?(\w+)\]\s+(.+?):\s+(.+)$", re.ASCII)


def parse_line(line: str, force_scope: Scope | None = None) -> DecisionFact | None:
    """Parse a single log line, or return None if it doesn't match."""
    match = LINE_PATTERN.match(line)
    if not match:
        return None

    is_global = match.group(1) == "global"
    scope = force_scope or (Scope.GLOBAL if is_global else Scope.PROJECT)
    return DecisionFact(
        category=match.group(2).lower(),
        key=match.group(3).strip(),
        value=match.group(4).strip(),
        scope=scope,
    )


def parse(log_path: str | Path, force_scope: Scope | None = None) -> list[DecisionFact]:
    """
    Parse a decision log file.

    A missing or unreadable file yields an empty list.

    Args:
        log_path: Path to the log
        force_scope: Override the per-line scope (used for the global log)

    Returns:
        List of DecisionFact entries in file order
    """
    path = Path(log_path)
    if not path.exists():
        return []

    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read decision log {path}: {e}")
        return []

    entries = []
    for line in raw.split("\n"):
        if not line:
            continue
        entry = parse_line(line, force_scope)
        if entry is not None:
            entries.append(entry)
        else:
            logger.debug(f"Skipping unparsable decision log line: {line[:80]!r}")

    return entries


def clear(log_path: str | Path) -> bool:
    """
    Truncate a consumed log to empty without deleting it.

    Returns:
        True if the file was truncated, False if it is missing or locked
    """
    path = Path(log_path)
    if not path.exists():
        return False

    try:
        path.write_text("", encoding="utf-8")
        return True
    except OSError as e:
        # The active session may hold the file; entries get re-read next pass
        logger.warning(f"Could not clear decision log {path}: {e}")
        return False


def project_log_path(project_root: str | Path) -> Path:
    return Path(project_root) / ".claude" / DECISION_LOG_FILENAME


def global_log_path(data_dir: str | Path) -> Path:
    return Path(data_dir) / DECISION_LOG_FILENAME


def parse_project_log(project_root: str | Path) -> list[DecisionFact]:
    return parse(project_log_path(project_root))


def parse_global_log(data_dir: str | Path) -> list[DecisionFact]:
    """All entries from the process-wide log are global, whatever their tag."""
    return parse(global_log_path(data_dir), force_scope=Scope.GLOBAL)


def clear_project_log(project_root: str | Path) -> bool:
    return clear(project_log_path(project_root))


def clear_global_log(data_dir: str | Path) -> bool:
    return clear(global_log_path(data_dir))
