"""Shared test fixtures for curated-context tests.

This module provides common fixtures used across all test modules:
- Data directory isolation under tmp_path (CC_DIR)
- A config bound to that directory
- A fake inference client that records every call
- Transcript builders for JSONL session transcripts

Usage:
    def test_something(config, fake_client, make_transcript):
        path = make_transcript([user("hi")])
        ...
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable

import pytest
import structlog

from curator.config import CuratorConfig, PathsConfig
from curator.memory.models import InferenceError


# ─────────────────────────────────────────────────────────────────────────────
# Data Directory Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated data directory; CC_DIR points at it for the test's duration."""
    path = tmp_path / "cc"
    path.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("CC_DIR", str(path))
    return path


@pytest.fixture
def config(data_dir: Path) -> CuratorConfig:
    """Default configuration rooted at the temporary data directory."""
    return CuratorConfig(paths=PathsConfig(data_dir=str(data_dir)))


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A project directory with an empty .claude/ folder."""
    root = tmp_path / "project"
    (root / ".claude").mkdir(parents=True, exist_ok=True)
    return root


# ─────────────────────────────────────────────────────────────────────────────
# Inference Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeInferenceClient:
    """InferenceClient double: returns canned replies and counts calls.

    A reply that is an Exception instance is raised instead of returned.
    The last reply repeats once the list is exhausted.
    """

    def __init__(self, replies: list[Any] | None = None):
        self.replies = list(replies or ['{"project_memories": [], "global_memories": [], "supersedes": []}'])
        self.calls: list[tuple[str, str]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, system: str, prompt: str) -> str:
        self.calls.append((system, prompt))
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def fake_client() -> FakeInferenceClient:
    return FakeInferenceClient()


@pytest.fixture
def failing_client() -> FakeInferenceClient:
    return FakeInferenceClient([InferenceError("inference call timed out after 60s")])


# ─────────────────────────────────────────────────────────────────────────────
# Transcript Fixtures
# ─────────────────────────────────────────────────────────────────────────────


def user(text: str, cwd: str = "", session_id: str = "") -> dict:
    entry = {"type": "user", "message": {"content": [{"type": "text", "text": text}]}}
    if cwd:
        entry["cwd"] = cwd
    if session_id:
        entry["sessionId"] = session_id
    return entry


def assistant(text: str = "", tools: list[tuple[str, dict]] | None = None) -> dict:
    content: list[dict] = []
    if text:
        content.append({"type": "text", "text": text})
    for name, tool_input in tools or []:
        content.append({"type": "tool_use", "name": name, "input": tool_input})
    return {"type": "assistant", "message": {"content": content}}


@pytest.fixture
def make_transcript(tmp_path: Path) -> Callable[..., Path]:
    """Write transcript entries as JSONL and return the file path."""
    counter = {"n": 0}

    def _make(entries: list[dict], name: str | None = None) -> Path:
        counter["n"] += 1
        path = tmp_path / "transcripts" / (name or f"transcript-{counter['n']}.jsonl")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")
        return path

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Logging Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def isolated_logging():
    """Restore root handlers and structlog defaults after a test calls setup_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
