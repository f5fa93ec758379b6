"""
Curated Context

Distills short, key-addressable project memories from AI coding assistant
transcripts through a tiered extraction cascade.

Components:
- memory/queue.py: pending session discovery and capture dedup
- memory/extraction/: decision log, structural miner, triage, inference gateway
- memory/store.py: confidence-weighted, size-bounded memory store
- memory/pipeline.py: per-session orchestration of the four tiers
- memory/consolidator.py: periodic compaction of a store
- memory/daemon.py: guarded passes and background polling

Usage:
    from curator.memory.pipeline import Pipeline

    pipeline = Pipeline.from_config()
    stats = await pipeline.process_queue()
"""

import os
from pathlib import Path

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"
CONFIG_PATH = ARGS_DIR / "curator.yaml"

GLOBAL_STORE_ID = "__global__"


def default_data_dir() -> Path:
    """Data directory: $CC_DIR or ~/.curated-context."""
    env_dir = os.environ.get("CC_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".curated-context"


__all__ = [
    "PROJECT_ROOT",
    "ARGS_DIR",
    "CONFIG_PATH",
    "GLOBAL_STORE_ID",
    "default_data_dir",
]
