from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ConfigDict

from curator import CONFIG_PATH, default_data_dir

logger = logging.getLogger(__name__)


# =============================================================================
# CuratorConfig (args/curator.yaml)
# =============================================================================

class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    data_dir: Optional[str] = None
    decision_log_name: str = Field(default="decisions.log")

    def resolve_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return default_data_dir()


class QueueConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    sessions_subdir: str = Field(default="sessions")
    max_transcript_chars: int = Field(default=50_000, ge=1)


class TriageConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    window_size: int = Field(default=10, ge=1)
    min_decision_score: int = Field(default=2, ge=1)


class InferenceConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    enabled: bool = Field(default=True)
    model: str = Field(default="claude-sonnet-4-5")
    max_tokens: int = Field(default=2048, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_calls_per_hour: int = Field(default=30, ge=0)
    max_calls_per_project: int = Field(default=10, ge=0)
    cooldown_seconds: float = Field(default=60.0, ge=0)
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    max_project_memories: int = Field(default=10, ge=0)
    max_global_memories: int = Field(default=5, ge=0)


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_entries_project: int = Field(default=200, ge=1)
    max_entries_global: int = Field(default=100, ge=1)
    reinforcement_step: float = Field(default=0.05, ge=0.0, le=1.0)
    reinforcement_ceiling: float = Field(default=0.85, ge=0.0, lt=1.0)


class ConsolidationConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    enabled: bool = Field(default=True)
    max_entries: int = Field(default=100, ge=1)
    stale_days: float = Field(default=7.0, ge=0)
    stale_min_entries: int = Field(default=20, ge=0)
    min_entries: int = Field(default=5, ge=1)
    default_confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class DaemonConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    lock_name: str = Field(default="pipeline.lock")
    log_name: str = Field(default="daemon.log")


class CuratorConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    paths: PathsConfig = Field(default_factory=PathsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    triage: TriageConfig = Field(default_factory=TriageConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)

    @property
    def data_dir(self) -> Path:
        return self.paths.resolve_data_dir()

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / self.queue.sessions_subdir

    @property
    def store_dir(self) -> Path:
        return self.data_dir / "store"

    @property
    def settings_path(self) -> Path:
        """Shared settings document that carries the usage counter."""
        return self.data_dir / "config.json"

    @property
    def global_decision_log(self) -> Path:
        return self.data_dir / self.paths.decision_log_name

    @property
    def lock_path(self) -> Path:
        return self.data_dir / self.daemon.lock_name

    @property
    def log_path(self) -> Path:
        return self.data_dir / self.daemon.log_name

    def project_decision_log(self, project_root: str | Path) -> Path:
        return Path(project_root) / ".claude" / self.paths.decision_log_name


def load_config(path: Path | None = None) -> CuratorConfig:
    yaml_path = path or CONFIG_PATH

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return CuratorConfig.model_validate(raw)
    except Exception as e:
        logger.warning(f"Config validation failed for {yaml_path}: {e}, using defaults")
        return CuratorConfig()
