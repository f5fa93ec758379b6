"""Tests for curator/config.py and the shipped args/curator.yaml"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from curator import CONFIG_PATH, default_data_dir
from curator.config import CuratorConfig, InferenceConfig, PathsConfig, StoreConfig, load_config


class TestDefaults:
    """Defaults mirror the documented ceilings."""

    def test_section_defaults(self):
        config = CuratorConfig()

        assert config.store.max_entries_project == 200
        assert config.store.max_entries_global == 100
        assert config.inference.max_calls_per_hour == 30
        assert config.inference.max_calls_per_project == 10
        assert config.inference.cooldown_seconds == 60
        assert config.inference.min_confidence == 0.7
        assert config.triage.window_size == 10
        assert config.consolidation.max_entries == 100
        assert config.daemon.poll_interval_seconds == 30

    def test_shipped_yaml_matches_defaults(self):
        assert load_config(CONFIG_PATH).model_dump() == CuratorConfig().model_dump()


class TestPaths:
    """Derived locations under the data directory."""

    def test_cc_dir_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CC_DIR", str(tmp_path))
        assert default_data_dir() == tmp_path
        assert CuratorConfig().data_dir == tmp_path

    def test_home_default(self, monkeypatch):
        monkeypatch.delenv("CC_DIR", raising=False)
        assert default_data_dir() == Path.home() / ".curated-context"

    def test_derived_paths(self, tmp_path):
        config = CuratorConfig(paths=PathsConfig(data_dir=str(tmp_path)))

        assert config.sessions_dir == tmp_path / "sessions"
        assert config.store_dir == tmp_path / "store"
        assert config.settings_path == tmp_path / "config.json"
        assert config.global_decision_log == tmp_path / "decisions.log"
        assert config.lock_path == tmp_path / "pipeline.lock"
        assert config.log_path == tmp_path / "daemon.log"
        assert config.project_decision_log("/p") == Path("/p/.claude/decisions.log")


class TestLoadConfig:
    """load_config never raises."""

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_config(tmp_path / "nope.yaml") == CuratorConfig()

    def test_partial_override(self, tmp_path):
        path = tmp_path / "curator.yaml"
        path.write_text("inference:\n  max_calls_per_hour: 5\nstore:\n  max_entries_project: 50\n")

        config = load_config(path)

        assert config.inference.max_calls_per_hour == 5
        assert config.inference.max_calls_per_project == 10
        assert config.store.max_entries_project == 50

    def test_invalid_values_fall_back(self, tmp_path):
        path = tmp_path / "curator.yaml"
        path.write_text("store:\n  max_entries_project: -1\n")

        assert load_config(path) == CuratorConfig()

    def test_malformed_yaml_falls_back(self, tmp_path):
        path = tmp_path / "curator.yaml"
        path.write_text("store: [unclosed\n")

        assert load_config(path) == CuratorConfig()


class TestValidation:

    def test_reinforcement_ceiling_below_one(self):
        with pytest.raises(ValidationError):
            StoreConfig(reinforcement_ceiling=1.0)

    def test_confidence_floor_range(self):
        with pytest.raises(ValidationError):
            InferenceConfig(min_confidence=1.5)
