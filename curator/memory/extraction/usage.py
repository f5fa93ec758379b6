"""
Inference Usage Counter

Rate-limit state for the inference tier. The counter is a plain value: the
gateway checks and updates the instance it is handed, and the caller owns
loading it from and saving it to the shared settings document
(``<data_dir>/config.json``, field ``apiUsage``).

Three independent ceilings gate every call:
  hourly      - total calls within the current hour window
  per-project - calls for one project within the current hour window
  cooldown    - minimum interval since the last call for any project

Usage:
    from curator.memory.extraction.usage import load_usage, save_usage

    usage = load_usage(config.settings_path)
    outcome = await gateway.run(messages, existing, project_root, usage)
    save_usage(config.settings_path, usage)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from curator.memory.models import now_ms

logger = logging.getLogger(__name__)

HOUR_MS = 3600_000
USAGE_FIELD = "apiUsage"


@dataclass
class RateLimits:
    max_calls_per_hour: int = 30
    max_calls_per_project: int = 10
    cooldown_ms: int = 60_000


@dataclass
class UsageCounter:
    """Calls made in the current hour window. All times are epoch milliseconds."""
    calls_this_hour: int = 0
    hour_start: int = field(default_factory=now_ms)
    last_call_time: int = 0
    calls_by_project: dict[str, int] = field(default_factory=dict)

    def refresh(self, now: int | None = None) -> bool:
        """Start a new hour window if the current one has elapsed. Returns True on reset."""
        now = now_ms() if now is None else now
        if now - self.hour_start > HOUR_MS:
            self.calls_this_hour = 0
            self.hour_start = now
            self.calls_by_project = {}
            return True
        return False

    def refusal_reason(self, project_id: str, limits: RateLimits, now: int | None = None) -> str | None:
        """
        Check all ceilings for a prospective call.

        Returns:
            None if the call may proceed, otherwise a short reason string
        """
        now = now_ms() if now is None else now
        self.refresh(now)

        if self.calls_this_hour >= limits.max_calls_per_hour:
            return f"hourly limit reached ({self.calls_this_hour}/{limits.max_calls_per_hour})"

        project_calls = self.calls_by_project.get(project_id, 0)
        if project_calls >= limits.max_calls_per_project:
            return f"project limit reached ({project_calls}/{limits.max_calls_per_project})"

        if self.last_call_time and now - self.last_call_time < limits.cooldown_ms:
            remaining = (limits.cooldown_ms - (now - self.last_call_time)) / 1000
            return f"cooldown active ({remaining:.0f}s remaining)"

        return None

    def can_call(self, project_id: str, limits: RateLimits, now: int | None = None) -> bool:
        return self.refusal_reason(project_id, limits, now) is None

    def record_call(self, project_id: str, now: int | None = None) -> None:
        now = now_ms() if now is None else now
        self.refresh(now)
        self.calls_this_hour += 1
        self.last_call_time = now
        self.calls_by_project[project_id] = self.calls_by_project.get(project_id, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "callsThisHour": self.calls_this_hour,
            "hourStart": self.hour_start,
            "lastCallTime": self.last_call_time,
            "callsByProject": dict(self.calls_by_project),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageCounter:
        by_project = data.get("callsByProject") or {}
        return cls(
            calls_this_hour=int(data.get("callsThisHour", 0)),
            hour_start=int(data.get("hourStart", now_ms())),
            last_call_time=int(data.get("lastCallTime", 0)),
            calls_by_project={str(k): int(v) for k, v in by_project.items()},
        )


def _read_settings(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Settings document {path} unreadable, starting fresh: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def load_usage(settings_path: str | Path) -> UsageCounter:
    """Read the counter from the settings document; missing or corrupt yields a fresh one."""
    raw = _read_settings(Path(settings_path)).get(USAGE_FIELD)
    if not isinstance(raw, dict):
        return UsageCounter()
    try:
        return UsageCounter.from_dict(raw)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Discarding malformed usage counter: {e}")
        return UsageCounter()


def save_usage(settings_path: str | Path, usage: UsageCounter) -> None:
    """Write the counter back, preserving every other field of the settings document."""
    path = Path(settings_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    settings = _read_settings(path)
    settings[USAGE_FIELD] = usage.to_dict()

    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(settings, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)
