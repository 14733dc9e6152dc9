"""ESC run counters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any


_REQUIRED_COUNTERS: tuple[str, ...] = (
    "harvest_ticks_total",
    "analysis_ticks_total",
    "submit_attempts_total",
    "submit_success_total",
    "submit_error_total",
    "busy_retries_total",
    "abandoned_total",
    "holder_query_error_total",
    "evaluations_total",
    "evaluation_error_total",
    "parameter_changes_total",
    "analysis_events_total",
    "update_events_total",
)


@dataclass
class EscRunMetrics:
    instance_key: str
    counters: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not str(self.instance_key or "").strip():
            raise ValueError("instance_key is required")
        for key in _REQUIRED_COUNTERS:
            self.counters.setdefault(key, 0)

    def bump(self, key: str, delta: int = 1) -> None:
        if key not in self.counters:
            raise ValueError(f"unsupported metric counter: {key}")
        self.counters[key] = int(self.counters.get(key, 0)) + int(delta)

    def snapshot(self) -> dict[str, Any]:
        return {
            "generated_at_utc": datetime.now(tz=timezone.utc).isoformat(),
            "instance_key": self.instance_key,
            "metrics": dict(self.counters),
        }

    def export(self, path: Path) -> dict[str, Any]:
        payload = self.snapshot()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, sort_keys=True, ensure_ascii=True, indent=2) + "\n", encoding="utf-8")
        return payload
