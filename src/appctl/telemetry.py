"""Telemetry logging for appctl.

Events are appended to a JSONL file; telemetry must never break a caller.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

MAX_OUTPUT_CHARS = 400


@dataclass(frozen=True)
class TelemetrySink:
    """Thin wrapper around JSONL telemetry.

    Event schema:
      {"timestamp": <float>, "run_id": <str>, "type": <str>, "data": <object>}
    """

    enabled: bool
    path: Path

    def log(self, run_id: str, event_type: str, data: dict[str, Any]) -> None:
        if not self.enabled:
            return

        entry = {
            "timestamp": time.time(),
            "run_id": run_id,
            "type": event_type,
            "data": data,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError:
            return

    @classmethod
    def disabled(cls) -> TelemetrySink:
        return cls(enabled=False, path=Path("/dev/null"))


def truncate_output(s: str, *, max_len: int = MAX_OUTPUT_CHARS) -> str:
    """Trim command output before it is recorded."""
    if not s:
        return ""
    out = s.strip()
    if len(out) > max_len:
        out = out[:max_len] + "...(truncated)"
    return out


def prune_telemetry_file(telemetry_path: Path, retention_days: int) -> None:
    """Delete telemetry file if it is older than retention_days (mtime-based)."""
    if retention_days <= 0:
        return
    try:
        if not telemetry_path.exists():
            return
        cutoff = time.time() - (retention_days * 86400)
        if telemetry_path.stat().st_mtime < cutoff:
            telemetry_path.unlink(missing_ok=True)
    except OSError:
        return


def read_events(telemetry_path: Path) -> list[dict[str, Any]]:
    """Read telemetry events, skipping malformed lines."""
    if not telemetry_path.exists():
        return []
    events: list[dict[str, Any]] = []
    with open(telemetry_path, encoding="utf-8") as f:
        for ln in f:
            ln = ln.strip()
            if not ln:
                continue
            try:
                events.append(json.loads(ln))
            except json.JSONDecodeError:
                continue
    return events
