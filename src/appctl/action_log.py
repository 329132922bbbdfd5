"""Bounded, durable, newest-first history of batch outcomes."""

from __future__ import annotations

import threading
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from .errors import DeserializationFailed
from .records import ActionLogEntry
from .snapshots import SnapshotStore
from .storage import atomic_write_text, read_json
from .telemetry import TelemetrySink

HISTORY_FILE_NAME = "action_history.json"
MAX_ENTRIES = 100

_ENTRIES = TypeAdapter(list[ActionLogEntry])


class ActionLog:
    """
    Append-only action history.

    - Newest entry first; inserting past MAX_ENTRIES evicts the oldest.
    - An unreadable store reads as empty history.
    - Clearing the log also deletes the retained snapshot.
    """

    def __init__(
        self,
        path: Path,
        snapshot_store: SnapshotStore,
        telemetry: TelemetrySink | None = None,
        max_entries: int = MAX_ENTRIES,
    ):
        self.path = Path(path)
        self.snapshot_store = snapshot_store
        self.telemetry = telemetry or TelemetrySink.disabled()
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def _load(self) -> list[ActionLogEntry]:
        try:
            data = read_json(self.path)
            if data is None:
                return []
            return _ENTRIES.validate_python(data)
        except (DeserializationFailed, ValidationError) as e:
            self.telemetry.log(
                "history", "record_corrupt", {"record": self.path.name, "error": str(e)[:400]}
            )
            return []

    def _save(self, entries: list[ActionLogEntry]) -> None:
        atomic_write_text(self.path, _ENTRIES.dump_json(entries, indent=2).decode("utf-8"))

    def append(self, entry: ActionLogEntry) -> None:
        with self._lock:
            entries = self._load()
            entries.insert(0, entry)
            del entries[self.max_entries:]
            self._save(entries)

    def entries(self) -> list[ActionLogEntry]:
        with self._lock:
            return self._load()

    def __len__(self) -> int:
        return len(self.entries())

    def clear(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)
            self.snapshot_store.clear()
        self.telemetry.log("history", "history_cleared", {})
