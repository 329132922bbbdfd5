"""Unit tests for atomic record storage and telemetry."""

import json
import os
import time

import pytest

from appctl.errors import DeserializationFailed
from appctl.storage import atomic_write_json, atomic_write_text, read_json
from appctl.telemetry import TelemetrySink, prune_telemetry_file, read_events, truncate_output


class TestAtomicWrites:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "record.json"
        atomic_write_json(path, {"mode": "root"})
        assert read_json(path) == {"mode": "root"}

    def test_replaces_existing(self, tmp_path):
        path = tmp_path / "record.json"
        atomic_write_text(path, "old")
        atomic_write_text(path, '"new"')
        assert read_json(path) == "new"

    def test_no_temp_files_left(self, tmp_path):
        atomic_write_json(tmp_path / "record.json", [1, 2])
        assert [p.name for p in tmp_path.iterdir()] == ["record.json"]

    def test_missing_file_is_none(self, tmp_path):
        assert read_json(tmp_path / "absent.json") is None

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "record.json"
        path.write_text("{not json")
        with pytest.raises(DeserializationFailed):
            read_json(path)


class TestTelemetry:
    def test_log_and_read(self, tmp_path):
        sink = TelemetrySink(enabled=True, path=tmp_path / "t.jsonl")
        sink.log("run1", "command_executed", {"ok": True})
        events = read_events(sink.path)
        assert len(events) == 1
        assert events[0]["type"] == "command_executed"
        assert events[0]["data"] == {"ok": True}

    def test_disabled_sink_writes_nothing(self, tmp_path):
        sink = TelemetrySink(enabled=False, path=tmp_path / "t.jsonl")
        sink.log("run1", "x", {})
        assert not sink.path.exists()

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "t.jsonl"
        path.write_text(json.dumps({"type": "a"}) + "\nnot json\n\n")
        assert [e["type"] for e in read_events(path)] == ["a"]

    def test_prune_old_file(self, tmp_path):
        path = tmp_path / "t.jsonl"
        path.write_text("{}\n")
        old = time.time() - 40 * 86400
        os.utime(path, (old, old))
        prune_telemetry_file(path, retention_days=30)
        assert not path.exists()

    def test_prune_keeps_recent_file(self, tmp_path):
        path = tmp_path / "t.jsonl"
        path.write_text("{}\n")
        prune_telemetry_file(path, retention_days=30)
        assert path.exists()

    def test_truncate_output(self):
        assert truncate_output("") == ""
        assert truncate_output("x" * 500).endswith("...(truncated)")
        assert truncate_output("  short \n") == "short"
