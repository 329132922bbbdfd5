"""Snapshot capture and rollback replay.

Only the newest snapshot is retained. State is always queried live through
the active transport, never taken from cached listings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from .commands import (
    package_listed,
    query_background_policy,
    query_disabled_packages,
    query_enabled_packages,
    query_wake_lock_policy,
    rollback_commands,
)
from .errors import (
    AppControlError,
    DeserializationFailed,
    ExecutionFailed,
    SnapshotMissing,
    StorageFailed,
)
from .gateway import CommandGateway
from .records import AppOpsMode, AppState, StateSnapshot
from .storage import atomic_write_text, read_json
from .telemetry import TelemetrySink
from .types import (
    ActionKind,
    ActionStatus,
    AppActionResult,
    BatchExecutionResult,
    ExecutionResult,
)

SNAPSHOT_FILE_NAME = "last_snapshot.json"


def _error_of(result: ExecutionResult) -> AppControlError:
    return result.error or ExecutionFailed(f"Command failed: {result.command}")


@dataclass
class CaptureResult:
    """Outcome of one capture: the saved snapshot and the targets that could not be read."""

    snapshot: StateSnapshot | None = None
    unreadable: dict[str, AppControlError] = field(default_factory=dict)
    # Set when the snapshot was read but could not be written.
    error: AppControlError | None = None


class SnapshotStore:
    """One durable record holding the single retained snapshot."""

    def __init__(self, path: Path, telemetry: TelemetrySink | None = None):
        self.path = Path(path)
        self.telemetry = telemetry or TelemetrySink.disabled()

    def load(self) -> StateSnapshot | None:
        """Retained snapshot, or None if absent or unreadable."""
        try:
            data = read_json(self.path)
            if data is None:
                return None
            return StateSnapshot.model_validate(data)
        except (DeserializationFailed, ValidationError) as e:
            self.telemetry.log(
                "snapshot", "record_corrupt", {"record": self.path.name, "error": str(e)[:400]}
            )
            return None

    def save(self, snapshot: StateSnapshot) -> None:
        atomic_write_text(self.path, snapshot.model_dump_json(indent=2))

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    def exists(self) -> bool:
        return self.load() is not None


class SnapshotEngine:
    """Captures pre-mutation state and replays its inverse."""

    def __init__(
        self,
        gateway: CommandGateway,
        store: SnapshotStore,
        telemetry: TelemetrySink | None = None,
        run_id: str = "snapshot",
    ):
        self.gateway = gateway
        self.store = store
        self.telemetry = telemetry or TelemetrySink.disabled()
        self.run_id = run_id

    def read_state(self, package_name: str) -> AppState | AppControlError:
        """Live state of one package, or the error that prevented reading it."""
        enabled_res = self.gateway.execute(query_enabled_packages(package_name))
        if not enabled_res.ok:
            return _error_of(enabled_res)
        if package_listed(enabled_res.output, package_name):
            enabled = True
        else:
            disabled_res = self.gateway.execute(query_disabled_packages(package_name))
            if not disabled_res.ok:
                return _error_of(disabled_res)
            if not package_listed(disabled_res.output, package_name):
                return ExecutionFailed(f"Package not installed: {package_name}")
            enabled = False

        bg_res = self.gateway.execute(query_background_policy(package_name))
        if not bg_res.ok:
            return _error_of(bg_res)
        wl_res = self.gateway.execute(query_wake_lock_policy(package_name))
        if not wl_res.ok:
            return _error_of(wl_res)

        return AppState(
            package_name=package_name,
            enabled=enabled,
            background_policy=AppOpsMode.from_output(bg_res.output),
            wake_lock_policy=AppOpsMode.from_output(wl_res.output),
        )

    def query_state(self, package_name: str) -> AppState | None:
        """Live state of one package, or None if it cannot be read (e.g. not installed)."""
        state = self.read_state(package_name)
        return state if isinstance(state, AppState) else None

    def capture(self, packages: Sequence[str]) -> CaptureResult:
        """Query every target and overwrite the retained snapshot.

        Nothing is written when no target could be read, so a failed capture
        never replaces a usable snapshot.
        """
        result = CaptureResult()
        states: list[AppState] = []
        for package_name in packages:
            state = self.read_state(package_name)
            if isinstance(state, AppState):
                states.append(state)
            else:
                result.unreadable[package_name] = state

        if not states:
            return result

        snapshot = StateSnapshot(states=states)
        try:
            self.store.save(snapshot)
        except OSError as e:
            result.error = StorageFailed(f"Cannot write snapshot: {e}")
            self.telemetry.log(
                self.run_id,
                "record_write_failed",
                {"record": self.store.path.name, "error": result.error.message},
            )
            return result

        result.snapshot = snapshot
        self.telemetry.log(
            self.run_id,
            "snapshot_captured",
            {
                "snapshot_id": snapshot.id,
                "packages": snapshot.package_names,
                "unreadable": sorted(result.unreadable),
            },
        )
        return result

    def rollback_available(self) -> bool:
        """Re-read from storage on every call."""
        return self.store.exists()

    def rollback(self) -> BatchExecutionResult:
        """Best-effort replay of the retained snapshot's inverse commands."""
        result = BatchExecutionResult(action=ActionKind.ROLLBACK)
        snapshot = self.store.load()
        if snapshot is None:
            result.error = SnapshotMissing("No snapshot available for rollback")
            return result

        for state in snapshot.states:
            res = self.gateway.execute_all(rollback_commands(state))
            if res.ok:
                result.results.append(AppActionResult(state.package_name, ActionStatus.SUCCESS))
            else:
                result.results.append(
                    AppActionResult(
                        state.package_name,
                        ActionStatus.FAILED,
                        error_message=res.error_message,
                        error_kind=res.error_kind,
                    )
                )
                result.note_failure(res.error)

        # A clean replay consumes the snapshot; failures keep it for a caller-initiated retry.
        if result.failure_count == 0:
            try:
                self.store.clear()
            except OSError as e:
                result.error = StorageFailed(f"Rollback applied but snapshot could not be removed: {e}")
                self.telemetry.log(
                    self.run_id,
                    "record_write_failed",
                    {"record": self.store.path.name, "error": result.error.message},
                )

        self.telemetry.log(
            self.run_id,
            "rollback_completed",
            {"snapshot_id": snapshot.id, **result.to_dict()},
        )
        return result
