"""Batch orchestrator: one logical action over N target packages.

The lifecycle of a batch:
1. Generate the concrete commands for every target
2. Validate all of them; a rejected target is SKIPPED, the rest proceed
3. For reversible actions, snapshot every remaining target before touching any;
   a target whose state cannot be read is FAILED and never mutated
4. Execute targets one at a time against the single active transport
5. Record exactly one action log entry for the batch
"""

from __future__ import annotations

import uuid
from typing import Sequence

from .action_log import ActionLog
from .commands import build_commands
from .errors import AppControlError, SnapshotMissing, StorageFailed
from .gateway import CommandGateway
from .records import ActionLogEntry
from .snapshots import SnapshotEngine
from .telemetry import TelemetrySink
from .types import (
    ActionKind,
    ActionStatus,
    AppActionResult,
    BatchExecutionResult,
    CommandRequest,
)


def _dedupe(packages: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for p in packages:
        p = p.strip()
        if p and p not in seen:
            seen.add(p)
            out.append(p)
    return out


class BatchOrchestrator:
    """Applies actions best-effort and keeps the snapshot and log in step."""

    def __init__(
        self,
        gateway: CommandGateway,
        snapshots: SnapshotEngine,
        action_log: ActionLog,
        telemetry: TelemetrySink | None = None,
    ):
        self.gateway = gateway
        self.snapshots = snapshots
        self.action_log = action_log
        self.telemetry = telemetry or TelemetrySink.disabled()

    def run(self, action: ActionKind, packages: Sequence[str]) -> BatchExecutionResult:
        if action is ActionKind.ROLLBACK:
            raise ValueError("Use rollback() to replay a snapshot")

        run_id = uuid.uuid4().hex[:12]
        targets = _dedupe(packages)
        result = BatchExecutionResult(action=action)

        # Validate everything before anything is sent.
        planned: dict[str, list[CommandRequest]] = {}
        skipped: dict[str, AppActionResult] = {}
        for package_name in targets:
            requests = build_commands(action, package_name)
            verdict = self.gateway.validate_all(requests)
            if verdict.allowed:
                planned[package_name] = requests
            else:
                skipped[package_name] = AppActionResult(
                    package_name,
                    ActionStatus.SKIPPED,
                    error_message=verdict.reason,
                    error_kind="policy_rejected",
                )

        # Targets whose pre-mutation state could not be captured are never mutated.
        uncaptured: dict[str, AppControlError] = {}
        if action.reversible and planned and self.gateway.can_execute:
            capture = self.snapshots.capture(list(planned))
            uncaptured.update(capture.unreadable)
            if capture.error is not None:
                result.error = capture.error
                for package_name in planned:
                    uncaptured.setdefault(package_name, capture.error)

        for package_name in targets:
            if package_name in skipped:
                result.results.append(skipped[package_name])
                continue
            if package_name in uncaptured:
                error = uncaptured[package_name]
                result.results.append(
                    AppActionResult(
                        package_name,
                        ActionStatus.FAILED,
                        error_message=f"State could not be captured: {error.message}",
                        error_kind=error.kind,
                    )
                )
                result.note_failure(error)
                continue
            res = self.gateway.execute_all(planned[package_name])
            if res.ok:
                result.results.append(AppActionResult(package_name, ActionStatus.SUCCESS))
            else:
                result.results.append(
                    AppActionResult(
                        package_name,
                        ActionStatus.FAILED,
                        error_message=res.error_message,
                        error_kind=res.error_kind,
                    )
                )
                result.note_failure(res.error)

        self._record(result, targets)
        self.telemetry.log(run_id, "batch_completed", {"mode": self.gateway.mode.value, **result.to_dict()})
        return result

    def rollback(self) -> BatchExecutionResult:
        """Replay the retained snapshot. Logged like any other batch."""
        result = self.snapshots.rollback()
        if not isinstance(result.error, SnapshotMissing):
            self._record(result, [r.package_name for r in result.results])
        return result

    def rollback_available(self) -> bool:
        return self.snapshots.rollback_available()

    def _record(self, result: BatchExecutionResult, packages: list[str]) -> None:
        entry = ActionLogEntry(
            action=result.action,
            packages=packages,
            success=result.is_full_success,
            error_message=result.summary() or None,
        )
        try:
            self.action_log.append(entry)
        except OSError as e:
            error = StorageFailed(f"Cannot write action log: {e}")
            if result.error is None:
                result.error = error
            self.telemetry.log(
                "history",
                "record_write_failed",
                {"record": self.action_log.path.name, "error": error.message},
            )
