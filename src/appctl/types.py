"""Core data types for privileged app control."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import AppControlError, is_mode_loss


class ExecutionMode(str, Enum):
    """Privilege transport selection. Priority: ROOT > REMOTE > NONE."""

    ROOT = "root"
    REMOTE = "remote"
    NONE = "none"

    @property
    def display_name(self) -> str:
        return {
            ExecutionMode.ROOT: "Root",
            ExecutionMode.REMOTE: "Remote Service",
            ExecutionMode.NONE: "View Only",
        }[self]

    @property
    def can_execute_actions(self) -> bool:
        return self is not ExecutionMode.NONE

    @classmethod
    def parse(cls, value: str) -> ExecutionMode:
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"shizuku": "remote", "view_only": "none", "viewonly": "none"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Invalid execution mode: {value}. Must be one of {valid}") from None


class ActionKind(str, Enum):
    """Logical actions applied to a set of target packages."""

    FREEZE = "freeze"
    UNFREEZE = "unfreeze"
    FORCE_STOP = "force_stop"
    RESTRICT_BACKGROUND = "restrict_background"
    ALLOW_BACKGROUND = "allow_background"
    CLEAR_CACHE = "clear_cache"
    CLEAR_DATA = "clear_data"
    UNINSTALL = "uninstall"
    # Recorded in the action log only; never requested as a batch action.
    ROLLBACK = "rollback"

    @property
    def reversible(self) -> bool:
        return self in REVERSIBLE_ACTIONS

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def parse(cls, value: str) -> ActionKind:
        normalized = value.strip().lower().replace("-", "_")
        try:
            action = cls(normalized)
        except ValueError:
            valid = ", ".join(a.value for a in BATCH_ACTIONS)
            raise ValueError(f"Invalid action: {value}. Must be one of {valid}") from None
        if action is ActionKind.ROLLBACK:
            raise ValueError("rollback is not a batch action")
        return action


REVERSIBLE_ACTIONS = frozenset(
    {
        ActionKind.FREEZE,
        ActionKind.UNFREEZE,
        ActionKind.RESTRICT_BACKGROUND,
        ActionKind.ALLOW_BACKGROUND,
    }
)

BATCH_ACTIONS = tuple(a for a in ActionKind if a is not ActionKind.ROLLBACK)


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"  # policy-approved but execution failed
    SKIPPED = "skipped"  # rejected by policy, never attempted


@dataclass(frozen=True)
class CommandRequest:
    """A command string plus the package it targets, if any."""

    command: str
    target: str | None = None

    def __post_init__(self) -> None:
        if not self.command or not self.command.strip():
            raise ValueError("CommandRequest.command must be non-empty")


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one command: captured output or a typed failure."""

    command: str
    ok: bool
    output: str = ""
    error: AppControlError | None = None
    duration_s: float = 0.0

    @classmethod
    def success(cls, command: str, output: str, duration_s: float = 0.0) -> ExecutionResult:
        return cls(command=command, ok=True, output=output, duration_s=duration_s)

    @classmethod
    def failure(
        cls, command: str, error: AppControlError, duration_s: float = 0.0
    ) -> ExecutionResult:
        return cls(command=command, ok=False, error=error, duration_s=duration_s)

    @property
    def error_kind(self) -> str | None:
        return self.error.kind if self.error else None

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


@dataclass(frozen=True)
class AppActionResult:
    """Per-target outcome inside a batch."""

    package_name: str
    status: ActionStatus
    error_message: str | None = None
    error_kind: str | None = None


@dataclass
class BatchExecutionResult:
    """Aggregate outcome of one logical action over N targets. Derived, not persisted."""

    action: ActionKind
    results: list[AppActionResult] = field(default_factory=list)
    # Batch-level failure (e.g. SnapshotMissing for a rollback with nothing retained).
    error: AppControlError | None = None
    # Set when a target failed because the privilege mode went away mid-batch.
    mode_lost: AppControlError | None = None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.status is ActionStatus.SUCCESS)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if r.status is ActionStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.status is ActionStatus.SKIPPED)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def is_full_success(self) -> bool:
        """No failures and at least one success. A skip-only batch is not a success."""
        return self.error is None and self.failure_count == 0 and self.success_count > 0

    @property
    def has_skipped(self) -> bool:
        return self.skipped_count > 0

    def result_for(self, package_name: str) -> AppActionResult | None:
        return next((r for r in self.results if r.package_name == package_name), None)

    def summary(self) -> str:
        if self.error is not None:
            return self.error.message
        failed = [r for r in self.results if r.status is ActionStatus.FAILED]
        if not failed:
            return ""
        return "; ".join(f"{r.package_name}: {r.error_message or 'failed'}" for r in failed)

    def note_failure(self, error: AppControlError | None) -> None:
        if self.mode_lost is None and is_mode_loss(error):
            self.mode_lost = error

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action.value,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "full_success": self.is_full_success,
            "error": self.error.to_dict() if self.error else None,
            "mode_lost": self.mode_lost.to_dict() if self.mode_lost else None,
            "results": [
                {
                    "package": r.package_name,
                    "status": r.status.value,
                    "error": r.error_message,
                    "error_kind": r.error_kind,
                }
                for r in self.results
            ],
        }


class ModeLossAction(str, Enum):
    """Three-way choice surfaced when a believed-active mode stops working."""

    RETRY = "retry"
    SWITCH_MODE = "switch"
    CONTINUE_VIEW_ONLY = "view-only"


@dataclass(frozen=True)
class ModeStatus:
    """Availability of the persisted execution mode."""

    mode: ExecutionMode
    available: bool
    reason: str = ""
    previous_mode: ExecutionMode | None = None

    @classmethod
    def ok(cls, mode: ExecutionMode) -> ModeStatus:
        return cls(mode=mode, available=True)

    @classmethod
    def lost(cls, previous: ExecutionMode, reason: str) -> ModeStatus:
        return cls(mode=previous, available=False, reason=reason, previous_mode=previous)

    @property
    def is_lost(self) -> bool:
        return not self.available
