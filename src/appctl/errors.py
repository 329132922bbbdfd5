"""Error taxonomy for privileged command execution.

Errors are raised inside transports and stores, and converted into result
values at the Transport/Orchestrator seam so callers never see a raise.
"""

from __future__ import annotations


class AppControlError(Exception):
    """Base class for every failure this package reports."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class PolicyRejected(AppControlError):
    """Command or target blocked before submission."""

    kind = "policy_rejected"

    def __init__(self, message: str = "", check: str = ""):
        super().__init__(message)
        self.check = check


class TransportUnavailable(AppControlError):
    """No privilege backend is ready, or its channel is unreachable."""

    kind = "transport_unavailable"


class TransportDenied(AppControlError):
    """Channel is reachable but the permission is absent or revoked."""

    kind = "transport_denied"


class ExecutionFailed(AppControlError):
    """Command ran and reported a non-zero or native failure."""

    kind = "execution_failed"

    def __init__(self, message: str = "", exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class CommandTimeout(AppControlError):
    kind = "timeout"


class SnapshotMissing(AppControlError):
    kind = "snapshot_missing"


class DeserializationFailed(AppControlError):
    kind = "deserialization_failed"


class StorageFailed(AppControlError):
    """A durable record (snapshot, log) could not be written."""

    kind = "storage_failed"


# Failures that mean the active privilege mode was lost, not that a command failed.
MODE_LOSS_ERRORS = (TransportUnavailable, TransportDenied)


def is_mode_loss(error: BaseException | None) -> bool:
    return isinstance(error, MODE_LOSS_ERRORS)
