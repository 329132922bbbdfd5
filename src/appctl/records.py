"""Durable records: state snapshots and action log entries.

These are serialized to JSON on disk, so they are pydantic models; a record
that fails validation on read is treated as corrupt.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .types import ActionKind


class AppOpsMode(str, Enum):
    """Mode of one app-operation toggle."""

    ALLOW = "allow"
    IGNORE = "ignore"
    DENY = "deny"

    @classmethod
    def from_output(cls, output: str) -> AppOpsMode:
        """Parse `appops get` output. Anything not ignore/deny reads as allow."""
        lowered = output.lower()
        if "ignore" in lowered:
            return cls.IGNORE
        if "deny" in lowered:
            return cls.DENY
        return cls.ALLOW


def _new_id() -> str:
    return uuid.uuid4().hex


class AppState(BaseModel):
    """Queried state of one package, captured before a reversible action."""

    model_config = ConfigDict(frozen=True)

    package_name: str
    enabled: bool
    background_policy: AppOpsMode
    wake_lock_policy: AppOpsMode


class StateSnapshot(BaseModel):
    """Pre-mutation state of every target in one batch."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    states: list[AppState] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)

    @property
    def package_names(self) -> list[str]:
        return [s.package_name for s in self.states]


class ActionLogEntry(BaseModel):
    """One batch outcome. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    action: ActionKind
    packages: list[str]
    success: bool
    error_message: str | None = None
    timestamp: float = Field(default_factory=time.time)
