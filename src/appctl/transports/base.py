"""Transport contract shared by both privilege backends."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Iterable

from ..errors import AppControlError, ExecutionFailed, PolicyRejected, TransportUnavailable
from ..policy import CommandPolicy
from ..types import ExecutionMode, ExecutionResult

DEFAULT_TIMEOUT_S = 30.0
VIEW_ONLY_MESSAGE = "No privilege backend selected (view-only mode)"


class Transport(ABC):
    """
    Channel executing OS commands under elevated privilege.

    Key properties:
    - One in-flight command per transport; the privileged session is shared and stateful.
    - Every command passes the command policy here too, whichever backend is active.
    - Calls return ExecutionResult values; backend errors never escape.
    """

    mode: ExecutionMode = ExecutionMode.NONE

    def __init__(self, *, timeout_s: float = DEFAULT_TIMEOUT_S, policy: CommandPolicy | None = None):
        self.timeout_s = float(timeout_s)
        self.policy = policy or CommandPolicy()
        self._lock = threading.Lock()

    @abstractmethod
    def is_granted(self) -> bool:
        """Cheap, non-blocking check that privilege is currently held."""

    @abstractmethod
    def request_access(self) -> bool:
        """Actively confirm privilege now. May block on an OS consent prompt."""

    def availability_error(self) -> AppControlError | None:
        """Why the transport is unusable right now, or None if it is usable."""
        if self.is_granted():
            return None
        return TransportUnavailable(f"{self.mode.display_name} transport is not available")

    @abstractmethod
    def _run(self, command: str, timeout_s: float) -> str:
        """Run one command and return its output. Raises AppControlError."""

    def execute(self, command: str) -> ExecutionResult:
        verdict = self.policy.check_command(command)
        if not verdict.allowed:
            return ExecutionResult.failure(command, verdict.to_error())
        with self._lock:
            return self._execute_locked(command)

    def execute_batch(self, commands: Iterable[str]) -> ExecutionResult:
        """Best-effort: every command is attempted even if earlier ones failed.

        Fails without attempting anything only when a command is rejected by policy.
        """
        commands = list(commands)
        joined = "\n".join(commands)
        rejected = [c for c in commands if not self.policy.check_command(c).allowed]
        if rejected:
            return ExecutionResult.failure(
                joined,
                PolicyRejected(f"Blocked commands: {', '.join(rejected)}", check="batch"),
            )

        t0 = time.time()
        with self._lock:
            results = [self._execute_locked(c) for c in commands]
        duration = round(time.time() - t0, 3)

        failed = [r for r in results if not r.ok]
        if not failed:
            return ExecutionResult.success(joined, "\n".join(r.output for r in results), duration)

        # Report the first failure; its type tells the caller how to remediate.
        error = failed[0].error or ExecutionFailed(f"Command failed: {failed[0].command}")
        return ExecutionResult.failure(joined, error, duration)

    def execute_if_idle(self, command: str) -> ExecutionResult | None:
        """Low-priority path: returns None at once if not granted or a command is in flight."""
        if not self.is_granted():
            return None
        if not self.policy.check_command(command).allowed:
            return None
        if not self._lock.acquire(blocking=False):
            return None
        try:
            return self._execute_locked(command)
        finally:
            self._lock.release()

    def _execute_locked(self, command: str) -> ExecutionResult:
        t0 = time.time()
        try:
            output = self._run(command, self.timeout_s)
        except AppControlError as e:
            return ExecutionResult.failure(command, e, round(time.time() - t0, 3))
        return ExecutionResult.success(command, output, round(time.time() - t0, 3))

    def close(self) -> None:
        return None


class NullTransport(Transport):
    """View-only mode: no backend, every command is unavailable."""

    mode = ExecutionMode.NONE

    def is_granted(self) -> bool:
        return False

    def request_access(self) -> bool:
        return False

    def availability_error(self) -> AppControlError | None:
        return TransportUnavailable(VIEW_ONLY_MESSAGE)

    def execute(self, command: str) -> ExecutionResult:
        return ExecutionResult.failure(command, TransportUnavailable(VIEW_ONLY_MESSAGE))

    def execute_batch(self, commands: Iterable[str]) -> ExecutionResult:
        return self.execute("\n".join(commands))

    def _run(self, command: str, timeout_s: float) -> str:
        raise TransportUnavailable(VIEW_ONLY_MESSAGE)
