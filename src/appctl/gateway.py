"""Single entry point from callers to the active transport."""

from __future__ import annotations

from typing import Sequence

from .errors import TransportUnavailable
from .policy import CommandPolicy, PolicyVerdict
from .telemetry import TelemetrySink, truncate_output
from .transports import Transport
from .transports.base import VIEW_ONLY_MESSAGE
from .types import CommandRequest, ExecutionMode, ExecutionResult


class CommandGateway:
    """Validates each request against the full policy, then hands it to the transport.

    In view-only mode requests are answered with TransportUnavailable before
    any policy check runs.
    """

    def __init__(
        self,
        transport: Transport,
        policy: CommandPolicy,
        telemetry: TelemetrySink | None = None,
        run_id: str = "gateway",
    ):
        self.transport = transport
        self.policy = policy
        self.telemetry = telemetry or TelemetrySink.disabled()
        self.run_id = run_id

    @property
    def mode(self) -> ExecutionMode:
        return self.transport.mode

    @property
    def can_execute(self) -> bool:
        return self.transport.mode.can_execute_actions

    def validate(self, request: CommandRequest) -> PolicyVerdict:
        return self.policy.validate(request)

    def validate_all(self, requests: Sequence[CommandRequest]) -> PolicyVerdict:
        return self.policy.validate_all(requests)

    def _unavailable(self, command: str) -> ExecutionResult:
        return ExecutionResult.failure(
            command, TransportUnavailable(VIEW_ONLY_MESSAGE)
        )

    def execute(self, request: CommandRequest) -> ExecutionResult:
        if not self.can_execute:
            return self._unavailable(request.command)

        verdict = self.policy.validate(request)
        if not verdict.allowed:
            self._log_rejected(request, verdict)
            return ExecutionResult.failure(request.command, verdict.to_error())

        result = self.transport.execute(request.command)
        self._log_executed(result, request.target)
        return result

    def execute_all(self, requests: Sequence[CommandRequest]) -> ExecutionResult:
        """Run a target's commands as one best-effort transport batch."""
        joined = "\n".join(r.command for r in requests)
        if not self.can_execute:
            return self._unavailable(joined)

        for request in requests:
            verdict = self.policy.validate(request)
            if not verdict.allowed:
                self._log_rejected(request, verdict)
                return ExecutionResult.failure(joined, verdict.to_error())

        result = self.transport.execute_batch([r.command for r in requests])
        self._log_executed(result, requests[0].target if requests else None)
        return result

    def _log_rejected(self, request: CommandRequest, verdict: PolicyVerdict) -> None:
        self.telemetry.log(
            self.run_id,
            "command_rejected",
            {
                "command": request.command,
                "target": request.target,
                "check": verdict.check,
                "reason": verdict.reason,
            },
        )

    def _log_executed(self, result: ExecutionResult, target: str | None) -> None:
        self.telemetry.log(
            self.run_id,
            "command_executed",
            {
                "command": result.command,
                "target": target,
                "mode": self.mode.value,
                "ok": result.ok,
                "error_kind": result.error_kind,
                "error": result.error_message,
                "output_head": truncate_output(result.output),
                "duration_s": result.duration_s,
            },
        )
