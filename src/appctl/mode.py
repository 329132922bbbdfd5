"""Execution mode resolution, persistence and loss handling.

A persisted mode is an explicit user choice and is trusted optimistically at
resolve time; real privilege is re-verified lazily when the transport is
first used, because verification may be slow or raise an OS consent prompt.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from .errors import DeserializationFailed
from .storage import atomic_write_json, read_json
from .telemetry import TelemetrySink
from .transports import Transport
from .types import ExecutionMode, ModeLossAction, ModeStatus

MODE_FILE_NAME = "mode.json"

# Probe order when nothing is persisted.
PROBE_ORDER = (ExecutionMode.ROOT, ExecutionMode.REMOTE)

TransportFactory = Callable[[ExecutionMode], Transport]


class ModeStore:
    """One durable record holding the current mode selection."""

    def __init__(self, path: Path, telemetry: TelemetrySink | None = None):
        self.path = Path(path)
        self.telemetry = telemetry or TelemetrySink.disabled()

    def load(self) -> ExecutionMode | None:
        try:
            data = read_json(self.path)
        except DeserializationFailed as e:
            self.telemetry.log("mode", "record_corrupt", {"record": self.path.name, "error": e.message})
            return None
        if not isinstance(data, dict):
            return None
        try:
            return ExecutionMode.parse(str(data.get("mode", "")))
        except ValueError:
            return None

    def save(self, mode: ExecutionMode) -> None:
        atomic_write_json(self.path, {"mode": mode.value, "updated_at": time.time()})
        self.telemetry.log("mode", "mode_persisted", {"mode": mode.value})

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class ModeResolver:
    """Decides which privilege transport is active.

    Transports are created once per mode and cached, so the session opened
    by a probe is the one later commands use.
    """

    def __init__(
        self,
        store: ModeStore,
        factory: TransportFactory,
        telemetry: TelemetrySink | None = None,
    ):
        self.store = store
        self.factory = factory
        self.telemetry = telemetry or TelemetrySink.disabled()
        self._transports: dict[ExecutionMode, Transport] = {}

    def transport_for(self, mode: ExecutionMode) -> Transport:
        if mode not in self._transports:
            self._transports[mode] = self.factory(mode)
        return self._transports[mode]

    def resolve(self) -> ExecutionMode:
        """Persisted mode if any; otherwise probe, persisting only a found backend."""
        saved = self.store.load()
        if saved is not None:
            self.telemetry.log("mode", "mode_resolved", {"mode": saved.value, "source": "persisted"})
            return saved

        mode = self.probe()
        if mode is not ExecutionMode.NONE:
            self.store.save(mode)
        self.telemetry.log("mode", "mode_resolved", {"mode": mode.value, "source": "probe"})
        return mode

    def probe(self) -> ExecutionMode:
        """First available backend in priority order, or NONE."""
        root = self.transport_for(ExecutionMode.ROOT)
        if root.request_access():
            return ExecutionMode.ROOT
        remote = self.transport_for(ExecutionMode.REMOTE)
        if remote.is_granted():
            return ExecutionMode.REMOTE
        return ExecutionMode.NONE

    def select(self, mode: ExecutionMode) -> ModeStatus:
        """Explicit user choice: confirm the mode now and persist it only if it works."""
        if mode is ExecutionMode.NONE:
            self.store.save(mode)
            return ModeStatus.ok(mode)

        transport = self.transport_for(mode)
        if not transport.request_access():
            error = transport.availability_error()
            reason = error.message if error else f"{mode.display_name} access denied or not available"
            return ModeStatus.lost(mode, reason)
        self.store.save(mode)
        return ModeStatus.ok(mode)

    def is_granted(self, mode: ExecutionMode) -> bool:
        """Cheap check, safe to call often."""
        if mode is ExecutionMode.NONE:
            return True
        return self.transport_for(mode).is_granted()

    def request_now(self, mode: ExecutionMode) -> bool:
        """Active check; may block on an OS prompt. Call only on explicit user action."""
        if mode is ExecutionMode.NONE:
            return True
        return self.transport_for(mode).request_access()

    def close(self) -> None:
        for transport in self._transports.values():
            transport.close()
        self._transports.clear()


class ModeWatcher:
    """Detects loss of the persisted mode and applies the user's recovery choice."""

    def __init__(self, resolver: ModeResolver, telemetry: TelemetrySink | None = None):
        self.resolver = resolver
        self.telemetry = telemetry or TelemetrySink.disabled()

    @property
    def current_mode(self) -> ExecutionMode:
        return self.resolver.store.load() or ExecutionMode.NONE

    def verify_current_mode(self) -> ModeStatus:
        mode = self.current_mode
        if mode is ExecutionMode.NONE:
            return ModeStatus.ok(mode)

        error = self.resolver.transport_for(mode).availability_error()
        if error is None:
            return ModeStatus.ok(mode)

        status = ModeStatus.lost(mode, error.message)
        self.report_loss(status, error.kind)
        return status

    def report_loss(self, status: ModeStatus, error_kind: str = "") -> None:
        self.telemetry.log(
            "mode",
            "mode_lost",
            {"mode": status.mode.value, "reason": status.reason, "error_kind": error_kind},
        )

    def handle_mode_loss(self, action: ModeLossAction) -> ModeStatus:
        if action is ModeLossAction.RETRY:
            mode = self.current_mode
            if self.resolver.request_now(mode):
                return ModeStatus.ok(mode)
            error = self.resolver.transport_for(mode).availability_error()
            return ModeStatus.lost(mode, error.message if error else "Mode is still not available")

        if action is ModeLossAction.SWITCH_MODE:
            mode = self.resolver.probe()
            self.resolver.store.save(mode)
            return ModeStatus.ok(mode)

        if action is ModeLossAction.CONTINUE_VIEW_ONLY:
            self.resolver.store.save(ExecutionMode.NONE)
            return ModeStatus.ok(ExecutionMode.NONE)

        raise ValueError(f"Unknown mode loss action: {action}")
