"""Wires stores, mode resolution and transports into ready-to-use components."""

from __future__ import annotations

from dataclasses import dataclass

from .action_log import HISTORY_FILE_NAME, ActionLog
from .config import AppControlConfig
from .gateway import CommandGateway
from .mode import MODE_FILE_NAME, ModeResolver, ModeStore, ModeWatcher, TransportFactory
from .orchestrator import BatchOrchestrator
from .policy import CommandPolicy
from .snapshots import SNAPSHOT_FILE_NAME, SnapshotEngine, SnapshotStore
from .telemetry import TelemetrySink, prune_telemetry_file
from .transports import Transport, create_transport
from .types import ExecutionMode


@dataclass
class AppControlRuntime:
    """Components sharing one state directory.

    The execution mode is threaded explicitly into each gateway; nothing
    else branches on it.
    """

    config: AppControlConfig
    telemetry: TelemetrySink
    policy: CommandPolicy
    mode_store: ModeStore
    snapshot_store: SnapshotStore
    action_log: ActionLog
    resolver: ModeResolver
    watcher: ModeWatcher

    def resolve_mode(self) -> ExecutionMode:
        return self.resolver.resolve()

    def gateway(self, mode: ExecutionMode | None = None) -> CommandGateway:
        mode = mode or self.resolve_mode()
        return CommandGateway(
            self.resolver.transport_for(mode), self.policy, self.telemetry, run_id="gateway"
        )

    def orchestrator(self, mode: ExecutionMode | None = None) -> BatchOrchestrator:
        gateway = self.gateway(mode)
        snapshots = SnapshotEngine(gateway, self.snapshot_store, self.telemetry)
        return BatchOrchestrator(gateway, snapshots, self.action_log, self.telemetry)

    def close(self) -> None:
        self.resolver.close()


def _default_factory(config: AppControlConfig, policy: CommandPolicy) -> TransportFactory:
    def factory(mode: ExecutionMode) -> Transport:
        return create_transport(mode, config, policy)

    return factory


def build_runtime(
    config: AppControlConfig,
    transport_factory: TransportFactory | None = None,
) -> AppControlRuntime:
    """
    Build the runtime for a configuration.

    Args:
        config: Loaded configuration (state directory, transports, policy)
        transport_factory: Optional override mapping a mode to a transport

    Returns:
        Runtime whose stores live under config.state_path
    """
    state_dir = config.state_path
    state_dir.mkdir(parents=True, exist_ok=True)

    telemetry = TelemetrySink(enabled=config.telemetry.enabled, path=config.telemetry_path)
    prune_telemetry_file(config.telemetry_path, config.telemetry.retention_days)

    policy = CommandPolicy.from_config(config.policy)
    factory = transport_factory or _default_factory(config, policy)

    mode_store = ModeStore(state_dir / MODE_FILE_NAME, telemetry)
    snapshot_store = SnapshotStore(state_dir / SNAPSHOT_FILE_NAME, telemetry)
    action_log = ActionLog(state_dir / HISTORY_FILE_NAME, snapshot_store, telemetry)
    resolver = ModeResolver(mode_store, factory, telemetry)

    return AppControlRuntime(
        config=config,
        telemetry=telemetry,
        policy=policy,
        mode_store=mode_store,
        snapshot_store=snapshot_store,
        action_log=action_log,
        resolver=resolver,
        watcher=ModeWatcher(resolver, telemetry),
    )
