"""Unit tests for batch orchestration."""

import pytest

from appctl.action_log import ActionLog
from appctl.errors import TransportDenied, TransportUnavailable
from appctl.gateway import CommandGateway
from appctl.orchestrator import BatchOrchestrator
from appctl.policy import CommandPolicy, StaticPackageClassifier
from appctl.snapshots import SnapshotEngine, SnapshotStore
from appctl.transports import NullTransport
from appctl.types import ActionKind, ActionStatus


def _orchestrator(tmp_path, transport):
    policy = CommandPolicy(StaticPackageClassifier(force_stop_only=["com.example.messenger"]))
    gateway = CommandGateway(transport, policy)
    store = SnapshotStore(tmp_path / "last_snapshot.json")
    log = ActionLog(tmp_path / "action_history.json", store)
    return BatchOrchestrator(gateway, SnapshotEngine(gateway, store), log)


@pytest.fixture
def orchestrator(tmp_path, device):
    return _orchestrator(tmp_path, device)


class TestRun:
    """Best-effort batch execution."""

    def test_full_success(self, orchestrator, device):
        result = orchestrator.run(ActionKind.FREEZE, ["com.example.alpha", "com.example.beta"])

        assert result.is_full_success
        assert result.success_count == 2
        assert not device.packages["com.example.alpha"].enabled
        assert not device.packages["com.example.beta"].enabled

    def test_one_failure_does_not_abort_batch(self, orchestrator, device):
        device.failing.add("com.example.alpha")

        result = orchestrator.run(ActionKind.FORCE_STOP, ["com.example.alpha", "com.example.beta"])

        assert result.result_for("com.example.alpha").status is ActionStatus.FAILED
        assert result.result_for("com.example.alpha").error_kind == "execution_failed"
        assert result.result_for("com.example.beta").status is ActionStatus.SUCCESS
        assert not result.is_full_success

    def test_protected_target_skipped_and_never_sent(self, orchestrator, device):
        device.install("android")

        result = orchestrator.run(ActionKind.FREEZE, ["android", "com.example.alpha"])

        skipped = result.result_for("android")
        assert skipped.status is ActionStatus.SKIPPED
        assert skipped.error_kind == "policy_rejected"
        assert not any(c.endswith(" android") for c in device.commands)
        assert result.is_full_success

    def test_force_stop_only_target(self, orchestrator, device):
        device.install("com.example.messenger")
        stop = orchestrator.run(ActionKind.FORCE_STOP, ["com.example.messenger"])
        freeze = orchestrator.run(ActionKind.FREEZE, ["com.example.messenger"])
        assert stop.is_full_success
        assert freeze.result_for("com.example.messenger").status is ActionStatus.SKIPPED

    def test_results_follow_input_order_and_dedupe(self, orchestrator):
        result = orchestrator.run(
            ActionKind.FORCE_STOP,
            ["com.example.beta", "android", "com.example.alpha", "com.example.beta"],
        )
        assert [r.package_name for r in result.results] == [
            "com.example.beta",
            "android",
            "com.example.alpha",
        ]

    def test_skip_only_batch_is_logged_as_failure(self, orchestrator):
        result = orchestrator.run(ActionKind.FREEZE, ["android"])
        assert result.skipped_count == 1
        assert not result.is_full_success
        assert orchestrator.action_log.entries()[0].success is False

    def test_rollback_is_not_a_batch_action(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.run(ActionKind.ROLLBACK, ["com.example.alpha"])


class TestSnapshotting:
    def test_reversible_action_snapshots_planned_targets(self, orchestrator):
        orchestrator.run(ActionKind.RESTRICT_BACKGROUND, ["com.example.alpha", "android"])
        snapshot = orchestrator.snapshots.store.load()
        assert snapshot.package_names == ["com.example.alpha"]

    def test_snapshot_taken_before_mutation(self, orchestrator, device):
        orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])
        state = orchestrator.snapshots.store.load().states[0]
        assert state.enabled is True

    def test_irreversible_action_leaves_snapshot_alone(self, orchestrator):
        orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])
        before = orchestrator.snapshots.store.load()
        orchestrator.run(ActionKind.CLEAR_CACHE, ["com.example.beta"])
        assert orchestrator.snapshots.store.load().id == before.id

    def test_queries_precede_mutations(self, orchestrator, device):
        orchestrator.run(ActionKind.FREEZE, ["com.example.alpha", "com.example.beta"])
        first_mutation = next(i for i, c in enumerate(device.commands) if c.startswith("pm disable"))
        queries = [i for i, c in enumerate(device.commands) if "list packages" in c or "appops get" in c]
        assert max(queries) < first_mutation

    def test_unreadable_target_never_mutated(self, orchestrator, device):
        device.unreadable.add("com.example.alpha")

        result = orchestrator.run(ActionKind.FREEZE, ["com.example.alpha", "com.example.beta"])

        failed = result.result_for("com.example.alpha")
        assert failed.status is ActionStatus.FAILED
        assert failed.error_message.startswith("State could not be captured")
        assert device.packages["com.example.alpha"].enabled
        assert "pm disable-user --user 0 com.example.alpha" not in device.commands
        assert result.result_for("com.example.beta").status is ActionStatus.SUCCESS
        assert orchestrator.snapshots.store.load().package_names == ["com.example.beta"]

    def test_mode_lost_before_capture_keeps_previous_snapshot(self, orchestrator, device):
        orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])
        device.lost = TransportUnavailable

        result = orchestrator.run(ActionKind.FREEZE, ["com.example.beta"])

        assert result.mode_lost is not None
        assert result.result_for("com.example.beta").status is ActionStatus.FAILED
        assert orchestrator.snapshots.store.load().package_names == ["com.example.alpha"]


class TestActionLogging:
    def test_one_entry_per_batch(self, orchestrator):
        orchestrator.run(ActionKind.FORCE_STOP, ["com.example.alpha", "com.example.beta"])
        entries = orchestrator.action_log.entries()
        assert len(entries) == 1
        assert entries[0].action is ActionKind.FORCE_STOP
        assert entries[0].packages == ["com.example.alpha", "com.example.beta"]
        assert entries[0].success

    def test_failure_summary_recorded(self, orchestrator, device):
        device.failing.add("com.example.alpha")
        orchestrator.run(ActionKind.CLEAR_DATA, ["com.example.alpha"])
        entry = orchestrator.action_log.entries()[0]
        assert not entry.success
        assert "com.example.alpha" in entry.error_message

    def test_rollback_logged(self, orchestrator):
        orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])
        result = orchestrator.rollback()
        assert result.is_full_success
        assert orchestrator.action_log.entries()[0].action is ActionKind.ROLLBACK

    def test_missing_snapshot_rollback_not_logged(self, orchestrator):
        result = orchestrator.rollback()
        assert result.error.kind == "snapshot_missing"
        assert orchestrator.action_log.entries() == []


class TestModeLoss:
    def test_mode_loss_reported_on_result(self, orchestrator, device):
        device.lost = TransportDenied

        result = orchestrator.run(ActionKind.FORCE_STOP, ["com.example.alpha"])

        assert result.mode_lost is not None
        assert result.mode_lost.kind == "transport_denied"

    def test_view_only_sends_nothing(self, tmp_path):
        orchestrator = _orchestrator(tmp_path, NullTransport())

        result = orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])

        assert result.result_for("com.example.alpha").error_kind == "transport_unavailable"
        assert not orchestrator.rollback_available()


class TestStorageFailures:
    """Unwritable records surface on the result instead of raising."""

    def test_unwritable_history(self, orchestrator, device):
        orchestrator.action_log.path.mkdir(parents=True)

        result = orchestrator.run(ActionKind.FORCE_STOP, ["com.example.alpha"])

        assert result.error.kind == "storage_failed"
        assert result.result_for("com.example.alpha").status is ActionStatus.SUCCESS
        assert not result.is_full_success

    def test_unwritable_snapshot_blocks_mutation(self, orchestrator, device):
        orchestrator.snapshots.store.path.mkdir(parents=True)

        result = orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])

        assert result.error.kind == "storage_failed"
        assert result.result_for("com.example.alpha").status is ActionStatus.FAILED
        assert device.packages["com.example.alpha"].enabled

    def test_unwritable_history_on_rollback(self, orchestrator, device):
        orchestrator.run(ActionKind.FREEZE, ["com.example.alpha"])
        orchestrator.action_log.path.unlink()
        orchestrator.action_log.path.mkdir()

        result = orchestrator.rollback()

        assert result.error.kind == "storage_failed"
        assert device.packages["com.example.alpha"].enabled
