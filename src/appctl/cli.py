"""Command-line interface for appctl.

Commands:
- appctl mode show|set|check: Resolve, persist or actively verify the execution mode
- appctl run <action> <package>...: Apply one action to a batch of packages
- appctl rollback: Replay the inverse of the last reversible batch
- appctl history: Show the action log and whether rollback is available
- appctl clear-history: Delete the action log and the retained snapshot
- appctl check <command>: Dry-run a command against the policy
"""

from __future__ import annotations

import datetime
import json
import sys

import click

from .config import AppControlConfig, load_config
from .mode_loss import FixedChoiceHandler, ModeLossHandler
from .runtime import AppControlRuntime, build_runtime
from .types import (
    BATCH_ACTIONS,
    ActionKind,
    ActionStatus,
    BatchExecutionResult,
    CommandRequest,
    ExecutionMode,
    ModeLossAction,
    ModeStatus,
)

MODE_LOSS_CHOICES = ["prompt", "retry", "switch", "view-only"]

_STATUS_MARKS = {
    ActionStatus.SUCCESS: "✓",
    ActionStatus.FAILED: "✗",
    ActionStatus.SKIPPED: "-",
}


def _load_config(ctx: click.Context) -> AppControlConfig:
    opts = ctx.obj or {}
    if opts.get("config"):
        config = AppControlConfig.load_from_file(opts["config"])
        if opts.get("state_dir"):
            config.state_dir = opts["state_dir"]
        config.apply_env_overrides()
        return config
    return load_config(opts.get("state_dir"))


def _runtime(ctx: click.Context) -> AppControlRuntime:
    runtime = build_runtime(_load_config(ctx))
    ctx.call_on_close(runtime.close)
    return runtime


def _echo_batch(result: BatchExecutionResult) -> None:
    click.echo()
    click.echo("=" * 60)
    click.echo(f"{result.action.display_name.upper()} RESULTS")
    click.echo("=" * 60)
    if result.error is not None:
        click.echo(f"Error: {result.error.message}")
        if not result.results:
            return

    for r in result.results:
        line = f"  {_STATUS_MARKS[r.status]} {r.package_name}"
        if r.error_message:
            line += f" - {r.error_message}"
        click.echo(line)
    click.echo()
    click.echo(
        f"Succeeded: {result.success_count}  Failed: {result.failure_count}  "
        f"Skipped: {result.skipped_count}"
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="appctl")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    help="Directory holding .appctl.yml and persisted state (default: ~/.appctl)",
)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, state_dir: str | None, config: str | None) -> None:
    """appctl - Privileged control of installed Android applications."""
    ctx.obj = {"state_dir": state_dir, "config": config}


@cli.group()
def mode() -> None:
    """Inspect or change the privilege transport."""


@mode.command("show")
@click.pass_context
def mode_show(ctx: click.Context) -> None:
    """Show the resolved execution mode (cheap check, never prompts)."""
    runtime = _runtime(ctx)
    current = runtime.resolve_mode()
    click.echo(f"Mode: {current.display_name}")
    if current is ExecutionMode.NONE:
        click.echo("No privilege backend available; actions are disabled.")
        return

    granted = runtime.resolver.is_granted(current)
    click.echo(f"Verified this session: {'yes' if granted else 'no (verified at first use)'}")
    status = runtime.watcher.verify_current_mode()
    if status.is_lost:
        click.echo(f"Mode lost: {status.reason}")


@mode.command("set")
@click.argument("mode_name", type=click.Choice([m.value for m in ExecutionMode]))
@click.pass_context
def mode_set(ctx: click.Context, mode_name: str) -> None:
    """Select a mode explicitly. It is verified now and persisted only if it works.

    Example:
        appctl mode set root
        appctl mode set none
    """
    runtime = _runtime(ctx)
    status = runtime.resolver.select(ExecutionMode.parse(mode_name))
    if status.is_lost:
        raise click.ClickException(f"Cannot switch to {status.mode.display_name}: {status.reason}")
    click.echo(f"✓ Mode set: {status.mode.display_name}")


@mode.command("check")
@click.pass_context
def mode_check(ctx: click.Context) -> None:
    """Actively confirm privilege now. May trigger an OS consent prompt."""
    runtime = _runtime(ctx)
    current = runtime.resolve_mode()
    if runtime.resolver.request_now(current):
        click.echo(f"✓ {current.display_name} access confirmed")
        return
    error = runtime.resolver.transport_for(current).availability_error()
    click.echo(f"✗ {current.display_name} access not available")
    if error is not None:
        click.echo(f"  {error.message}")
    sys.exit(1)


@cli.command()
@click.argument("action", type=click.Choice([a.value for a in BATCH_ACTIONS]))
@click.argument("packages", nargs=-1, required=True)
@click.option(
    "--on-mode-loss",
    type=click.Choice(MODE_LOSS_CHOICES),
    default="prompt",
    show_default=True,
    help="What to do if the active mode is lost during the batch.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the batch result as JSON")
@click.pass_context
def run(
    ctx: click.Context,
    action: str,
    packages: tuple[str, ...],
    on_mode_loss: str,
    as_json: bool,
) -> None:
    """Apply one action to a batch of packages (best-effort).

    Example:
        appctl run freeze com.example.app com.example.other
        appctl run restrict_background com.example.app --on-mode-loss view-only
    """
    runtime = _runtime(ctx)
    current = runtime.resolve_mode()
    if current is ExecutionMode.NONE and not as_json:
        click.echo("Mode: View Only (no privilege backend; commands will not be sent)")

    result = runtime.orchestrator(current).run(ActionKind.parse(action), list(packages))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _echo_batch(result)

    _recover_mode(runtime, current, result, on_mode_loss)
    sys.exit(0 if result.is_full_success else 1)


def _recover_mode(
    runtime: AppControlRuntime,
    current: ExecutionMode,
    result: BatchExecutionResult,
    on_mode_loss: str,
) -> None:
    """Offer retry, switch or view-only when the batch lost its mode."""
    if result.mode_lost is None or current is ExecutionMode.NONE:
        return
    handler: ModeLossHandler
    if on_mode_loss == "prompt":
        handler = ModeLossHandler(runtime.watcher, interactive=True)
    else:
        handler = FixedChoiceHandler(runtime.watcher, ModeLossAction(on_mode_loss))
    status = handler.handle(ModeStatus.lost(current, result.mode_lost.message))
    _echo_mode_recovery(status)


def _echo_mode_recovery(status: ModeStatus) -> None:
    if status.is_lost:
        click.echo(f"Mode still unavailable: {status.reason}", err=True)
    elif status.mode is ExecutionMode.NONE:
        click.echo("Continuing in view-only mode.", err=True)
    else:
        click.echo(f"Mode now {status.mode.display_name}; re-run the command to retry.", err=True)


@cli.command()
@click.option(
    "--on-mode-loss",
    type=click.Choice(MODE_LOSS_CHOICES),
    default="prompt",
    show_default=True,
    help="What to do if the active mode is lost during the rollback.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the rollback result as JSON")
@click.pass_context
def rollback(ctx: click.Context, on_mode_loss: str, as_json: bool) -> None:
    """Restore the state captured before the last reversible batch."""
    runtime = _runtime(ctx)
    current = runtime.resolve_mode()
    result = runtime.orchestrator(current).rollback()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _echo_batch(result)
    _recover_mode(runtime, current, result, on_mode_loss)
    sys.exit(0 if result.is_full_success else 1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print history as JSON")
@click.option("--limit", "-n", type=int, default=20, show_default=True)
@click.pass_context
def history(ctx: click.Context, as_json: bool, limit: int) -> None:
    """Show recent actions, newest first."""
    runtime = _runtime(ctx)
    entries = runtime.action_log.entries()[: max(limit, 0)]
    # Re-read on every view; never cached from the original action.
    can_rollback = runtime.snapshot_store.exists()

    if as_json:
        payload = {
            "rollback_available": can_rollback,
            "entries": [e.model_dump(mode="json") for e in entries],
        }
        click.echo(json.dumps(payload, indent=2))
        return

    if not entries:
        click.echo("No actions recorded.")
    for e in entries:
        ts = datetime.datetime.fromtimestamp(e.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        mark = "✓" if e.success else "✗"
        click.echo(f"{mark} {ts}  {e.action.display_name:<20} {', '.join(e.packages)}")
        if e.error_message:
            click.echo(f"    {e.error_message}")
    click.echo()
    click.echo(f"Rollback available: {'yes' if can_rollback else 'no'}")


@cli.command("clear-history")
@click.confirmation_option(prompt="Delete the action history and the rollback snapshot?")
@click.pass_context
def clear_history(ctx: click.Context) -> None:
    """Delete the action log. The rollback snapshot is deleted with it."""
    runtime = _runtime(ctx)
    runtime.action_log.clear()
    click.echo("✓ History cleared")


@cli.command()
@click.argument("command")
@click.option("--target", "-t", help="Package the command targets")
@click.pass_context
def check(ctx: click.Context, command: str, target: str | None) -> None:
    """Dry-run a command against the policy without sending it.

    Example:
        appctl check "pm clear com.example.app" --target com.example.app
    """
    runtime = _runtime(ctx)
    verdict = runtime.policy.validate(CommandRequest(command=command, target=target))
    if verdict.allowed:
        click.echo("✓ Allowed")
        return
    click.echo(f"✗ Rejected ({verdict.check}): {verdict.reason}")
    sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
