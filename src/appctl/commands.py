"""OS command surface: forward commands per action, state queries, inverse commands."""

from __future__ import annotations

from .records import AppOpsMode, AppState
from .types import ActionKind, CommandRequest

USER_ID = 0

# App-operations toggled together by restrict/allow background.
BACKGROUND_OPS = ("RUN_IN_BACKGROUND", "RUN_ANY_IN_BACKGROUND", "WAKE_LOCK")


def _appops_set(package_name: str, op: str, mode: AppOpsMode) -> str:
    return f"appops set {package_name} {op} {mode.value}"


def build_commands(action: ActionKind, package_name: str) -> list[CommandRequest]:
    """Concrete command(s) for one logical action on one package."""
    if action is ActionKind.FREEZE:
        cmds = [f"pm disable-user --user {USER_ID} {package_name}"]
    elif action is ActionKind.UNFREEZE:
        cmds = [f"pm enable {package_name}"]
    elif action is ActionKind.UNINSTALL:
        cmds = [f"pm uninstall -k --user {USER_ID} {package_name}"]
    elif action is ActionKind.FORCE_STOP:
        cmds = [f"am force-stop {package_name}"]
    elif action is ActionKind.CLEAR_CACHE:
        cmds = [f"pm clear --cache-only {package_name}"]
    elif action is ActionKind.CLEAR_DATA:
        cmds = [f"pm clear {package_name}"]
    elif action is ActionKind.RESTRICT_BACKGROUND:
        cmds = [_appops_set(package_name, op, AppOpsMode.IGNORE) for op in BACKGROUND_OPS]
    elif action is ActionKind.ALLOW_BACKGROUND:
        cmds = [_appops_set(package_name, op, AppOpsMode.ALLOW) for op in BACKGROUND_OPS]
    else:
        raise ValueError(f"No forward commands for action: {action.value}")
    return [CommandRequest(command=c, target=package_name) for c in cmds]


def query_background_policy(package_name: str) -> CommandRequest:
    return CommandRequest(f"appops get {package_name} RUN_IN_BACKGROUND", package_name)


def query_wake_lock_policy(package_name: str) -> CommandRequest:
    return CommandRequest(f"appops get {package_name} WAKE_LOCK", package_name)


def query_enabled_packages(package_name: str) -> CommandRequest:
    return CommandRequest(f"pm list packages -e {package_name}", package_name)


def query_disabled_packages(package_name: str) -> CommandRequest:
    return CommandRequest(f"pm list packages -d {package_name}", package_name)


def package_listed(output: str, package_name: str) -> bool:
    """`pm list packages FILTER` matches substrings; require an exact entry."""
    wanted = f"package:{package_name}"
    return any(line.strip() == wanted for line in output.splitlines())


def rollback_commands(state: AppState) -> list[CommandRequest]:
    """Inverse commands restoring one recorded state.

    Policies are restored exactly as recorded. The package is re-enabled only
    if it was recorded enabled; rollback never disables a package.
    """
    pkg = state.package_name
    cmds = [
        _appops_set(pkg, "RUN_IN_BACKGROUND", state.background_policy),
        _appops_set(pkg, "RUN_ANY_IN_BACKGROUND", state.background_policy),
        _appops_set(pkg, "WAKE_LOCK", state.wake_lock_policy),
    ]
    if state.enabled:
        cmds.append(f"pm enable {pkg}")
    return [CommandRequest(command=c, target=pkg) for c in cmds]
