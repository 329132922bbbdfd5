"""Shared fixtures: an in-memory device behind the Transport contract."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

import pytest

from appctl.config import AppControlConfig
from appctl.errors import ExecutionFailed, TransportDenied, TransportUnavailable
from appctl.runtime import build_runtime
from appctl.transports import NullTransport, Transport
from appctl.types import ExecutionMode

DEFAULT_OPS = ("RUN_IN_BACKGROUND", "RUN_ANY_IN_BACKGROUND", "WAKE_LOCK")


def pytest_sessionstart(session):  # noqa: ARG001
    # Never pick up a developer's real state directory or remote helper.
    os.environ.pop("APPCTL_STATE_DIR", None)
    os.environ.pop("APPCTL_REMOTE_URL", None)
    os.environ.pop("APPCTL_REMOTE_SOCKET", None)


@dataclass
class FakePackage:
    enabled: bool = True
    ops: dict[str, str] = field(default_factory=lambda: {op: "allow" for op in DEFAULT_OPS})


class FakeDevice(Transport):
    """Transport answering pm/am/appops commands from an in-memory package table.

    `lost` makes every command fail the way a revoked backend would;
    `failing` lists packages whose mutating commands exit non-zero;
    `unreadable` lists packages whose appops queries exit non-zero.
    """

    def __init__(self, mode: ExecutionMode = ExecutionMode.ROOT, **kwargs):
        super().__init__(**kwargs)
        self.mode = mode
        self.packages: dict[str, FakePackage] = {}
        self.commands: list[str] = []
        self.granted = True
        self.lost: type[Exception] | None = None
        self.failing: set[str] = set()
        self.unreadable: set[str] = set()

    def install(self, name: str, enabled: bool = True, **ops: str) -> FakePackage:
        pkg = FakePackage(enabled=enabled)
        pkg.ops.update(ops)
        self.packages[name] = pkg
        return pkg

    def is_granted(self) -> bool:
        return self.granted and self.lost is None

    def request_access(self) -> bool:
        return self.is_granted()

    def _run(self, command: str, timeout_s: float) -> str:
        if self.lost is TransportDenied:
            raise TransportDenied("permission revoked")
        if self.lost is not None:
            raise TransportUnavailable("backend gone")
        self.commands.append(command)

        parts = command.split()
        name = parts[-1]
        if parts[:3] == ["pm", "list", "packages"]:
            flag = parts[3]
            pkg = self.packages.get(name)
            if pkg is None or pkg.enabled != (flag == "-e"):
                return ""
            return f"package:{name}"

        if parts[:2] == ["appops", "get"]:
            name, op = parts[2], parts[3]
            if name not in self.packages or name in self.unreadable:
                raise ExecutionFailed(f"Unknown package: {name}", exit_code=255)
            return f"{op}: {self.packages[name].ops.get(op, 'allow')}"

        if parts[:2] == ["appops", "set"]:
            name, op, value = parts[2], parts[3], parts[4]
            self._mutable(name).ops[op] = value
            return ""

        pkg = self._mutable(name)
        if parts[:2] == ["pm", "disable-user"]:
            pkg.enabled = False
        elif parts[:2] == ["pm", "enable"]:
            pkg.enabled = True
        elif parts[:2] == ["pm", "uninstall"]:
            del self.packages[name]
        return ""

    def _mutable(self, name: str) -> FakePackage:
        if name not in self.packages:
            raise ExecutionFailed(f"Unknown package: {name}", exit_code=1)
        if name in self.failing:
            raise ExecutionFailed(f"Failure [{name}]", exit_code=1)
        return self.packages[name]


@pytest.fixture
def device():
    """Root device with three ordinary apps installed."""
    dev = FakeDevice()
    dev.install("com.example.alpha")
    dev.install("com.example.beta", RUN_IN_BACKGROUND="ignore", RUN_ANY_IN_BACKGROUND="ignore")
    dev.install("com.example.gamma", enabled=False)
    return dev


@pytest.fixture
def config(tmp_path):
    return AppControlConfig(state_dir=str(tmp_path / "state"))


@pytest.fixture
def runtime(config, device):
    """Runtime whose ROOT backend is the fake device and REMOTE is never granted."""
    remote = FakeDevice(ExecutionMode.REMOTE)
    remote.granted = False
    backends = {ExecutionMode.ROOT: device, ExecutionMode.REMOTE: remote}

    def factory(mode: ExecutionMode) -> Transport:
        return backends.get(mode) or NullTransport()

    rt = build_runtime(config, transport_factory=factory)
    yield rt
    rt.close()


@pytest.fixture
def make_device():
    """Factory for extra fake backends."""
    return FakeDevice
