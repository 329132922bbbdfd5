"""Privilege transports and the factory selecting one per execution mode."""

from __future__ import annotations

from ..config import AppControlConfig
from ..policy import CommandPolicy
from ..types import ExecutionMode
from .base import NullTransport, Transport
from .remote import RemoteServiceTransport
from .shell import PrivilegedShellTransport

__all__ = [
    "NullTransport",
    "PrivilegedShellTransport",
    "RemoteServiceTransport",
    "Transport",
    "create_transport",
]


def create_transport(
    mode: ExecutionMode,
    config: AppControlConfig,
    policy: CommandPolicy | None = None,
) -> Transport:
    """Build the transport for a mode. The only place modes map to backends."""
    policy = policy or CommandPolicy.from_config(config.policy)
    if mode is ExecutionMode.ROOT:
        return PrivilegedShellTransport(
            config.shell.argv,
            elevation_check=config.shell.elevation_check,
            elevated_output=config.shell.elevated_output,
            timeout_s=config.command_timeout_seconds,
            policy=policy,
        )
    if mode is ExecutionMode.REMOTE:
        return RemoteServiceTransport(
            config.remote.base_url,
            socket_path=config.remote.socket_path,
            headers=config.remote.headers,
            connect_timeout_s=config.remote.connect_timeout_seconds,
            timeout_s=config.command_timeout_seconds,
            policy=policy,
        )
    if mode is ExecutionMode.NONE:
        return NullTransport(timeout_s=config.command_timeout_seconds, policy=policy)
    raise ValueError(f"Unknown execution mode: {mode}")
