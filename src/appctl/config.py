"""Configuration schema for appctl.

Configuration is loaded from .appctl.yml in the state directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_STATE_DIR = "~/.appctl"
CONFIG_FILE_NAME = ".appctl.yml"


class ShellTransportConfig(BaseModel):
    """Persistent elevated shell (root) configuration."""

    argv: list[str] = Field(default_factory=lambda: ["su"])
    # Run once per session; the session is trusted only if the output matches.
    elevation_check: str = "id -u"
    elevated_output: str = "0"

    @field_validator("argv")
    @classmethod
    def validate_argv(cls, v: list[str]) -> list[str]:
        if not v or not v[0].strip():
            raise ValueError("shell.argv must name an executable")
        return v


class RemoteServiceConfig(BaseModel):
    """Out-of-process privileged helper reached over a local message channel."""

    base_url: str = "http://appctl-helper"
    # When set, the channel is a unix domain socket instead of TCP.
    socket_path: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    connect_timeout_seconds: float = 3.0


class PolicyConfig(BaseModel):
    """Additions to the built-in command policy. Built-in lists cannot be weakened."""

    protected_packages: list[str] = Field(default_factory=list)
    force_stop_only_packages: list[str] = Field(default_factory=list)
    extra_deny_patterns: list[str] = Field(default_factory=list)


class TelemetryConfig(BaseModel):
    """Telemetry and logging configuration."""

    enabled: bool = True
    log_path: str = "telemetry.jsonl"
    retention_days: int = 30


class AppControlConfig(BaseModel):
    """Complete appctl configuration."""

    state_dir: str = DEFAULT_STATE_DIR
    command_timeout_seconds: float = 30.0
    shell: ShellTransportConfig = Field(default_factory=ShellTransportConfig)
    remote: RemoteServiceConfig = Field(default_factory=RemoteServiceConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("command_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("command_timeout_seconds must be positive")
        return v

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def telemetry_path(self) -> Path:
        p = Path(self.telemetry.log_path).expanduser()
        return p if p.is_absolute() else self.state_path / p

    @classmethod
    def load_from_file(cls, config_path: Path | str) -> AppControlConfig:
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load_from_dir(cls, state_dir: Path | str) -> AppControlConfig:
        """Load configuration from the state directory's .appctl.yml."""
        state_dir = Path(state_dir).expanduser()
        config_path = state_dir / CONFIG_FILE_NAME

        if not config_path.exists():
            return cls(state_dir=str(state_dir))

        config = cls.load_from_file(config_path)
        config.state_dir = str(state_dir)
        return config

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if v := os.getenv("APPCTL_COMMAND_TIMEOUT_SECONDS"):
            self.command_timeout_seconds = float(v)

        # Shell overrides
        if v := os.getenv("APPCTL_SHELL"):
            self.shell.argv = v.split()
        if v := os.getenv("APPCTL_SHELL_ELEVATION_CHECK"):
            self.shell.elevation_check = v

        # Remote helper overrides
        if v := os.getenv("APPCTL_REMOTE_URL"):
            self.remote.base_url = v
        if v := os.getenv("APPCTL_REMOTE_SOCKET"):
            self.remote.socket_path = v
        if v := os.getenv("APPCTL_REMOTE_TOKEN"):
            self.remote.headers["Authorization"] = f"Bearer {v}"

        # Telemetry overrides
        if v := os.getenv("APPCTL_TELEMETRY_PATH"):
            self.telemetry.log_path = v
        if os.getenv("APPCTL_TELEMETRY_DISABLED") == "1":
            self.telemetry.enabled = False


def load_config(state_dir: Path | str | None = None) -> AppControlConfig:
    """
    Load configuration for a state directory.

    Args:
        state_dir: Directory holding .appctl.yml and persisted state
            (default: $APPCTL_STATE_DIR or ~/.appctl)

    Returns:
        Loaded and validated configuration
    """
    if state_dir is None:
        state_dir = os.getenv("APPCTL_STATE_DIR") or DEFAULT_STATE_DIR
    config = AppControlConfig.load_from_dir(state_dir)
    config.apply_env_overrides()
    return config
