"""Command policy enforcement for privileged execution.

Every command passes three ordered checks before it may reach a transport:
- Deny-list scan (destructive operations, command chaining); wins over the allow-list
- Allow-list prefix match (default-deny)
- Protected-target check for package-targeted mutating commands
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

from .config import PolicyConfig
from .errors import PolicyRejected
from .types import CommandRequest

# Matched case-insensitively against the whole command string.
DENY_PATTERNS: list[tuple[str, str]] = [
    (r"\brm\s+-[a-z]*r", "recursive deletion"),
    (r"\brm\s+-[a-z]*f", "forced deletion"),
    (r"(^|\s)mkfs(\.\w+)?(\s|$)", "filesystem formatting"),
    (r"(^|\s)format(\s|$)", "formatting"),
    (r"\bdd\s+if=", "raw device write"),
    (r"(^|\s)(reboot|shutdown|poweroff|halt)(\s|$)", "device power control"),
    (r"\bsvc\s+power\b", "device power control"),
    (r"\bsu\s+-c\b", "nested privilege escalation"),
    (r"\bchmod\s+[0-7]*777\s+/", "permission widening"),
    (r"\bchown\s+root\b", "ownership change"),
    # Separators and substitutions that could smuggle a second command.
    (r";", "command chaining"),
    (r"&", "command chaining"),
    (r"\|", "command piping"),
    (r"`", "command substitution"),
    (r"\$\(", "command substitution"),
    (r"[<>]", "redirection"),
    (r"[\r\n\x00]", "embedded newline"),
]

# Operation classes a command may start with. Matched on a token boundary.
ALLOWED_PREFIXES: tuple[str, ...] = (
    "pm disable-user",
    "pm disable",
    "pm enable",
    "pm uninstall",
    "pm clear",
    "pm list packages",
    "am force-stop",
    "appops get",
    "appops set",
    "cmd appops get",
    "cmd appops set",
    "getprop",
    "dumpsys package",
    "dumpsys activity",
    "dumpsys battery",
)

# Allowed prefixes that never mutate state; exempt from the protected-target check.
READ_ONLY_PREFIXES: tuple[str, ...] = (
    "pm list packages",
    "appops get",
    "cmd appops get",
    "getprop",
    "dumpsys",
)

FORCE_STOP_PREFIX = "am force-stop"

PACKAGE_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")
MAX_PACKAGE_NAME_LENGTH = 255
INJECTION_CHARACTERS = frozenset(";&|`$'\"\n\r\\()<>{}[] ")

# The framework package has no dots but is a real install target.
PLATFORM_PACKAGE_NAMES = frozenset({"android"})

# Never mutated regardless of transport. Self-protection plus platform core.
CORE_PROTECTED_PACKAGES = frozenset(
    {
        "com.appctl",
        "android",
        "com.android.systemui",
        "com.android.settings",
        "com.android.phone",
        "com.android.server.telecom",
        "com.android.providers.settings",
        "com.android.providers.telephony",
        "com.android.providers.media",
        "com.android.packageinstaller",
        "com.android.permissioncontroller",
        "com.android.shell",
        "com.android.networkstack",
        "com.android.webview",
        "com.google.android.gms",
        "com.google.android.gsf",
        "com.google.android.webview",
        "com.android.vending",
        "com.topjohnwu.magisk",
        "me.weishu.kernelsu",
        "moe.shizuku.privileged.api",
        "rikka.shizuku",
    }
)


class ProtectionLevel(str, Enum):
    NONE = "none"
    FORCE_STOP_ONLY = "force_stop_only"
    CRITICAL = "critical"


class ProtectedPackageClassifier(Protocol):
    """External verdict on whether a package may be mutated."""

    def protection_level(self, package_name: str) -> ProtectionLevel: ...


class StaticPackageClassifier:
    """Set-backed classifier: core packages plus configured extras."""

    def __init__(
        self,
        protected: Iterable[str] = (),
        force_stop_only: Iterable[str] = (),
    ):
        self.protected = CORE_PROTECTED_PACKAGES | frozenset(protected)
        self.force_stop_only = frozenset(force_stop_only) - self.protected

    def protection_level(self, package_name: str) -> ProtectionLevel:
        if package_name in self.protected:
            return ProtectionLevel.CRITICAL
        if package_name in self.force_stop_only:
            return ProtectionLevel.FORCE_STOP_ONLY
        return ProtectionLevel.NONE

    @classmethod
    def from_config(cls, config: PolicyConfig) -> StaticPackageClassifier:
        return cls(config.protected_packages, config.force_stop_only_packages)


@dataclass(frozen=True)
class PolicyVerdict:
    """Outcome of validating one command."""

    allowed: bool
    check: str = ""  # which check rejected: deny_list, allow_list, package_name, protected
    reason: str = ""

    @classmethod
    def accept(cls) -> PolicyVerdict:
        return cls(allowed=True)

    @classmethod
    def reject(cls, check: str, reason: str) -> PolicyVerdict:
        return cls(allowed=False, check=check, reason=reason)

    def to_error(self) -> PolicyRejected:
        return PolicyRejected(self.reason, check=self.check)


def _normalize(command: str) -> str:
    return " ".join(command.strip().lower().split())


def _has_prefix(normalized: str, prefixes: Iterable[str]) -> str | None:
    for prefix in prefixes:
        if normalized == prefix or normalized.startswith(prefix + " "):
            return prefix
    return None


def validate_package_name(package_name: str) -> str | None:
    """Return a rejection reason, or None if the name is a well-formed package."""
    if any(ch in INJECTION_CHARACTERS for ch in package_name):
        return f"Injection attempt detected in package name: {package_name!r}"
    if not package_name or len(package_name) > MAX_PACKAGE_NAME_LENGTH:
        return f"Invalid package name length: {package_name!r}"
    if package_name in PLATFORM_PACKAGE_NAMES:
        return None
    if not PACKAGE_NAME_RE.match(package_name):
        return f"Invalid package name format: {package_name}"
    return None


class CommandPolicy:
    """Allow/deny/protected-target gate applied before every transport call."""

    def __init__(
        self,
        classifier: ProtectedPackageClassifier | None = None,
        extra_deny_patterns: Iterable[str] = (),
    ):
        self.classifier = classifier or StaticPackageClassifier()
        self._deny = [(re.compile(p, re.IGNORECASE), why) for p, why in DENY_PATTERNS]
        self._deny += [
            (re.compile(re.escape(p), re.IGNORECASE), f"blocked pattern {p!r}")
            for p in extra_deny_patterns
            if p
        ]

    @classmethod
    def from_config(cls, config: PolicyConfig) -> CommandPolicy:
        return cls(
            classifier=StaticPackageClassifier.from_config(config),
            extra_deny_patterns=config.extra_deny_patterns,
        )

    def check_command(self, command: str) -> PolicyVerdict:
        """Deny-list then allow-list. Does not consult the package classifier."""
        for pattern, why in self._deny:
            if pattern.search(command):
                return PolicyVerdict.reject("deny_list", f"Command blocked ({why}): {command}")

        if _has_prefix(_normalize(command), ALLOWED_PREFIXES) is None:
            return PolicyVerdict.reject("allow_list", f"Command not in allowlist: {command}")

        return PolicyVerdict.accept()

    def validate(self, request: CommandRequest) -> PolicyVerdict:
        """Full validation: command checks, then target checks for package commands."""
        verdict = self.check_command(request.command)
        if not verdict.allowed or request.target is None:
            return verdict

        reason = validate_package_name(request.target)
        if reason:
            return PolicyVerdict.reject("package_name", reason)

        normalized = _normalize(request.command)
        if _has_prefix(normalized, READ_ONLY_PREFIXES):
            return verdict

        level = self.classifier.protection_level(request.target)
        if level is ProtectionLevel.CRITICAL:
            return PolicyVerdict.reject(
                "protected", f"Cannot modify protected package: {request.target}"
            )
        if level is ProtectionLevel.FORCE_STOP_ONLY and not _has_prefix(
            normalized, (FORCE_STOP_PREFIX,)
        ):
            return PolicyVerdict.reject(
                "protected", f"Package {request.target} only allows force-stop"
            )
        return verdict

    def validate_all(self, requests: Iterable[CommandRequest]) -> PolicyVerdict:
        """First rejection among requests, or accept if every one passes."""
        for request in requests:
            verdict = self.validate(request)
            if not verdict.allowed:
                return verdict
        return PolicyVerdict.accept()

    def is_allowed(self, request: CommandRequest) -> bool:
        return self.validate(request).allowed
